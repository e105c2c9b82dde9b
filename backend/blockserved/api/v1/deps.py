# blockserved/api/v1/deps.py

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from blockserved.core.config import settings
from blockserved.services.energy_service import EnergyStoreClient, energy_store
from blockserved.services.storage_service import DocumentStorage, document_storage
from blockserved.services.tron_client import TronClient, get_tron_client

# ============================================================================
# Service dependencies (overridable in tests)
# ============================================================================

def get_storage() -> DocumentStorage:
    return document_storage


def get_chain_client() -> TronClient:
    return get_tron_client()


def get_energy_client() -> EnergyStoreClient:
    return energy_store


def public_base_url(request: Request) -> str:
    """Prefix for URLs handed back to clients."""
    return (settings.PUBLIC_BASE_URL or str(request.base_url)).rstrip("/")


# ============================================================================
# Wallet identity headers
# ============================================================================

def require_server_address(
    x_server_address: Optional[str] = Header(None),
) -> str:
    """Process server wallet from X-Server-Address."""
    if not x_server_address or not x_server_address.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Server address required"
        )
    return x_server_address.strip()


def require_wallet_address(
    x_wallet_address: Optional[str] = Header(None),
    x_server_address: Optional[str] = Header(None),
) -> str:
    """
    Requesting wallet from X-Wallet-Address, falling back to X-Server-Address.
    """
    wallet = (x_wallet_address or x_server_address or "").strip()
    if not wallet:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Wallet address required"
        )
    return wallet


def require_admin(
    x_admin_token: Optional[str] = Header(None),
) -> None:
    """Operator endpoints; disabled entirely when ADMIN_API_TOKEN is unset."""
    if not settings.ADMIN_API_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API disabled"
        )
    if x_admin_token != settings.ADMIN_API_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token"
        )

"""
Health and readiness checks: database, storage roots, chain and energy config.
"""
import os

from fastapi import APIRouter, Depends
from sqlalchemy import text

from blockserved.api.v1.deps import get_storage
from blockserved.core.config import settings
from blockserved.core.logger import logger
from blockserved.db.database import SessionLocal
from blockserved.services.storage_service import DocumentStorage

router = APIRouter()


def _check_database() -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return "ok", "Database reachable"
    except Exception as e:
        logger.exception("Database health check failed")
        return "error", f"Database: {str(e)}"
    finally:
        db.close()


def _check_root(path: str) -> dict:
    exists = os.path.isdir(path)
    return {
        "path": path,
        "exists": exists,
        "writable": exists and os.access(path, os.W_OK),
    }


@router.get("/ready")
def readiness(storage: DocumentStorage = Depends(get_storage)):
    db_status, db_detail = _check_database()
    primary = _check_root(storage.primary_root)
    fallback = _check_root(storage.fallback_root)
    storage_ok = primary["writable"] or fallback["writable"] or storage.writable_root() is not None

    return {
        "status": "ok" if db_status == "ok" and storage_ok else "degraded",
        "database": {"status": db_status, "detail": db_detail},
        "storage": {
            "status": "ok" if storage_ok else "error",
            "primary": primary,
            "fallback": fallback,
        },
        "chain": {
            "network": settings.TRON_NETWORK,
            "endpoint": settings.trongrid_url,
            "contractConfigured": bool(settings.CONTRACT_ADDRESS),
            "apiKeyConfigured": bool(settings.TRONGRID_API_KEY),
        },
        "energy": {"configured": settings.energy_store_configured},
        "ipfs": {"pinningConfigured": bool(settings.PINATA_API_KEY and settings.PINATA_SECRET_KEY)},
    }

"""
Custom exception classes
"""
from fastapi import HTTPException

from blockserved.core.logger import logger


class ValidationError(HTTPException):
    """Raised when request input is malformed (bad address, missing field)"""
    def __init__(self, detail: str):
        super().__init__(
            status_code=400,
            detail=detail
        )


class AuthorizationError(HTTPException):
    """Raised when a wallet may not act on or view a notice"""
    def __init__(self, detail: str = "You don't have permission to access this notice"):
        super().__init__(
            status_code=403,
            detail=detail
        )


class NotFoundError(HTTPException):
    """Raised when a notice, blob or file doesn't exist"""
    def __init__(self, detail: str = "Not found"):
        super().__init__(
            status_code=404,
            detail=detail
        )


class StorageError(HTTPException):
    """Raised when disk or database storage fails. The client sees a generic message."""
    def __init__(self, reason: str = "Unknown error"):
        logger.error("Storage failure: %s", reason)
        self.reason = reason
        super().__init__(
            status_code=500,
            detail="Storage failure, please retry later"
        )


class BlockchainUnavailableError(HTTPException):
    """Raised when the TRON RPC stays unreachable after retries"""
    def __init__(self, reason: str = "TRON RPC unavailable"):
        self.reason = reason
        super().__init__(
            status_code=503,
            detail=f"Blockchain service unavailable: {reason}"
        )


class UpstreamServiceError(HTTPException):
    """Raised when a proxied third-party API fails"""
    def __init__(self, service: str, reason: str = "request failed"):
        super().__init__(
            status_code=502,
            detail=f"{service} error: {reason}"
        )


class ServiceNotConfiguredError(HTTPException):
    """Raised when a proxied service has no credentials"""
    def __init__(self, service: str):
        super().__init__(
            status_code=503,
            detail=f"{service} is not configured"
        )

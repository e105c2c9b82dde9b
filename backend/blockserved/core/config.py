# blockserved/core/config.py
"""
Application configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import json
import os
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """

    # Application
    APP_NAME: str = "BlockServed"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    PUBLIC_BASE_URL: str = ""

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/blockserved"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Access tokens (recipient document access)
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Operator endpoints (reconciliation review); disabled when blank
    ADMIN_API_TOKEN: str = ""

    # TRON network
    TRON_NETWORK: str = "mainnet"   # mainnet | nile | shasta
    TRONGRID_API_URL: str = ""      # leave blank to derive from TRON_NETWORK
    TRONGRID_API_KEY: str = ""
    CONTRACT_ADDRESS: str = ""
    SERVER_WALLET: str = ""
    FEE_COLLECTOR: str = ""
    # Deployment-only secret; accepted so shared .env files load, never read by the backend.
    PRIVATE_KEY: str = ""

    # Outbound HTTP
    OUTBOUND_TIMEOUT_SECONDS: float = 30.0
    OUTBOUND_MAX_RETRIES: int = 3
    OUTBOUND_BACKOFF_CAP_SECONDS: float = 30.0

    # IPFS pinning (frontend pins; reported by /api/health/ready)
    PINATA_API_KEY: str = ""
    PINATA_SECRET_KEY: str = ""

    # Document storage
    DISK_MOUNT_PATH: str = "/var/data"
    DOCUMENT_STORAGE_PATH: str = "uploads/documents"
    INLINE_BLOB_MAX_BYTES: int = 512 * 1024
    MAX_UPLOAD_SIZE: int = 100 * 1024 * 1024  # 100MB
    ORPHAN_BLOB_GRACE_HOURS: int = 24

    # Notice listings
    RECENT_NOTICES_LIMIT: int = 20

    # Energy.Store proxy
    ENERGY_STORE_API_URL: str = "https://energy.store/api"
    ENERGY_STORE_API_ID: str = ""
    ENERGY_STORE_API_KEY: str = ""

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    ORPHAN_SWEEP_INTERVAL_MINUTES: int = 60
    RECONCILIATION_ENABLED: bool = False
    RECONCILIATION_INTERVAL_MINUTES: int = 360

    # CORS
    CORS_ORIGINS: str = '["http://localhost:3000"]'
    CORS_ORIGIN_REGEX: str = ""

    @field_validator("TRON_NETWORK", mode="before")
    @classmethod
    def normalize_network(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from string to list"""
        try:
            if isinstance(self.CORS_ORIGINS, str):
                return json.loads(self.CORS_ORIGINS)
            return self.CORS_ORIGINS
        except json.JSONDecodeError:
            return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def trongrid_url(self) -> str:
        """TronGrid host for the configured network."""
        if self.TRONGRID_API_URL:
            return self.TRONGRID_API_URL.rstrip("/")
        if self.TRON_NETWORK == "mainnet":
            return "https://api.trongrid.io"
        if self.TRON_NETWORK == "shasta":
            return "https://api.shasta.trongrid.io"
        return "https://nile.trongrid.io"

    @property
    def primary_storage_root(self) -> str:
        return os.path.join(self.DISK_MOUNT_PATH, "documents")

    @property
    def energy_store_configured(self) -> bool:
        return bool(self.ENERGY_STORE_API_ID and self.ENERGY_STORE_API_KEY)


# Create settings instance
settings = Settings()

"""
SQLAlchemy ORM Models

One normalized schema for cases, notices, stored blobs, access state and the
audit/reconciliation trail. Legacy overlapping tables are folded in by
migrations/consolidate_legacy_notice_tables.py.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Enum as SQLEnum,
    Integer,
    JSON,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy import Index

from blockserved.db.database import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# ============================================================================
# Enums
# ============================================================================

class CaseStatus(str, enum.Enum):
    """Case lifecycle"""
    draft = "draft"
    served = "served"
    closed = "closed"

class NoticeSource(str, enum.Enum):
    """Where a notice row came from"""
    api = "api"
    chain_reconstructed = "chain_reconstructed"

class BlobKind(str, enum.Enum):
    alert_thumbnail = "alert_thumbnail"
    document_full = "document_full"

class StorageType(str, enum.Enum):
    inline = "inline"
    disk = "disk"
    local = "local"

class AccessStatus(str, enum.Enum):
    """Per (wallet, notice) access state. signed is terminal."""
    viewed = "viewed"
    signed = "signed"

class DiscrepancyKind(str, enum.Enum):
    missing_in_db = "missing_in_db"
    owner_mismatch = "owner_mismatch"
    not_minted = "not_minted"
    chain_unavailable = "chain_unavailable"
    token_pair_convention = "token_pair_convention"
    metadata_mismatch = "metadata_mismatch"


# ============================================================================
# Models
# ============================================================================

class Case(Base):
    """Case prepared or served by a process server. Never hard-deleted."""
    __tablename__ = "cases"
    __table_args__ = (
        UniqueConstraint("case_number", "server_key", name="uq_cases_number_server"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_number = Column(String(100), nullable=False, index=True)
    server_address = Column(String(64), nullable=False)
    server_key = Column(String(64), nullable=False, index=True)  # lower(server_address)
    status = Column(SQLEnum(CaseStatus), nullable=False, default=CaseStatus.draft)
    description = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Notice(Base):
    """Served legal notice: one Alert token plus one Document token."""
    __tablename__ = "notices"
    __table_args__ = (
        Index("ix_notices_server_created", "server_address", "created_at"),
        Index("ix_notices_recipient", "recipient_address"),
    )

    notice_id = Column(String(100), primary_key=True)
    case_number = Column(String(100), nullable=False, index=True)

    # On-chain identity
    alert_token_id = Column(BigInteger, nullable=True, index=True)
    document_token_id = Column(BigInteger, nullable=True, index=True)
    transaction_hash = Column(String(100), nullable=True)
    block_number = Column(BigInteger, nullable=True)
    chain_verified = Column(Boolean, nullable=False, default=False)

    # Parties
    recipient_address = Column(String(64), nullable=False)
    recipient_name = Column(String(255), nullable=True)
    server_address = Column(String(64), nullable=False)

    # Content
    notice_type = Column(String(100), nullable=False, default="Legal Notice")
    issuing_agency = Column(String(255), nullable=True)
    ipfs_hash = Column(Text, nullable=True)
    encryption_key = Column(Text, nullable=True)
    page_count = Column(Integer, nullable=True)

    # Acceptance (first signature wins)
    accepted = Column(Boolean, nullable=False, default=False)
    accepted_at = Column(TIMESTAMP, nullable=True)
    acceptance_signature = Column(Text, nullable=True)

    # Server-side archive flag
    dismissed = Column(Boolean, nullable=False, default=False)
    dismissed_at = Column(TIMESTAMP, nullable=True)

    source = Column(SQLEnum(NoticeSource), nullable=False, default=NoticeSource.api)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class NoticeBlob(Base):
    """
    Stored image or document bytes. notice_id is not a foreign key: uploads
    may land before the notice row is created.
    """
    __tablename__ = "notice_blobs"
    __table_args__ = (
        Index("ix_notice_blobs_notice_kind", "notice_id", "kind"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    notice_id = Column(String(100), nullable=True)
    kind = Column(SQLEnum(BlobKind), nullable=False)
    storage_type = Column(SQLEnum(StorageType), nullable=False)

    inline_data = Column(Text, nullable=True)  # base64
    file_name = Column(String(255), nullable=True, unique=True)
    file_path = Column(Text, nullable=True)
    original_name = Column(String(255), nullable=True)

    mime_type = Column(String(100), nullable=False, default="application/octet-stream")
    size_bytes = Column(BigInteger, nullable=False, default=0)
    checksum_sha256 = Column(String(64), nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)


class AccessRecord(Base):
    """View/sign state for one wallet on one notice."""
    __tablename__ = "access_records"
    __table_args__ = (
        UniqueConstraint("notice_id", "wallet_key", name="uq_access_records_notice_wallet"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    notice_id = Column(String(100), nullable=False, index=True)
    wallet_address = Column(String(64), nullable=False)
    wallet_key = Column(String(64), nullable=False)  # lower(wallet_address)
    status = Column(SQLEnum(AccessStatus), nullable=False, default=AccessStatus.viewed)

    viewed_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    signed_at = Column(TIMESTAMP, nullable=True)
    signature = Column(Text, nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)


class AccessAttempt(Base):
    """Every authorization decision, granted or denied."""
    __tablename__ = "access_attempts"
    __table_args__ = (
        Index("ix_access_attempts_notice_time", "notice_id", "attempted_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    notice_id = Column(String(100), nullable=False)
    wallet_address = Column(String(64), nullable=False)
    alert_token_id = Column(BigInteger, nullable=True)
    document_token_id = Column(BigInteger, nullable=True)

    is_recipient = Column(Boolean, nullable=False, default=False)
    is_server = Column(Boolean, nullable=False, default=False)
    granted = Column(Boolean, nullable=False, default=False)
    reason = Column(String(100), nullable=False)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    attempted_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)


class AuditLog(Base):
    """Forensic log of recipient queries and document views."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action_type = Column(String(100), nullable=False, index=True)
    actor_address = Column(String(64), nullable=True, index=True)
    target_id = Column(String(100), nullable=True)
    details = Column(JSONType, nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    accept_language = Column(String(255), nullable=True)
    timezone = Column(String(100), nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)


class ReconciliationDiscrepancy(Base):
    """DB/chain disagreement found by reconciliation. Resolved by a human."""
    __tablename__ = "reconciliation_discrepancies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(64), nullable=False, index=True)
    token_id = Column(BigInteger, nullable=True)
    notice_id = Column(String(100), nullable=True)
    kind = Column(SQLEnum(DiscrepancyKind), nullable=False)
    expected = Column(Text, nullable=True)
    actual = Column(Text, nullable=True)
    detail = Column(Text, nullable=True)

    resolved = Column(Boolean, nullable=False, default=False)
    detected_at = Column(TIMESTAMP, nullable=False, default=datetime.utcnow)
    resolved_at = Column(TIMESTAMP, nullable=True)

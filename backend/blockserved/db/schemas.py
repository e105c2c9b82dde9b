"""
Pydantic validation schemas

Request bodies accept the camelCase keys the frontend sends; snake_case
names are accepted too.
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from blockserved.db.models import DiscrepancyKind


class _Body(BaseModel):
    class Config:
        populate_by_name = True


# ============================================================================
# Notice Schemas
# ============================================================================

class NoticeCreate(_Body):
    case_number: str = Field(..., alias="caseNumber")
    recipient_address: str = Field(..., alias="recipientAddress")
    server_address: str = Field(..., alias="serverAddress")
    notice_type: str = Field("Legal Notice", alias="noticeType")
    issuing_agency: Optional[str] = Field(None, alias="issuingAgency")
    ipfs_hash: Optional[str] = Field(None, alias="ipfsHash")
    encryption_key: Optional[str] = Field(None, alias="encryptionKey")
    notice_id: Optional[str] = Field(None, alias="noticeId")
    alert_token_id: Optional[int] = Field(None, alias="alertId")
    document_token_id: Optional[int] = Field(None, alias="documentId")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
    block_number: Optional[int] = Field(None, alias="blockNumber")
    page_count: Optional[int] = Field(None, alias="pageCount")
    recipient_name: Optional[str] = Field(None, alias="recipientName")


class NoticeOwnerAction(_Body):
    """Body for dismiss / restore"""
    notice_id: Optional[str] = Field(None, alias="noticeId")
    server_address: Optional[str] = Field(None, alias="serverAddress")


class TransactionRecord(_Body):
    transaction_hash: str = Field(..., alias="transactionHash")
    block_number: Optional[int] = Field(None, alias="blockNumber")


class AcceptRequest(_Body):
    signature: Optional[str] = None
    ip_address: Optional[str] = Field(None, alias="ipAddress")
    user_agent: Optional[str] = Field(None, alias="userAgent")


class VerifyRecipientRequest(_Body):
    wallet_address: str = Field(..., alias="walletAddress")
    notice_id: str = Field(..., alias="noticeId")


class ThumbnailStore(_Body):
    notice_id: str = Field(..., alias="noticeId")
    thumbnail: str  # base64 or data URI


class DocumentAttach(_Body):
    """Link an upload that arrived before its notice"""
    file_name: str = Field(..., alias="fileName")
    notice_id: str = Field(..., alias="noticeId")


# ============================================================================
# Case Schemas
# ============================================================================

class CaseCreate(_Body):
    case_number: str = Field(..., alias="caseNumber", min_length=1, max_length=100)
    server_address: str = Field(..., alias="serverAddress")
    description: Optional[str] = None


class CaseStatusUpdate(_Body):
    status: str
    server_address: Optional[str] = Field(None, alias="serverAddress")


# ============================================================================
# Energy Schemas
# ============================================================================

class EnergyOrderCreate(_Body):
    quantity: int = Field(..., gt=0)
    receiver: str
    period: int = 1


class EnergyOrderCheck(_Body):
    order_id: str = Field(..., alias="orderID")


class EnergyAddressCheck(_Body):
    address: str


# ============================================================================
# Response Schemas
# ============================================================================

class DiscrepancyResponse(BaseModel):
    id: int
    run_id: str
    token_id: Optional[int] = None
    notice_id: Optional[str] = None
    kind: DiscrepancyKind
    expected: Optional[str] = None
    actual: Optional[str] = None
    detail: Optional[str] = None
    resolved: bool
    detected_at: datetime

    class Config:
        from_attributes = True


class AccessAttemptResponse(BaseModel):
    wallet_address: str
    granted: bool
    reason: str
    is_recipient: bool
    is_server: bool
    ip_address: Optional[str] = None
    attempted_at: datetime

    class Config:
        from_attributes = True

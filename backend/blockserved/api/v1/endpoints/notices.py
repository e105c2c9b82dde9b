"""
Notice endpoints (process server side)
"""
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from blockserved.api.v1.deps import (
    get_chain_client,
    get_storage,
    public_base_url,
    require_server_address,
    require_wallet_address,
)
from blockserved.core.logger import logger
from blockserved.db.database import get_db
from blockserved.db.models import BlobKind
from blockserved.db.schemas import NoticeCreate, NoticeOwnerAction, TransactionRecord
from blockserved.middleware.client_context import ClientContext, get_client_context
from blockserved.services.access_gate import access_gate
from blockserved.services.audit_service import audit_service
from blockserved.services.notice_service import NoticeService, notice_to_dict
from blockserved.services.receipt_service import build_receipt_pdf
from blockserved.services.storage_service import DocumentStorage
from blockserved.services.tron_client import TronClient
from blockserved.utils.exceptions import BlockchainUnavailableError, NotFoundError
from blockserved.utils.helpers import format_timestamp
from blockserved.utils.tron_address import same_address

router = APIRouter()


# ============================================================================
# Create
# ============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_notice(
    body: NoticeCreate,
    db: Session = Depends(get_db),
):
    """Persist notice metadata after the server has minted on-chain."""
    notice_id = NoticeService.create_notice(db, **body.model_dump())
    return {"success": True, "noticeId": notice_id}


# ============================================================================
# Server views
# ============================================================================

@router.get("/recent")
def recent_notices(
    server_address: str = Depends(require_server_address),
    db: Session = Depends(get_db),
):
    """Most recent active notices for the server; dismissed ones are hidden."""
    notices = NoticeService.list_recent(db, server_address)
    return {
        "success": True,
        "notices": [notice_to_dict(n) for n in notices],
        "totalActive": NoticeService.count_active(db, server_address),
    }


@router.get("/all-served")
def all_served_notices(
    server_address: str = Depends(require_server_address),
    db: Session = Depends(get_db),
):
    """Every notice the server sent, including archived ones, with totals."""
    rows, stats = NoticeService.list_all(db, server_address)
    return {
        "success": True,
        "notices": [{**notice_to_dict(n), "status": s} for n, s in rows],
        "stats": stats,
    }


@router.post("/dismiss")
def dismiss_notice(
    body: NoticeOwnerAction,
    x_server_address: Optional[str] = Header(None),
    client: ClientContext = Depends(get_client_context),
    db: Session = Depends(get_db),
):
    server_address = body.server_address or x_server_address
    notice = NoticeService.dismiss(db, body.notice_id, server_address)
    audit_service.log(db, audit_service.NOTICE_DISMISS, server_address, notice.notice_id, client=client)
    return {"success": True, "message": f"Notice #{body.notice_id} dismissed from recent view"}


@router.post("/restore")
def restore_notice(
    body: NoticeOwnerAction,
    x_server_address: Optional[str] = Header(None),
    client: ClientContext = Depends(get_client_context),
    db: Session = Depends(get_db),
):
    server_address = body.server_address or x_server_address
    notice = NoticeService.restore(db, body.notice_id, server_address)
    audit_service.log(db, audit_service.NOTICE_RESTORE, server_address, notice.notice_id, client=client)
    return {"success": True, "message": f"Notice #{body.notice_id} restored to recent view"}


# ============================================================================
# Per-notice
# ============================================================================

@router.get("/{notice_id}/images")
def notice_images(
    notice_id: str,
    request: Request,
    wallet: str = Depends(require_wallet_address),
    client: ClientContext = Depends(get_client_context),
    storage: DocumentStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """Image/document URLs for the recipient or the process server only."""
    decision = access_gate.require(db, wallet, notice_id, client)
    notice = decision.notice
    if decision.is_recipient:
        access_gate.record_view(db, wallet, notice, client)

    base_url = public_base_url(request)
    thumbnail = storage.latest_ref(db, notice.notice_id, BlobKind.alert_thumbnail)
    document = storage.latest_ref(db, notice.notice_id, BlobKind.document_full)

    if decision.is_server:
        message = "Access granted - you are the process server who sent this notice"
    else:
        message = "Access granted - you are the recipient of this notice"

    return {
        "success": True,
        "noticeId": notice.notice_id,
        "alertThumbnailUrl": storage.public_url(db, thumbnail, base_url),
        "documentUnencryptedUrl": storage.public_url(db, document, base_url),
        "caseNumber": notice.case_number,
        "recipientAddress": notice.recipient_address,
        "serverAddress": notice.server_address,
        "pageCount": notice.page_count,
        "isServer": decision.is_server,
        "isRecipient": decision.is_recipient,
        "message": message,
    }


@router.get("/{notice_id}/transaction")
def notice_transaction(
    notice_id: str,
    chain: TronClient = Depends(get_chain_client),
    db: Session = Depends(get_db),
):
    notice = NoticeService.get_notice(db, notice_id)
    if not notice.transaction_hash:
        raise NotFoundError("Transaction hash not found for this notice")

    block_number = notice.block_number
    if block_number is None:
        # On-chain enrichment is best-effort on this read path.
        try:
            info = chain.get_transaction_info(notice.transaction_hash)
            if info and info.block_number is not None:
                notice = NoticeService.record_transaction(
                    db, notice.notice_id, notice.transaction_hash, info.block_number
                )
                block_number = info.block_number
        except BlockchainUnavailableError as e:
            logger.warning(f"Block lookup for {notice.notice_id} skipped: {e.reason}")

    return {
        "success": True,
        "transactionHash": notice.transaction_hash,
        "blockNumber": block_number,
        "caseNumber": notice.case_number,
        "recipientAddress": notice.recipient_address,
        "timestamp": format_timestamp(notice.created_at),
    }


@router.post("/{notice_id}/transaction")
def record_notice_transaction(
    notice_id: str,
    body: TransactionRecord,
    server_address: str = Depends(require_server_address),
    db: Session = Depends(get_db),
):
    notice = NoticeService.get_notice(db, notice_id)
    if not same_address(notice.server_address, server_address):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only update notices you served"
        )
    notice = NoticeService.record_transaction(db, notice.notice_id, body.transaction_hash, body.block_number)
    return {"success": True, "transactionHash": notice.transaction_hash, "blockNumber": notice.block_number}


@router.get("/{notice_id}/receipt")
def notice_receipt(
    notice_id: str,
    wallet: str = Depends(require_wallet_address),
    client: ClientContext = Depends(get_client_context),
    db: Session = Depends(get_db),
):
    """Proof-of-service PDF for either party."""
    decision = access_gate.require(db, wallet, notice_id, client)
    pdf = build_receipt_pdf(decision.notice)
    headers = {"Content-Disposition": f'inline; filename="proof-of-service-{decision.notice_id}.pdf"'}
    return StreamingResponse(BytesIO(pdf), media_type="application/pdf", headers=headers)

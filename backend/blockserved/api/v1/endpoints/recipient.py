"""
Recipient portal endpoints

Every query and document view is written to the audit log with the
client's IP, user agent, language and timezone.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from blockserved.api.v1.deps import get_storage, public_base_url
from blockserved.db.database import get_db
from blockserved.db.models import AccessRecord, AccessStatus, BlobKind, Notice
from blockserved.db.schemas import AcceptRequest
from blockserved.middleware.client_context import ClientContext, get_client_context
from blockserved.services.access_gate import STATUS_NOT_VIEWED, access_gate
from blockserved.services.audit_service import audit_service
from blockserved.services.notice_service import NoticeService
from blockserved.services.storage_service import DocumentStorage
from blockserved.utils.exceptions import NotFoundError
from blockserved.utils.helpers import format_timestamp
from blockserved.utils.tron_address import same_address
from blockserved.utils.validators import validate_tron_address

router = APIRouter()

NOT_RECIPIENT = "Notice not found or you are not the recipient"


def _summary(
    notice: Notice,
    record: Optional[AccessRecord],
    storage: DocumentStorage,
    db: Session,
    base_url: str,
) -> dict:
    thumbnail = storage.latest_ref(db, notice.notice_id, BlobKind.alert_thumbnail)
    document = storage.latest_ref(db, notice.notice_id, BlobKind.document_full)
    return {
        "notice_id": notice.notice_id,
        "alert_token_id": notice.alert_token_id,
        "document_token_id": notice.document_token_id,
        "case_number": notice.case_number,
        "notice_type": notice.notice_type or "Legal Notice",
        "issuing_agency": notice.issuing_agency,
        "served_at": format_timestamp(notice.created_at),
        "transaction_hash": notice.transaction_hash,
        "ipfs_hash": notice.ipfs_hash,
        "alert_image": storage.public_url(db, thumbnail, base_url),
        "page_count": notice.page_count,
        "server_address": notice.server_address,
        "has_document": document is not None or bool(notice.ipfs_hash),
        "accepted": bool(notice.accepted),
        "status": record.status.value if record else STATUS_NOT_VIEWED,
    }


@router.get("/{address}/notices")
def recipient_notices(
    address: str,
    request: Request,
    client: ClientContext = Depends(get_client_context),
    storage: DocumentStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """All notices served to this wallet, with view/sign status."""
    address = validate_tron_address(address, "recipient address")
    rows = NoticeService.list_for_recipient(db, address)
    audit_service.log_recipient_query(db, address, len(rows), client)

    base_url = public_base_url(request)
    notices = [_summary(n, r, storage, db, base_url) for n, r in rows]
    return {"success": True, "notices": notices, "total": len(notices)}


@router.get("/{address}/notice/{alert_id}/document")
def recipient_document(
    address: str,
    alert_id: str,
    request: Request,
    client: ClientContext = Depends(get_client_context),
    storage: DocumentStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """Document payload for the recipient; moves the wallet to Viewed."""
    decision = access_gate.authorize(db, address, alert_id, client)
    if not decision.is_recipient:
        audit_service.log_document_view(db, address, str(alert_id), False, client)
        raise NotFoundError(NOT_RECIPIENT)

    notice = decision.notice
    record = access_gate.record_view(db, address, notice, client)
    audit_service.log_document_view(db, address, notice.notice_id, True, client)

    base_url = public_base_url(request)
    document = storage.latest_ref(db, notice.notice_id, BlobKind.document_full)
    payload = _summary(notice, record, storage, db, base_url)
    payload.update({
        "encryption_key": notice.encryption_key,
        "document_url": storage.public_url(db, document, base_url),
        "recipient_address": notice.recipient_address,
        "alreadySigned": record.status == AccessStatus.signed,
        "signedAt": format_timestamp(record.signed_at),
    })
    return {"success": True, "notice": payload}


@router.post("/{address}/notice/{alert_id}/accept")
def recipient_accept(
    address: str,
    alert_id: str,
    body: AcceptRequest,
    client: ClientContext = Depends(get_client_context),
    db: Session = Depends(get_db),
):
    """Recipient signs for the notice. Repeating returns the original signature time."""
    if body.ip_address or body.user_agent:
        client = ClientContext(
            ip_address=body.ip_address or client.ip_address,
            user_agent=body.user_agent or client.user_agent,
            accept_language=client.accept_language,
            timezone=client.timezone,
            wallet_address=client.wallet_address,
        )

    record, already_signed = access_gate.sign(db, address, alert_id, body.signature, client)
    audit_service.log(
        db,
        audit_service.RECIPIENT_DOCUMENT_ACCEPT,
        actor_address=address,
        target_id=record.notice_id,
        details={"already_signed": already_signed},
        client=client,
    )
    return {
        "success": True,
        "alreadySigned": already_signed,
        "signedAt": format_timestamp(record.signed_at),
        "message": "Document was already accepted" if already_signed else "Document accepted successfully",
    }


@router.get("/{address}/notice/{alert_id}/status")
def recipient_status(
    address: str,
    alert_id: str,
    db: Session = Depends(get_db),
):
    notice = NoticeService.find_notice(db, alert_id)
    if notice is None or not same_address(notice.recipient_address, address):
        raise NotFoundError(NOT_RECIPIENT)
    return {
        "success": True,
        "noticeId": notice.notice_id,
        "status": access_gate.status(db, address, notice.notice_id),
        "accepted": bool(notice.accepted),
        "acceptedAt": format_timestamp(notice.accepted_at),
    }

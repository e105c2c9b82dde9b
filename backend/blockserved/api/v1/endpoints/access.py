"""
Document access control endpoints
"""
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from blockserved.api.v1.deps import get_storage, require_server_address
from blockserved.db.database import get_db
from blockserved.db.models import BlobKind
from blockserved.db.schemas import AccessAttemptResponse, VerifyRecipientRequest
from blockserved.middleware.client_context import ClientContext, get_client_context
from blockserved.services.access_gate import REASON_NOT_FOUND, access_gate
from blockserved.services.notice_service import NoticeService
from blockserved.services.storage_service import DocumentStorage
from blockserved.utils.exceptions import AuthorizationError, NotFoundError
from blockserved.utils.helpers import format_timestamp

router = APIRouter()


@router.post("/verify-recipient")
def verify_recipient(
    body: VerifyRecipientRequest,
    client: ClientContext = Depends(get_client_context),
    db: Session = Depends(get_db),
):
    """
    Check a wallet against a notice and, when granted, issue a short-lived
    token for fetching the document.
    """
    decision = access_gate.authorize(db, body.wallet_address, body.notice_id, client)
    if decision.reason == REASON_NOT_FOUND:
        raise NotFoundError("Notice not found")
    if not decision.granted:
        raise AuthorizationError("Access denied - only the recipient or process server can view this document")

    token, expires_at = access_gate.issue_access_token(decision.wallet_address, decision.notice_id)
    return {
        "success": True,
        "noticeId": decision.notice_id,
        **decision.as_dict(),
        "accessToken": token,
        "expiresAt": format_timestamp(expires_at),
    }


@router.get("/document/{notice_id}")
def get_document(
    notice_id: str,
    x_access_token: Optional[str] = Header(None),
    storage: DocumentStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """Stream the full document for a holder of a valid access token."""
    notice = NoticeService.get_notice(db, notice_id)
    access_gate.verify_access_token(x_access_token, notice.notice_id)

    ref = storage.latest_ref(db, notice.notice_id, BlobKind.document_full)
    if ref is None:
        raise NotFoundError("Document not found for this notice")
    data = storage.retrieve(db, ref)
    headers = {"Content-Disposition": f'inline; filename="{notice.notice_id}.pdf"'}
    return StreamingResponse(BytesIO(data), media_type=ref.mime_type, headers=headers)


@router.get("/public/{token_id}")
def public_notice_info(
    token_id: str,
    db: Session = Depends(get_db),
):
    """What anyone can see about a token: no parties' content, no keys."""
    notice = NoticeService.get_notice(db, token_id)
    return {
        "success": True,
        "alertTokenId": notice.alert_token_id,
        "documentTokenId": notice.document_token_id,
        "noticeType": notice.notice_type,
        "issuingAgency": notice.issuing_agency,
        "servedAt": format_timestamp(notice.created_at),
        "accepted": bool(notice.accepted),
        "requiresAuthentication": True,
    }


@router.get("/attempts/{notice_id}")
def access_attempts(
    notice_id: str,
    limit: int = Query(100, ge=1, le=500),
    server_address: str = Depends(require_server_address),
    db: Session = Depends(get_db),
):
    """Access history for the process server who sent the notice."""
    attempts = access_gate.list_attempts(db, notice_id, server_address, limit)
    return {
        "success": True,
        "attempts": [AccessAttemptResponse.model_validate(a).model_dump(mode="json") for a in attempts],
    }

"""
Document storage endpoints (disk-backed)

Uploaded PDFs are written through the storage adapter; files are served
by their generated file name.
"""
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy.orm import Session

from blockserved.api.v1.deps import get_storage, public_base_url, require_server_address, require_wallet_address
from blockserved.core.logger import logger
from blockserved.db.database import get_db
from blockserved.db.models import BlobKind
from blockserved.db.schemas import DocumentAttach, ThumbnailStore
from blockserved.middleware.client_context import ClientContext, get_client_context
from blockserved.services.access_gate import access_gate
from blockserved.services.audit_service import audit_service
from blockserved.services.notice_service import NoticeService
from blockserved.services.storage_service import DocumentStorage, count_pdf_pages, is_pdf
from blockserved.utils.exceptions import AuthorizationError, NotFoundError, ValidationError
from blockserved.utils.helpers import absolute_url, decode_base64_payload
from blockserved.utils.tron_address import same_address

router = APIRouter()


def _canonical_notice_id(db: Session, notice_id: Optional[str]) -> Optional[str]:
    """Token ids are stored under the notice they belong to, when it exists."""
    if not notice_id:
        return None
    notice = NoticeService.find_notice(db, notice_id)
    return notice.notice_id if notice is not None else (notice_id.strip() or None)


@router.post("/upload-to-disk")
async def upload_to_disk(
    request: Request,
    pdf: UploadFile = File(...),
    notice_id: Optional[str] = Form(None, alias="noticeId"),
    client: ClientContext = Depends(get_client_context),
    storage: DocumentStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """
    Store an unencrypted PDF for a notice. The upload may arrive before the
    notice itself is created.
    """
    data = await pdf.read()
    if not is_pdf(data, pdf.filename):
        raise ValidationError("Only PDF files are allowed")

    notice_id = _canonical_notice_id(db, notice_id)
    ref = storage.store(
        db,
        notice_id,
        BlobKind.document_full,
        data,
        mime_type="application/pdf",
        original_name=pdf.filename,
    )
    page_count = count_pdf_pages(data)
    if notice_id:
        NoticeService.set_page_count(db, notice_id, page_count)

    audit_service.log(
        db,
        audit_service.DOCUMENT_UPLOAD,
        actor_address=client.wallet_address,
        target_id=notice_id,
        details={"file_name": ref.file_name, "size": ref.size_bytes, "storage": ref.storage_type.value},
        client=client,
    )
    return {
        "success": True,
        "path": ref.file_path,
        "url": absolute_url(public_base_url(request), ref.url),
        "fileName": ref.file_name,
        "size": ref.size_bytes,
        "storageType": ref.storage_type.value,
        "pageCount": page_count,
    }


@router.get("/serve/{filename}")
def serve_document(
    filename: str,
    storage: DocumentStorage = Depends(get_storage),
):
    path = storage.resolve_file(filename)
    if path is None:
        raise NotFoundError("File not found")
    return FileResponse(
        path,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@router.post("/store-thumbnail")
def store_thumbnail(
    body: ThumbnailStore,
    request: Request,
    storage: DocumentStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """Alert image as base64 or a data URI; small images stay inline."""
    try:
        data, mime_type = decode_base64_payload(body.thumbnail)
    except ValueError:
        raise ValidationError("Thumbnail is not valid base64")

    notice_id = _canonical_notice_id(db, body.notice_id)
    ref = storage.store(db, notice_id, BlobKind.alert_thumbnail, data, mime_type=mime_type or "image/png")
    logger.info(f"Stored thumbnail for notice {notice_id} ({ref.size_bytes} bytes, {ref.storage_type.value})")
    return {
        "success": True,
        "noticeId": notice_id,
        "storageType": ref.storage_type.value,
        "size": ref.size_bytes,
        "url": storage.public_url(db, ref, public_base_url(request)),
    }


@router.get("/get-from-disk/{notice_id}")
def get_from_disk(
    notice_id: str,
    wallet: str = Depends(require_wallet_address),
    client: ClientContext = Depends(get_client_context),
    storage: DocumentStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """Latest stored PDF for a notice, for its recipient or process server."""
    decision = access_gate.require(db, wallet, notice_id, client)
    if decision.is_recipient:
        access_gate.record_view(db, wallet, decision.notice, client)

    ref = storage.latest_ref(db, decision.notice_id, BlobKind.document_full)
    if ref is None:
        raise NotFoundError("Document not found for this notice")
    data = storage.retrieve(db, ref)
    headers = {"Content-Disposition": f'inline; filename="{ref.file_name}"'}
    return StreamingResponse(BytesIO(data), media_type=ref.mime_type, headers=headers)


@router.post("/attach")
def attach_document(
    body: DocumentAttach,
    request: Request,
    server_address: str = Depends(require_server_address),
    client: ClientContext = Depends(get_client_context),
    storage: DocumentStorage = Depends(get_storage),
    db: Session = Depends(get_db),
):
    """
    Link an upload made before the notice existed, so the orphan sweep keeps
    it. Only the notice's process server may attach.
    """
    notice = NoticeService.get_notice(db, body.notice_id)
    if not same_address(notice.server_address, server_address):
        raise AuthorizationError("You can only attach documents to notices you served")

    ref = storage.ref_for_file(db, body.file_name)
    if ref is None:
        raise NotFoundError("Stored document not found")
    ref = storage.attach(db, ref, notice.notice_id)
    if ref.mime_type == "application/pdf":
        NoticeService.set_page_count(db, notice.notice_id, count_pdf_pages(storage.retrieve(db, ref)))

    audit_service.log(
        db,
        audit_service.DOCUMENT_ATTACH,
        actor_address=server_address,
        target_id=notice.notice_id,
        details={"file_name": ref.file_name},
        client=client,
    )
    return {
        "success": True,
        "noticeId": notice.notice_id,
        "fileName": ref.file_name,
        "url": storage.public_url(db, ref, public_base_url(request)),
    }

# blockserved/services/storage_service.py
"""
Document/Image Storage Adapter

Small alert thumbnails are kept inline (base64 in the notice_blobs row).
Full documents are written to disk: the persistent mount
(DISK_MOUNT_PATH/documents) first, then DOCUMENT_STORAGE_PATH when the
mount is missing or not writable. Every blob gets a row in notice_blobs so
callers only ever hold a StorageRef.
"""
import base64
import hashlib
import io
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from pypdf import PdfReader
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from blockserved.core.config import settings
from blockserved.core.logger import logger
from blockserved.db.models import BlobKind, Notice, NoticeBlob, StorageType
from blockserved.utils.exceptions import NotFoundError, StorageError, ValidationError
from blockserved.utils.helpers import absolute_url, safe_file_name

PDF_MAGIC = b"%PDF"
SIMPLE_PREFIX = "simple_"

_EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


@dataclass
class StorageRef:
    blob_id: int
    notice_id: Optional[str]
    kind: BlobKind
    storage_type: StorageType
    file_name: Optional[str]
    file_path: Optional[str]
    size_bytes: int
    mime_type: str
    checksum_sha256: str

    @property
    def url(self) -> Optional[str]:
        if self.file_name:
            return f"/api/v2/documents/serve/{self.file_name}"
        return None


def is_pdf(data: bytes, filename: Optional[str] = None) -> bool:
    if data[:4] == PDF_MAGIC:
        return True
    return bool(filename) and filename.lower().endswith(".pdf")


def simple_file_name(file_id: str) -> str:
    return f"{SIMPLE_PREFIX}{safe_file_name(file_id)}.pdf"


def count_pdf_pages(data: bytes) -> Optional[int]:
    """Best-effort page count; None when the bytes are not a readable PDF."""
    try:
        return len(PdfReader(io.BytesIO(data)).pages)
    except Exception as e:
        logger.warning(f"Could not read PDF page count: {str(e)}")
        return None


def _ref(blob: NoticeBlob) -> StorageRef:
    return StorageRef(
        blob_id=blob.id,
        notice_id=blob.notice_id,
        kind=blob.kind,
        storage_type=blob.storage_type,
        file_name=blob.file_name,
        file_path=blob.file_path,
        size_bytes=blob.size_bytes,
        mime_type=blob.mime_type,
        checksum_sha256=blob.checksum_sha256,
    )


class DocumentStorage:
    """
    Service layer for document and image bytes.
    """

    def __init__(
        self,
        primary_root: Optional[str] = None,
        fallback_root: Optional[str] = None,
        inline_max_bytes: Optional[int] = None,
    ):
        self.primary_root = primary_root or settings.primary_storage_root
        self.fallback_root = fallback_root or settings.DOCUMENT_STORAGE_PATH
        self.inline_max_bytes = (
            settings.INLINE_BLOB_MAX_BYTES if inline_max_bytes is None else inline_max_bytes
        )

    # ── Disk ──────────────────────────────────────────────────────────────────

    def _write_file(self, file_name: str, data: bytes) -> tuple[str, StorageType]:
        """Write to the primary root, falling back to the local root on OSError."""
        attempts = [(self.primary_root, StorageType.disk), (self.fallback_root, StorageType.local)]
        last_error: Optional[OSError] = None
        for root, storage_type in attempts:
            path = os.path.join(root, file_name)
            try:
                os.makedirs(root, exist_ok=True)
                with open(path, "wb") as fh:
                    fh.write(data)
                logger.info(f"Stored {file_name} ({len(data)} bytes) on {storage_type.value} storage at {root}")
                return path, storage_type
            except OSError as e:
                last_error = e
                logger.warning(f"Storage root {root} unavailable for {file_name}: {str(e)}")
        raise StorageError(f"All storage roots failed for {file_name}: {last_error}")

    def resolve_file(self, file_name: str) -> Optional[str]:
        """Path of file_name under the primary or fallback root, if present."""
        name = safe_file_name(file_name)
        if not name:
            return None
        for root in (self.primary_root, self.fallback_root):
            path = os.path.join(root, name)
            if os.path.isfile(path):
                return path
        return None

    # ── Store / retrieve ──────────────────────────────────────────────────────

    def store(
        self,
        db: Session,
        notice_id: Optional[str],
        kind: BlobKind,
        data: bytes,
        mime_type: Optional[str] = None,
        original_name: Optional[str] = None,
    ) -> StorageRef:
        """
        Persist bytes for a notice. Thumbnails within the inline limit go into
        the row; everything else goes to disk.
        """
        if not data:
            raise ValidationError("Empty upload")
        if len(data) > settings.MAX_UPLOAD_SIZE:
            raise ValidationError("File exceeds maximum upload size")

        mime_type = mime_type or ("application/pdf" if is_pdf(data, original_name) else "application/octet-stream")
        checksum = hashlib.sha256(data).hexdigest()
        blob = NoticeBlob(
            notice_id=notice_id,
            kind=kind,
            mime_type=mime_type,
            size_bytes=len(data),
            checksum_sha256=checksum,
            original_name=original_name,
        )

        if kind == BlobKind.alert_thumbnail and len(data) <= self.inline_max_bytes:
            blob.storage_type = StorageType.inline
            blob.inline_data = base64.b64encode(data).decode("ascii")
        else:
            file_name = self._file_name_for(notice_id, kind, mime_type)
            blob.file_path, blob.storage_type = self._write_file(file_name, data)
            blob.file_name = file_name

        try:
            db.add(blob)
            db.commit()
            db.refresh(blob)
        except SQLAlchemyError as e:
            db.rollback()
            if blob.file_path:
                self._unlink(blob.file_path)
            raise StorageError(f"Failed to record blob for notice {notice_id}: {str(e)}")

        return _ref(blob)

    def retrieve(self, db: Session, ref: StorageRef) -> bytes:
        blob = db.query(NoticeBlob).filter(NoticeBlob.id == ref.blob_id).first()
        if blob is None:
            raise NotFoundError("Stored document not found")
        return self._read_blob(blob)

    def _read_blob(self, blob: NoticeBlob) -> bytes:
        if blob.storage_type == StorageType.inline:
            return base64.b64decode(blob.inline_data or "")
        path = blob.file_path if blob.file_path and os.path.isfile(blob.file_path) else None
        path = path or self.resolve_file(blob.file_name or "")
        if path is None:
            raise NotFoundError("File not found")
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {str(e)}")

    def public_url(self, db: Session, ref: Optional[StorageRef], base_url: str) -> Optional[str]:
        """Inline blobs become data URIs; disk blobs become serve URLs."""
        if ref is None:
            return None
        if ref.storage_type == StorageType.inline:
            data = self.retrieve(db, ref)
            return f"data:{ref.mime_type};base64,{base64.b64encode(data).decode('ascii')}"
        return absolute_url(base_url, ref.url)

    def latest_ref(self, db: Session, notice_id: str, kind: BlobKind) -> Optional[StorageRef]:
        blob = (
            db.query(NoticeBlob)
            .filter(NoticeBlob.notice_id == notice_id, NoticeBlob.kind == kind)
            .order_by(NoticeBlob.created_at.desc(), NoticeBlob.id.desc())
            .first()
        )
        return _ref(blob) if blob else None

    def ref_for_file(self, db: Session, file_name: str) -> Optional[StorageRef]:
        blob = db.query(NoticeBlob).filter(NoticeBlob.file_name == safe_file_name(file_name)).first()
        return _ref(blob) if blob else None

    def attach(self, db: Session, ref: StorageRef, notice_id: str) -> StorageRef:
        """
        Link an upload that arrived before its notice. A blob already linked
        to a different existing notice is left alone.
        """
        blob = db.query(NoticeBlob).filter(NoticeBlob.id == ref.blob_id).first()
        if blob is None:
            raise NotFoundError("Stored document not found")
        if blob.notice_id == notice_id:
            return _ref(blob)
        if blob.notice_id is not None and db.query(Notice).filter(Notice.notice_id == blob.notice_id).first():
            raise ValidationError("Document is already attached to another notice")
        try:
            blob.notice_id = notice_id
            db.commit()
            db.refresh(blob)
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to attach blob {ref.blob_id} to notice {notice_id}: {str(e)}")
        logger.info(f"Attached {blob.file_name or blob.id} to notice {notice_id}")
        return _ref(blob)

    # ── Standalone PDFs (no notice row) ───────────────────────────────────────

    def store_simple_pdf(self, data: bytes) -> tuple[str, str, StorageType]:
        """Save a PDF by generated id. Returns (file_id, path, storage_type)."""
        if not data:
            raise ValidationError("Empty upload")
        if len(data) > settings.MAX_UPLOAD_SIZE:
            raise ValidationError("File exceeds maximum upload size")
        file_id = uuid.uuid4().hex
        path, storage_type = self._write_file(simple_file_name(file_id), data)
        return file_id, path, storage_type

    def read_simple_pdf(self, file_id: str) -> bytes:
        path = self.resolve_file(simple_file_name(file_id))
        if path is None:
            raise NotFoundError("PDF not found")
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {str(e)}")

    def list_simple_pdfs(self) -> List[dict]:
        files = {}
        for root in (self.primary_root, self.fallback_root):
            if not os.path.isdir(root):
                continue
            for name in os.listdir(root):
                if not name.startswith(SIMPLE_PREFIX) or not name.endswith(".pdf") or name in files:
                    continue
                path = os.path.join(root, name)
                files[name] = {
                    "fileId": name[len(SIMPLE_PREFIX):-len(".pdf")],
                    "size": os.path.getsize(path),
                    "modified": os.path.getmtime(path),
                }
        return sorted(files.values(), key=lambda f: f["modified"])

    def writable_root(self) -> Optional[str]:
        """First root new files would land in, or None when neither is usable."""
        for root in (self.primary_root, self.fallback_root):
            try:
                os.makedirs(root, exist_ok=True)
            except OSError:
                continue
            if os.access(root, os.W_OK):
                return root
        return None

    # ── Orphans ───────────────────────────────────────────────────────────────

    def find_orphans(self, db: Session, older_than: Optional[timedelta] = None) -> List[NoticeBlob]:
        """Blobs past the grace period whose notice_id is null or names no notice."""
        older_than = older_than if older_than is not None else timedelta(hours=settings.ORPHAN_BLOB_GRACE_HOURS)
        cutoff = datetime.utcnow() - older_than
        known = select(Notice.notice_id)
        return (
            db.query(NoticeBlob)
            .filter(NoticeBlob.created_at <= cutoff)
            .filter((NoticeBlob.notice_id.is_(None)) | (~NoticeBlob.notice_id.in_(known)))
            .all()
        )

    def sweep_orphans(self, db: Session, older_than: Optional[timedelta] = None) -> int:
        """Rows go first; files are removed only once their deletion is committed."""
        orphans = self.find_orphans(db, older_than)
        if not orphans:
            return 0
        paths = [blob.file_path for blob in orphans if blob.file_path]
        for blob in orphans:
            db.delete(blob)
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Orphan sweep failed: {str(e)}")
        for path in paths:
            self._unlink(path)
        logger.info(f"Orphan sweep removed {len(orphans)} blobs")
        return len(orphans)

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def _file_name_for(notice_id: Optional[str], kind: BlobKind, mime_type: str) -> str:
        ext = _EXTENSIONS.get(mime_type, ".bin")
        prefix = safe_file_name(notice_id) if notice_id else "unassigned"
        return f"{prefix}_{kind.value}_{uuid.uuid4().hex[:12]}{ext}"

    @staticmethod
    def _unlink(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {path}: {str(e)}")


document_storage = DocumentStorage()

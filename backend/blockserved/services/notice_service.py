# blockserved/services/notice_service.py
"""
Notice Record Service

Creates and updates notice rows after the server mints on-chain, records
recipient acceptance, and maintains the server's dismissed/restored view.

Addresses are compared case-insensitively everywhere (lower(a) == lower(b)),
matching how wallets have always been matched in this system.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from blockserved.core.config import settings
from blockserved.core.logger import logger
from blockserved.db.models import AccessRecord, CaseStatus, Notice, NoticeSource
from blockserved.services.case_service import CaseService
from blockserved.utils.exceptions import AuthorizationError, NotFoundError, StorageError, ValidationError
from blockserved.utils.helpers import format_timestamp, generate_notice_id
from blockserved.utils.tron_address import same_address
from blockserved.utils.validators import (
    is_token_id,
    normalize_tx_hash,
    validate_case_number,
    validate_tron_address,
)

STATUS_ARCHIVED = "Archived"
STATUS_ACCEPTED = "Accepted"
STATUS_PENDING = "Pending"

# Fields an upsert may overwrite. created_at, acceptance and dismissal state
# are owned by their own operations and survive re-submission.
_MERGE_FIELDS = (
    "case_number",
    "recipient_address",
    "recipient_name",
    "server_address",
    "notice_type",
    "issuing_agency",
    "ipfs_hash",
    "encryption_key",
    "alert_token_id",
    "document_token_id",
    "transaction_hash",
    "block_number",
    "page_count",
)


@dataclass
class AcceptanceResult:
    notice_id: str
    already_accepted: bool
    accepted_at: Optional[datetime]
    signature: Optional[str]


def derived_status(notice: Notice) -> str:
    if notice.dismissed:
        return STATUS_ARCHIVED
    if notice.accepted:
        return STATUS_ACCEPTED
    return STATUS_PENDING


def notice_to_dict(notice: Notice) -> Dict[str, Any]:
    return {
        "notice_id": notice.notice_id,
        "case_number": notice.case_number,
        "alert_token_id": notice.alert_token_id,
        "document_token_id": notice.document_token_id,
        "recipient_address": notice.recipient_address,
        "recipient_name": notice.recipient_name,
        "server_address": notice.server_address,
        "notice_type": notice.notice_type,
        "issuing_agency": notice.issuing_agency,
        "transaction_hash": notice.transaction_hash,
        "block_number": notice.block_number,
        "ipfs_hash": notice.ipfs_hash,
        "page_count": notice.page_count,
        "accepted": bool(notice.accepted),
        "accepted_at": format_timestamp(notice.accepted_at),
        "dismissed": bool(notice.dismissed),
        "dismissed_at": format_timestamp(notice.dismissed_at),
        "chain_verified": bool(notice.chain_verified),
        "source": notice.source.value if notice.source else NoticeSource.api.value,
        "created_at": format_timestamp(notice.created_at),
        "updated_at": format_timestamp(notice.updated_at),
    }


def _owner_filter(column, address: str):
    return func.lower(column) == address.strip().lower()


class NoticeService:
    """
    Service layer for notice records.
    """

    # ── Create / upsert ───────────────────────────────────────────────────────

    @staticmethod
    def create_notice(
        db: Session,
        case_number: str,
        recipient_address: str,
        server_address: str,
        notice_type: Optional[str] = "Legal Notice",
        issuing_agency: Optional[str] = None,
        ipfs_hash: Optional[str] = None,
        encryption_key: Optional[str] = None,
        **extra: Any,
    ) -> str:
        """
        Persist a notice after minting and return its id.

        extra accepts notice_id, alert_token_id, document_token_id,
        transaction_hash, block_number, page_count, recipient_name and source.
        Re-submitting an existing notice_id merges the new values in; only
        the server that created the notice may do so.
        """
        notice = NoticeService.upsert_notice(
            db,
            case_number=case_number,
            recipient_address=recipient_address,
            server_address=server_address,
            notice_type=notice_type,
            issuing_agency=issuing_agency,
            ipfs_hash=ipfs_hash,
            encryption_key=encryption_key,
            **extra,
        )
        return notice.notice_id

    @staticmethod
    def upsert_notice(db: Session, **data: Any) -> Notice:
        data["case_number"] = validate_case_number(data.get("case_number"))
        data["recipient_address"] = validate_tron_address(data.get("recipient_address"), "recipientAddress")
        data["server_address"] = validate_tron_address(data.get("server_address"), "serverAddress")
        if not data.get("notice_type"):
            data["notice_type"] = "Legal Notice"
        if data.get("transaction_hash"):
            data["transaction_hash"] = normalize_tx_hash(data["transaction_hash"])

        notice_id = str(data.pop("notice_id", None) or generate_notice_id())
        source = data.pop("source", None) or NoticeSource.api

        try:
            notice = NoticeService._apply_upsert(db, notice_id, source, data)
        except IntegrityError:
            # A concurrent insert of the same id won the race; merge into it.
            db.rollback()
            logger.info(f"Notice {notice_id} inserted concurrently, retrying as update")
            try:
                notice = NoticeService._apply_upsert(db, notice_id, source, data)
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageError(f"Failed to upsert notice {notice_id}: {str(e)}")
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to create notice {notice_id}: {str(e)}")

        logger.info(
            f"Notice {notice.notice_id} saved: case={notice.case_number} "
            f"server={notice.server_address} alert={notice.alert_token_id}"
        )
        return notice

    @staticmethod
    def _apply_upsert(db: Session, notice_id: str, source: NoticeSource, data: Dict[str, Any]) -> Notice:
        notice = db.query(Notice).filter(Notice.notice_id == notice_id).first()
        if notice is None:
            notice = Notice(notice_id=notice_id, source=source)
            db.add(notice)
        elif not same_address(notice.server_address, data["server_address"]):
            raise AuthorizationError("You can only update notices you served")
        for field in _MERGE_FIELDS:
            value = data.get(field)
            if value is not None:
                setattr(notice, field, value)

        CaseService.ensure_case(db, notice.case_number, notice.server_address, status=CaseStatus.served)
        db.commit()
        db.refresh(notice)
        return notice

    # ── Lookup ────────────────────────────────────────────────────────────────

    @staticmethod
    def find_notice(db: Session, identifier: str) -> Optional[Notice]:
        """
        Resolve by notice_id, then by alert or document token id when the
        identifier is numeric.
        """
        identifier = str(identifier).strip()
        notice = db.query(Notice).filter(Notice.notice_id == identifier).first()
        if notice is None and is_token_id(identifier):
            token_id = int(identifier)
            notice = (
                db.query(Notice)
                .filter(or_(Notice.alert_token_id == token_id, Notice.document_token_id == token_id))
                .order_by(Notice.created_at.desc())
                .first()
            )
        return notice

    @staticmethod
    def get_notice(db: Session, identifier: str) -> Notice:
        notice = NoticeService.find_notice(db, identifier)
        if notice is None:
            raise NotFoundError("Notice not found")
        return notice

    # ── Acceptance ────────────────────────────────────────────────────────────

    @staticmethod
    def mark_accepted(db: Session, notice_id: str, signature: Optional[str] = None) -> AcceptanceResult:
        """
        Record the recipient's acceptance. Only the first call writes; later
        calls return the stored timestamp and signature unchanged.
        """
        notice = NoticeService.get_notice(db, notice_id)
        now = datetime.utcnow()
        try:
            updated = (
                db.query(Notice)
                .filter(Notice.notice_id == notice.notice_id, Notice.accepted.is_(False))
                .update(
                    {
                        Notice.accepted: True,
                        Notice.accepted_at: now,
                        Notice.acceptance_signature: signature,
                        Notice.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to mark notice {notice.notice_id} accepted: {str(e)}")

        db.refresh(notice)
        if updated:
            logger.info(f"Notice {notice.notice_id} accepted")
        return AcceptanceResult(
            notice_id=notice.notice_id,
            already_accepted=not updated,
            accepted_at=notice.accepted_at,
            signature=notice.acceptance_signature,
        )

    # ── Dismiss / restore ─────────────────────────────────────────────────────

    @staticmethod
    def dismiss(db: Session, notice_id: str, server_address: str) -> Notice:
        return NoticeService._set_dismissed(db, notice_id, server_address, True)

    @staticmethod
    def restore(db: Session, notice_id: str, server_address: str) -> Notice:
        return NoticeService._set_dismissed(db, notice_id, server_address, False)

    @staticmethod
    def _set_dismissed(db: Session, notice_id: str, server_address: str, dismissed: bool) -> Notice:
        if not notice_id or not server_address:
            raise ValidationError("Notice ID and server address are required")

        notice = NoticeService.get_notice(db, notice_id)
        if not same_address(notice.server_address, server_address):
            verb = "dismiss" if dismissed else "restore"
            raise AuthorizationError(f"You can only {verb} notices you served")

        try:
            notice.dismissed = dismissed
            notice.dismissed_at = datetime.utcnow() if dismissed else None
            db.commit()
            db.refresh(notice)
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to update notice {notice.notice_id}: {str(e)}")

        logger.info(f"Notice {notice.notice_id} {'dismissed' if dismissed else 'restored'} by {server_address}")
        return notice

    # ── Listings ──────────────────────────────────────────────────────────────

    @staticmethod
    def list_recent(db: Session, server_address: str, limit: Optional[int] = None) -> List[Notice]:
        """Most recent first, dismissed excluded."""
        limit = limit or settings.RECENT_NOTICES_LIMIT
        return (
            db.query(Notice)
            .filter(_owner_filter(Notice.server_address, server_address), Notice.dismissed.is_(False))
            .order_by(Notice.created_at.desc(), Notice.notice_id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def count_active(db: Session, server_address: str) -> int:
        return (
            db.query(func.count(Notice.notice_id))
            .filter(_owner_filter(Notice.server_address, server_address), Notice.dismissed.is_(False))
            .scalar()
        ) or 0

    @staticmethod
    def list_all(db: Session, server_address: str) -> Tuple[List[Tuple[Notice, str]], Dict[str, int]]:
        """Every notice the server sent, with derived status and totals."""
        notices = (
            db.query(Notice)
            .filter(_owner_filter(Notice.server_address, server_address))
            .order_by(Notice.created_at.desc(), Notice.notice_id.desc())
            .all()
        )
        rows = [(n, derived_status(n)) for n in notices]
        stats = {
            "total": len(notices),
            "active": sum(1 for n in notices if not n.dismissed),
            "dismissed": sum(1 for n in notices if n.dismissed),
            "accepted": sum(1 for n in notices if n.accepted),
            "pending": sum(1 for n in notices if not n.accepted and not n.dismissed),
        }
        return rows, stats

    @staticmethod
    def list_for_recipient(db: Session, recipient_address: str) -> List[Tuple[Notice, Optional[AccessRecord]]]:
        """Notices addressed to a wallet, paired with that wallet's view/sign record."""
        notices = (
            db.query(Notice)
            .filter(_owner_filter(Notice.recipient_address, recipient_address))
            .order_by(Notice.created_at.desc(), Notice.notice_id.desc())
            .all()
        )
        if not notices:
            return []
        records = (
            db.query(AccessRecord)
            .filter(
                AccessRecord.wallet_key == recipient_address.strip().lower(),
                AccessRecord.notice_id.in_([n.notice_id for n in notices]),
            )
            .all()
        )
        by_notice = {r.notice_id: r for r in records}
        return [(n, by_notice.get(n.notice_id)) for n in notices]

    # ── Transaction ───────────────────────────────────────────────────────────

    @staticmethod
    def record_transaction(
        db: Session,
        notice_id: str,
        transaction_hash: str,
        block_number: Optional[int] = None,
    ) -> Notice:
        transaction_hash = normalize_tx_hash(transaction_hash)
        notice = NoticeService.get_notice(db, notice_id)
        try:
            notice.transaction_hash = transaction_hash
            if block_number is not None:
                notice.block_number = block_number
            db.commit()
            db.refresh(notice)
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to record transaction for {notice.notice_id}: {str(e)}")
        return notice

    @staticmethod
    def set_page_count(db: Session, notice_id: str, page_count: Optional[int]) -> Optional[Notice]:
        """Fill page_count from an uploaded PDF. Unknown notices are skipped."""
        if page_count is None:
            return None
        notice = NoticeService.find_notice(db, notice_id)
        if notice is None:
            return None
        try:
            notice.page_count = page_count
            db.commit()
            db.refresh(notice)
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to set page count for {notice.notice_id}: {str(e)}")
        return notice

# blockserved/services/reconciliation_service.py
"""
Blockchain reconciliation.

Compares notice rows with on-chain state and writes what it finds to
reconciliation_discrepancies. It repairs only one thing on its own: a notice
that exists on-chain with complete event data (NoticeServed joined with
LegalNoticeCreated on the transaction id) but has no row is reconstructed.
Everything else waits for a human:

  missing_in_db         minted on-chain, no row, not enough data to rebuild
  owner_mismatch        ownerOf(alert) differs from the stored recipient
  not_minted            row references a token that does not exist
  chain_unavailable     RPC failed after retries; says nothing about existence
  token_pair_convention alert id not odd or document id != alert id + 1
  metadata_mismatch     tokenURI(alert) does not reference the stored ipfs_hash
"""
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from blockserved.core.logger import logger
from blockserved.db.models import DiscrepancyKind, Notice, NoticeSource, ReconciliationDiscrepancy
from blockserved.services.notice_service import NoticeService
from blockserved.services.tron_client import NoticeCreatedEvent, NoticeServedEvent, TronClient
from blockserved.utils.exceptions import (
    AuthorizationError,
    BlockchainUnavailableError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from blockserved.utils.tron_address import same_address


@dataclass
class ReconciliationReport:
    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    checked: int = 0
    matched: int = 0
    reconstructed: List[str] = field(default_factory=list)
    discrepancies: List[Dict] = field(default_factory=list)
    seen_tokens: Set[int] = field(default_factory=set, repr=False)

    def mark_checked(self, token_id: int) -> None:
        """Each token counts once, however many passes look at it."""
        if token_id not in self.seen_tokens:
            self.seen_tokens.add(token_id)
            self.checked += 1

    def counts(self) -> Dict[str, int]:
        return dict(Counter(d["kind"] for d in self.discrepancies))

    def as_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "checked": self.checked,
            "matched": self.matched,
            "reconstructed": self.reconstructed,
            "discrepancy_counts": self.counts(),
            "discrepancies": self.discrepancies,
        }


def follows_pair_convention(alert_id: int, document_id: Optional[int]) -> bool:
    """Alert ids are odd and the document is minted right after the alert."""
    if alert_id % 2 != 1:
        return False
    return document_id is None or document_id == alert_id + 1


class ReconciliationService:
    """
    Service layer for DB/chain reconciliation.
    """

    def __init__(self, client: TronClient):
        self.client = client

    # ── Entry point ───────────────────────────────────────────────────────────

    def run(
        self,
        db: Session,
        start_token: Optional[int] = None,
        end_token: Optional[int] = None,
        use_events: bool = True,
        scan_range: bool = False,
    ) -> ReconciliationReport:
        """
        use_events   reconcile NoticeServed events against rows
        scan_range   check every token id in [start_token, end_token]
                     (defaults to 1..totalSupply) for minted tokens with no row
        Rows with an alert token id (limited to the range when one is given)
        always have their owner checked.
        """
        report = ReconciliationReport(run_id=uuid.uuid4().hex, started_at=datetime.utcnow())
        logger.info(f"Reconciliation {report.run_id} started (events={use_events}, scan={scan_range})")

        if use_events:
            self._reconcile_events(db, report)

        self._check_owners(db, report, start_token, end_token)

        if scan_range:
            self._scan_tokens(db, report, start_token, end_token)

        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to save reconciliation run {report.run_id}: {str(e)}")

        report.finished_at = datetime.utcnow()
        logger.info(
            f"Reconciliation {report.run_id} finished: checked={report.checked} matched={report.matched} "
            f"reconstructed={len(report.reconstructed)} discrepancies={report.counts()}"
        )
        return report

    # ── Events ────────────────────────────────────────────────────────────────

    def _reconcile_events(self, db: Session, report: ReconciliationReport) -> None:
        try:
            served = self.client.get_notice_served_events()
            created = self.client.get_notice_created_events()
        except BlockchainUnavailableError as e:
            self._record(db, report, DiscrepancyKind.chain_unavailable, detail=f"event fetch failed: {e.reason}")
            return

        created_by_tx = {e.transaction_id: e for e in created if e.transaction_id}
        for event in served:
            report.mark_checked(event.alert_id)
            if not follows_pair_convention(event.alert_id, event.document_id):
                self._record(
                    db, report, DiscrepancyKind.token_pair_convention,
                    token_id=event.alert_id,
                    expected=f"odd alert id, document id {event.alert_id + 1}",
                    actual=f"alert {event.alert_id}, document {event.document_id}",
                )

            notice = self._notice_for_token(db, event.alert_id)
            if notice is not None:
                self._apply_event(notice, event)
                continue

            source = created_by_tx.get(event.transaction_id)
            rebuilt = self._reconstruct(db, report, event, source)
            if rebuilt is None:
                self._record(
                    db, report, DiscrepancyKind.missing_in_db,
                    token_id=event.alert_id,
                    expected="notice row",
                    actual=f"minted in tx {event.transaction_id}",
                    detail="NoticeServed event without matching LegalNoticeCreated data",
                )

    def _apply_event(self, notice: Notice, event: NoticeServedEvent) -> None:
        # Fill gaps only; recorded values are never overwritten here.
        if notice.document_token_id is None:
            notice.document_token_id = event.document_id
        if not notice.transaction_hash and event.transaction_id:
            notice.transaction_hash = event.transaction_id
        if notice.block_number is None and event.block_number is not None:
            notice.block_number = event.block_number

    def _reconstruct(
        self,
        db: Session,
        report: ReconciliationReport,
        event: NoticeServedEvent,
        source: Optional[NoticeCreatedEvent],
    ) -> Optional[Notice]:
        if source is None or not source.server or not (source.recipient or event.recipient):
            return None
        # upsert_notice commits or rolls back the whole session, so earlier
        # findings and gap fills are saved before it runs.
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to save reconciliation run {report.run_id}: {str(e)}")
        try:
            notice = NoticeService.upsert_notice(
                db,
                notice_id=f"NFT-{event.alert_id}",
                case_number=f"CHAIN-{source.notice_id}",
                recipient_address=source.recipient or event.recipient,
                server_address=source.server,
                alert_token_id=event.alert_id,
                document_token_id=event.document_id,
                transaction_hash=event.transaction_id or None,
                block_number=event.block_number,
                source=NoticeSource.chain_reconstructed,
            )
        except (AuthorizationError, ValidationError, StorageError) as e:
            logger.warning(f"Could not reconstruct notice for alert {event.alert_id}: {e.detail}")
            return None
        notice.chain_verified = True
        report.reconstructed.append(notice.notice_id)
        logger.info(f"Reconstructed notice {notice.notice_id} from chain events")
        return notice

    # ── Owner checks ──────────────────────────────────────────────────────────

    def _check_owners(
        self,
        db: Session,
        report: ReconciliationReport,
        start_token: Optional[int],
        end_token: Optional[int],
    ) -> None:
        query = db.query(Notice).filter(Notice.alert_token_id.isnot(None))
        if start_token is not None:
            query = query.filter(Notice.alert_token_id >= start_token)
        if end_token is not None:
            query = query.filter(Notice.alert_token_id <= end_token)

        for notice in query.order_by(Notice.alert_token_id).all():
            report.mark_checked(notice.alert_token_id)
            try:
                owner = self.client.owner_of(notice.alert_token_id)
            except BlockchainUnavailableError as e:
                self._record(
                    db, report, DiscrepancyKind.chain_unavailable,
                    token_id=notice.alert_token_id, notice_id=notice.notice_id, detail=e.reason,
                )
                continue

            if owner is None:
                self._record(
                    db, report, DiscrepancyKind.not_minted,
                    token_id=notice.alert_token_id, notice_id=notice.notice_id,
                    expected="minted token", actual="ownerOf reverted",
                )
            elif not same_address(owner, notice.recipient_address):
                self._record(
                    db, report, DiscrepancyKind.owner_mismatch,
                    token_id=notice.alert_token_id, notice_id=notice.notice_id,
                    expected=notice.recipient_address, actual=owner,
                )
            elif self._metadata_matches(db, report, notice):
                notice.chain_verified = True
                report.matched += 1

    def _metadata_matches(self, db: Session, report: ReconciliationReport, notice: Notice) -> bool:
        if not notice.ipfs_hash:
            return True
        try:
            uri = self.client.token_uri(notice.alert_token_id)
        except BlockchainUnavailableError as e:
            self._record(
                db, report, DiscrepancyKind.chain_unavailable,
                token_id=notice.alert_token_id, notice_id=notice.notice_id, detail=f"tokenURI failed: {e.reason}",
            )
            return False
        # tokenURI may be ipfs://<hash>, a gateway URL or the bare hash.
        if uri and notice.ipfs_hash in uri:
            return True
        self._record(
            db, report, DiscrepancyKind.metadata_mismatch,
            token_id=notice.alert_token_id, notice_id=notice.notice_id,
            expected=notice.ipfs_hash, actual=uri if uri is not None else "tokenURI reverted",
        )
        return False

    # ── Range scan ────────────────────────────────────────────────────────────

    def _scan_tokens(
        self,
        db: Session,
        report: ReconciliationReport,
        start_token: Optional[int],
        end_token: Optional[int],
    ) -> None:
        start = start_token if start_token is not None else 1
        if end_token is None:
            try:
                end_token = self.client.total_supply()
            except BlockchainUnavailableError as e:
                self._record(db, report, DiscrepancyKind.chain_unavailable, detail=f"totalSupply failed: {e.reason}")
                return

        for token_id in range(start, end_token + 1):
            if self._notice_for_token(db, token_id) is not None:
                continue
            report.mark_checked(token_id)
            try:
                owner = self.client.owner_of(token_id)
            except BlockchainUnavailableError as e:
                self._record(db, report, DiscrepancyKind.chain_unavailable, token_id=token_id, detail=e.reason)
                continue
            if owner is not None:
                self._record(
                    db, report, DiscrepancyKind.missing_in_db,
                    token_id=token_id, expected="notice row", actual=f"owned by {owner}",
                )

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def _notice_for_token(db: Session, token_id: int) -> Optional[Notice]:
        return (
            db.query(Notice)
            .filter(or_(Notice.alert_token_id == token_id, Notice.document_token_id == token_id))
            .first()
        )

    @staticmethod
    def _record(
        db: Session,
        report: ReconciliationReport,
        kind: DiscrepancyKind,
        token_id: Optional[int] = None,
        notice_id: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        report.discrepancies.append({
            "kind": kind.value,
            "token_id": token_id,
            "notice_id": notice_id,
            "expected": expected,
            "actual": actual,
            "detail": detail,
        })

        # One open row per (kind, token, notice); later runs don't pile up duplicates.
        existing = (
            db.query(ReconciliationDiscrepancy)
            .filter(
                ReconciliationDiscrepancy.kind == kind,
                ReconciliationDiscrepancy.token_id == token_id if token_id is not None
                else ReconciliationDiscrepancy.token_id.is_(None),
                ReconciliationDiscrepancy.notice_id == notice_id if notice_id is not None
                else ReconciliationDiscrepancy.notice_id.is_(None),
                ReconciliationDiscrepancy.resolved.is_(False),
            )
            .first()
        )
        if existing is not None and kind != DiscrepancyKind.chain_unavailable:
            existing.actual = actual
            existing.detail = detail
            return

        db.add(ReconciliationDiscrepancy(
            run_id=report.run_id,
            token_id=token_id,
            notice_id=notice_id,
            kind=kind,
            expected=expected,
            actual=actual,
            detail=detail,
        ))
        db.flush()
        logger.warning(f"Reconciliation {kind.value}: token={token_id} notice={notice_id} {detail or ''}".rstrip())


def list_open_discrepancies(db: Session, kind: Optional[str] = None, limit: int = 200) -> List[ReconciliationDiscrepancy]:
    query = db.query(ReconciliationDiscrepancy).filter(ReconciliationDiscrepancy.resolved.is_(False))
    if kind:
        try:
            query = query.filter(ReconciliationDiscrepancy.kind == DiscrepancyKind(kind))
        except ValueError:
            raise ValidationError(f"Unknown discrepancy kind '{kind}'")
    return query.order_by(ReconciliationDiscrepancy.detected_at.desc(), ReconciliationDiscrepancy.id.desc()).limit(limit).all()


def resolve_discrepancy(db: Session, discrepancy_id: int) -> ReconciliationDiscrepancy:
    row = db.query(ReconciliationDiscrepancy).filter(ReconciliationDiscrepancy.id == discrepancy_id).first()
    if row is None:
        raise NotFoundError("Discrepancy not found")
    row.resolved = True
    row.resolved_at = datetime.utcnow()
    db.commit()
    db.refresh(row)
    return row

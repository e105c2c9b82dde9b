# blockserved/services/access_gate.py
"""
Access Control Gate

Decides whether a wallet may see a notice's content. The recipient and the
process server that sent it are the only wallets granted access. Every
decision is written to access_attempts before it is returned, so a denial
without an audit row cannot happen.

Per (wallet, notice) the recipient moves Unrequested -> Viewed -> Signed.
Signed is terminal and signing also records acceptance on the notice.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import jwt
from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from blockserved.core.config import settings
from blockserved.core.logger import logger
from blockserved.db.models import AccessAttempt, AccessRecord, AccessStatus, Notice
from blockserved.middleware.client_context import ClientContext
from blockserved.services.notice_service import NoticeService
from blockserved.utils.exceptions import AuthorizationError, NotFoundError, StorageError, ValidationError
from blockserved.utils.tron_address import same_address

REASON_RECIPIENT = "recipient_access"
REASON_SERVER = "process_server_access"
REASON_DENIED = "not_recipient_or_server"
REASON_NOT_FOUND = "notice_not_found"

ACCESS_TOKEN_SCOPE = "document_access"

STATUS_NOT_VIEWED = "not_viewed"


@dataclass
class AccessDecision:
    notice_id: str
    wallet_address: str
    is_recipient: bool
    is_server: bool
    granted: bool
    reason: str
    notice: Optional[Notice] = None

    def as_dict(self) -> dict:
        return {
            "isRecipient": self.is_recipient,
            "isServer": self.is_server,
            "granted": self.granted,
            "reason": self.reason,
        }


class AccessGate:
    """
    Service layer for recipient/server authorization.
    """

    # ── Authorization ─────────────────────────────────────────────────────────

    def authorize(
        self,
        db: Session,
        wallet_address: str,
        notice_id: str,
        client: Optional[ClientContext] = None,
    ) -> AccessDecision:
        wallet_address = (wallet_address or "").strip()
        if not wallet_address:
            raise ValidationError("Wallet address is required")

        notice = NoticeService.find_notice(db, notice_id)
        if notice is None:
            decision = AccessDecision(
                notice_id=str(notice_id),
                wallet_address=wallet_address,
                is_recipient=False,
                is_server=False,
                granted=False,
                reason=REASON_NOT_FOUND,
            )
        else:
            is_recipient = same_address(wallet_address, notice.recipient_address)
            is_server = same_address(wallet_address, notice.server_address)
            if is_recipient:
                reason = REASON_RECIPIENT
            elif is_server:
                reason = REASON_SERVER
            else:
                reason = REASON_DENIED
            decision = AccessDecision(
                notice_id=notice.notice_id,
                wallet_address=wallet_address,
                is_recipient=is_recipient,
                is_server=is_server,
                granted=is_recipient or is_server,
                reason=reason,
                notice=notice,
            )

        self._record_attempt(db, decision, client)
        if not decision.granted:
            logger.warning(
                f"Access denied: wallet={wallet_address} notice={notice_id} reason={decision.reason}"
            )
        return decision

    def require(
        self,
        db: Session,
        wallet_address: str,
        notice_id: str,
        client: Optional[ClientContext] = None,
    ) -> AccessDecision:
        """authorize() that raises NotFoundError / AuthorizationError on denial."""
        decision = self.authorize(db, wallet_address, notice_id, client)
        if decision.reason == REASON_NOT_FOUND:
            raise NotFoundError("Notice not found")
        if not decision.granted:
            raise AuthorizationError(
                "You are not authorized to view this notice. "
                "Only the process server and recipient can access."
            )
        return decision

    def _record_attempt(self, db: Session, decision: AccessDecision, client: Optional[ClientContext]) -> None:
        client = client or ClientContext()
        notice = decision.notice
        attempt = AccessAttempt(
            notice_id=decision.notice_id,
            wallet_address=decision.wallet_address,
            alert_token_id=notice.alert_token_id if notice else None,
            document_token_id=notice.document_token_id if notice else None,
            is_recipient=decision.is_recipient,
            is_server=decision.is_server,
            granted=decision.granted,
            reason=decision.reason,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        try:
            db.add(attempt)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to record access attempt for {decision.notice_id}: {str(e)}")

    def list_attempts(self, db: Session, notice_id: str, server_address: str, limit: int = 100) -> List[AccessAttempt]:
        """Access history for a notice, visible to its process server only."""
        notice = NoticeService.get_notice(db, notice_id)
        if not same_address(notice.server_address, server_address):
            raise AuthorizationError("Only the process server can view access history")
        return (
            db.query(AccessAttempt)
            .filter(AccessAttempt.notice_id == notice.notice_id)
            .order_by(AccessAttempt.attempted_at.desc(), AccessAttempt.id.desc())
            .limit(limit)
            .all()
        )

    # ── View / sign state ─────────────────────────────────────────────────────

    def _get_record(self, db: Session, notice_id: str, wallet_address: str) -> Optional[AccessRecord]:
        return (
            db.query(AccessRecord)
            .filter(
                AccessRecord.notice_id == notice_id,
                AccessRecord.wallet_key == wallet_address.strip().lower(),
            )
            .first()
        )

    def record_view(
        self,
        db: Session,
        wallet_address: str,
        notice: Notice,
        client: Optional[ClientContext] = None,
    ) -> AccessRecord:
        """Unrequested -> Viewed. An existing record is returned untouched."""
        record = self._get_record(db, notice.notice_id, wallet_address)
        if record is not None:
            return record

        client = client or ClientContext()
        record = AccessRecord(
            notice_id=notice.notice_id,
            wallet_address=wallet_address.strip(),
            wallet_key=wallet_address.strip().lower(),
            status=AccessStatus.viewed,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        try:
            db.add(record)
            db.commit()
            db.refresh(record)
            return record
        except IntegrityError:
            db.rollback()
            existing = self._get_record(db, notice.notice_id, wallet_address)
            if existing is None:
                raise StorageError(f"View record conflict for {notice.notice_id}")
            return existing
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to record view for {notice.notice_id}: {str(e)}")

    def sign(
        self,
        db: Session,
        wallet_address: str,
        notice_id: str,
        signature: Optional[str] = None,
        client: Optional[ClientContext] = None,
    ) -> Tuple[AccessRecord, bool]:
        """
        Viewed -> Signed for the recipient. Returns (record, already_signed).
        Re-signing keeps the original timestamp and signature.
        """
        decision = self.authorize(db, wallet_address, notice_id, client)
        if decision.reason == REASON_NOT_FOUND:
            raise NotFoundError("Notice not found or you are not the recipient")
        if not decision.is_recipient:
            raise AuthorizationError("Only the recipient can accept this notice")

        notice = decision.notice
        record = self.record_view(db, wallet_address, notice, client)
        if record.status == AccessStatus.signed:
            return record, True

        acceptance = NoticeService.mark_accepted(db, notice.notice_id, signature)
        try:
            updated = (
                db.query(AccessRecord)
                .filter(AccessRecord.id == record.id, AccessRecord.status == AccessStatus.viewed)
                .update(
                    {
                        AccessRecord.status: AccessStatus.signed,
                        AccessRecord.signed_at: acceptance.accepted_at or datetime.utcnow(),
                        AccessRecord.signature: acceptance.signature,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to record signature for {notice.notice_id}: {str(e)}")

        db.refresh(record)
        already_signed = not updated or acceptance.already_accepted
        if not already_signed:
            logger.info(f"Notice {notice.notice_id} signed by recipient {wallet_address}")
        return record, already_signed

    def status(self, db: Session, wallet_address: str, notice_id: str) -> str:
        notice = NoticeService.get_notice(db, notice_id)
        record = self._get_record(db, notice.notice_id, wallet_address)
        if record is None:
            return STATUS_NOT_VIEWED
        return record.status.value

    # ── Access tokens ─────────────────────────────────────────────────────────

    def issue_access_token(self, wallet_address: str, notice_id: str) -> Tuple[str, datetime]:
        expires_at = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        payload = {
            "sub": wallet_address,
            "notice_id": notice_id,
            "scope": ACCESS_TOKEN_SCOPE,
            "iat": datetime.utcnow(),
            "exp": expires_at,
        }
        token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
        return token, expires_at

    def verify_access_token(self, token: str, notice_id: str) -> dict:
        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token expired")
        except jwt.PyJWTError:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid access token")

        if payload.get("scope") != ACCESS_TOKEN_SCOPE or str(payload.get("notice_id")) != str(notice_id):
            raise AuthorizationError("Access token does not grant this document")
        return payload


access_gate = AccessGate()

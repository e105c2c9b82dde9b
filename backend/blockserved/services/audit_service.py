# blockserved/services/audit_service.py

from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from blockserved.core.logger import logger
from blockserved.db.models import AuditLog
from blockserved.middleware.client_context import ClientContext


class AuditService:
    """
    Forensic audit trail for recipient queries and document views.
    Writes are best-effort: a failed audit insert is logged and never fails
    the request it describes.
    """

    RECIPIENT_NOTICE_QUERY = "recipient_notice_query"
    RECIPIENT_DOCUMENT_VIEW = "recipient_document_view"
    RECIPIENT_DOCUMENT_ACCEPT = "recipient_document_accept"
    DOCUMENT_UPLOAD = "document_upload"
    DOCUMENT_ATTACH = "document_attach"
    NOTICE_DISMISS = "notice_dismiss"
    NOTICE_RESTORE = "notice_restore"

    def log(
        self,
        db: Session,
        action_type: str,
        actor_address: Optional[str] = None,
        target_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        client: Optional[ClientContext] = None,
    ) -> Optional[AuditLog]:
        client = client or ClientContext()
        entry = AuditLog(
            action_type=action_type,
            actor_address=actor_address,
            target_id=target_id,
            details={**(details or {}), "logged_at": datetime.utcnow().isoformat()},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            accept_language=client.accept_language,
            timezone=client.timezone,
        )
        try:
            db.add(entry)
            db.commit()
            return entry
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to write audit log {action_type}: {str(e)}")
            return None

    def log_recipient_query(
        self,
        db: Session,
        recipient_address: str,
        result_count: int,
        client: Optional[ClientContext] = None,
    ):
        return self.log(
            db,
            self.RECIPIENT_NOTICE_QUERY,
            actor_address=recipient_address,
            details={"result_count": result_count},
            client=client,
        )

    def log_document_view(
        self,
        db: Session,
        recipient_address: str,
        notice_id: str,
        found: bool,
        client: Optional[ClientContext] = None,
    ):
        return self.log(
            db,
            self.RECIPIENT_DOCUMENT_VIEW,
            actor_address=recipient_address,
            target_id=notice_id,
            details={"found": found},
            client=client,
        )

    def list_for_target(
        self,
        db: Session,
        target_id: str,
        action_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Newest first. Used to answer "who saw this notice, and when"."""
        query = db.query(AuditLog).filter(AuditLog.target_id == target_id)
        if action_type:
            query = query.filter(AuditLog.action_type == action_type)
        return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()

    def describe(self, entry: AuditLog) -> str:
        if entry.action_type == self.RECIPIENT_NOTICE_QUERY:
            return "Recipient checked their notices"
        if entry.action_type == self.RECIPIENT_DOCUMENT_VIEW:
            return f"Recipient viewed document for notice {entry.target_id}"
        if entry.action_type == self.RECIPIENT_DOCUMENT_ACCEPT:
            return f"Recipient accepted notice {entry.target_id}"
        return entry.action_type.replace("_", " ")

    def to_dict(self, entry: AuditLog) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "timestamp": entry.created_at.isoformat() if entry.created_at else None,
            "action": entry.action_type,
            "wallet": entry.actor_address,
            "targetId": entry.target_id,
            "ipAddress": entry.ip_address,
            "userAgent": entry.user_agent,
            "timezone": entry.timezone,
            "details": entry.details,
            "description": self.describe(entry),
        }


audit_service = AuditService()

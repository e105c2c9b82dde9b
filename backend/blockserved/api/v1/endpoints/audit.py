"""
Audit log queries

Read side of the forensic log: a process server can see every recorded
action against a notice it served, for dispute resolution.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from blockserved.api.v1.deps import require_server_address
from blockserved.db.database import get_db
from blockserved.services.audit_service import audit_service
from blockserved.services.notice_service import NoticeService
from blockserved.utils.exceptions import AuthorizationError
from blockserved.utils.tron_address import same_address

router = APIRouter()


@router.get("/{notice_id}")
def notice_audit_log(
    notice_id: str,
    action_type: Optional[str] = Query(None, alias="actionType"),
    limit: int = Query(100, ge=1, le=500),
    server_address: str = Depends(require_server_address),
    db: Session = Depends(get_db),
):
    notice = NoticeService.get_notice(db, notice_id)
    if not same_address(notice.server_address, server_address):
        raise AuthorizationError("Only the process server who sent this notice can view its audit log")

    entries = audit_service.list_for_target(db, notice.notice_id, action_type, limit)
    return {
        "success": True,
        "noticeId": notice.notice_id,
        "totalEvents": len(entries),
        "events": [audit_service.to_dict(e) for e in entries],
    }

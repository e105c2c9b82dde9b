"""
Case endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from blockserved.api.v1.deps import require_server_address
from blockserved.db.database import get_db
from blockserved.db.schemas import CaseCreate, CaseStatusUpdate
from blockserved.services.case_service import CaseService, case_to_dict
from blockserved.utils.tron_address import same_address

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_case(
    body: CaseCreate,
    db: Session = Depends(get_db),
):
    """Create a draft case; repeating the call returns the existing case."""
    case = CaseService.create_case(db, body.case_number, body.server_address, body.description)
    return {"success": True, "case": case_to_dict(case)}


@router.get("")
def list_cases(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    server_address: str = Depends(require_server_address),
    db: Session = Depends(get_db),
):
    cases = CaseService.list_cases(db, server_address, skip, limit)
    return {"success": True, "cases": [case_to_dict(c) for c in cases], "count": len(cases)}


@router.patch("/{case_number}/status")
def update_case_status(
    case_number: str,
    body: CaseStatusUpdate,
    server_address: str = Depends(require_server_address),
    db: Session = Depends(get_db),
):
    if body.server_address and not same_address(body.server_address, server_address):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Server address does not match the requesting wallet"
        )
    case = CaseService.update_status(db, case_number, server_address, body.status)
    return {"success": True, "case": case_to_dict(case)}

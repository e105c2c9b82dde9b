"""
Reconciliation review endpoints (operator only, X-Admin-Token)
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from blockserved.api.v1.deps import get_chain_client, require_admin
from blockserved.db.database import get_db
from blockserved.db.schemas import DiscrepancyResponse
from blockserved.services.reconciliation_service import (
    ReconciliationService,
    list_open_discrepancies,
    resolve_discrepancy,
)
from blockserved.services.tron_client import TronClient

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/discrepancies")
def open_discrepancies(
    kind: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    rows = list_open_discrepancies(db, kind, limit)
    return {
        "success": True,
        "count": len(rows),
        "discrepancies": [DiscrepancyResponse.model_validate(r).model_dump(mode="json") for r in rows],
    }


@router.post("/discrepancies/{discrepancy_id}/resolve")
def mark_resolved(
    discrepancy_id: int,
    db: Session = Depends(get_db),
):
    row = resolve_discrepancy(db, discrepancy_id)
    return {"success": True, "discrepancy": DiscrepancyResponse.model_validate(row).model_dump(mode="json")}


@router.post("/run")
def run_reconciliation(
    start: Optional[int] = Query(None, ge=1),
    end: Optional[int] = Query(None, ge=1),
    scan: bool = Query(False),
    events: bool = Query(True),
    chain: TronClient = Depends(get_chain_client),
    db: Session = Depends(get_db),
):
    """Run one reconciliation pass synchronously and return its report."""
    report = ReconciliationService(chain).run(db, start, end, use_events=events, scan_range=scan)
    return {"success": True, "report": report.as_dict()}

"""
services/background_jobs.py

Scheduled background jobs for BlockServed.

Jobs:
  1. sweep_orphan_blobs
     - Deletes stored images/documents whose notice never materialized
       (notice_id null or unknown after ORPHAN_BLOB_GRACE_HOURS).
     - Runs every ORPHAN_SWEEP_INTERVAL_MINUTES.

  2. run_chain_reconciliation  (only when RECONCILIATION_ENABLED)
     - Compares notice rows against the TRON contract and records
       discrepancies for review.
     - Runs every RECONCILIATION_INTERVAL_MINUTES.

Both jobs are plain functions; AsyncIOScheduler runs them on its thread pool
so blocking DB and HTTP calls stay off the event loop.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from blockserved.core.config import settings
from blockserved.db.database import SessionLocal

logger = logging.getLogger(__name__)

# ── Scheduler singleton ───────────────────────────────────────────────────────
_scheduler: AsyncIOScheduler | None = None


def start_scheduler() -> AsyncIOScheduler:
    """
    Starts the APScheduler background job scheduler.
    Call this from FastAPI startup.
    """
    global _scheduler

    _scheduler = AsyncIOScheduler(timezone="UTC")

    _scheduler.add_job(
        sweep_orphan_blobs,
        trigger=IntervalTrigger(minutes=settings.ORPHAN_SWEEP_INTERVAL_MINUTES),
        id="sweep_orphan_blobs",
        name="Sweep orphaned notice blobs",
        replace_existing=True,
        max_instances=1,          # never run two at once
        misfire_grace_time=300,
    )

    if settings.RECONCILIATION_ENABLED:
        _scheduler.add_job(
            run_chain_reconciliation,
            trigger=IntervalTrigger(minutes=settings.RECONCILIATION_INTERVAL_MINUTES),
            id="chain_reconciliation",
            name="Reconcile notices with TRON contract",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=600,
        )

    _scheduler.start()
    logger.info("Background scheduler started: %d jobs registered", len(_scheduler.get_jobs()))
    return _scheduler


def shutdown_scheduler() -> None:
    """Gracefully shuts down the scheduler. Call from FastAPI shutdown."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Background scheduler shut down")
    _scheduler = None


# ============================================================================
# Job 1: Orphan blob sweep
# ============================================================================

def sweep_orphan_blobs() -> int:
    from blockserved.services.storage_service import document_storage

    db = SessionLocal()
    try:
        removed = document_storage.sweep_orphans(db)
        if removed:
            logger.info("Job: sweep_orphan_blobs removed %d blobs", removed)
        return removed
    except Exception as e:
        logger.exception("Job: sweep_orphan_blobs failed: %s", e)
        return 0
    finally:
        db.close()


# ============================================================================
# Job 2: Chain reconciliation
# ============================================================================

def run_chain_reconciliation() -> dict | None:
    from blockserved.services.reconciliation_service import ReconciliationService
    from blockserved.services.tron_client import get_tron_client

    db = SessionLocal()
    try:
        report = ReconciliationService(get_tron_client()).run(db)
        return report.as_dict()
    except Exception as e:
        logger.exception("Job: run_chain_reconciliation failed: %s", e)
        return None
    finally:
        db.close()

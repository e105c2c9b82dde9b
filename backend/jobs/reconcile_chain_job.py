from __future__ import annotations

import argparse
import json

from blockserved.core.logger import logger
from blockserved.db.database import SessionLocal, init_db
from blockserved.services.reconciliation_service import ReconciliationService
from blockserved.services.tron_client import TronClient, get_tron_client


def run_reconcile_chain_job(
    start_token: int | None = None,
    end_token: int | None = None,
    use_events: bool = True,
    scan_range: bool = False,
    client: TronClient | None = None,
) -> dict:
    db = SessionLocal()
    try:
        service = ReconciliationService(client or get_tron_client())
        report = service.run(
            db,
            start_token=start_token,
            end_token=end_token,
            use_events=use_events,
            scan_range=scan_range,
        )
        summary = report.as_dict()
        logger.info(
            "Chain reconciliation job done: run_id=%s checked=%s matched=%s reconstructed=%s discrepancies=%s",
            summary["run_id"],
            summary["checked"],
            summary["matched"],
            len(summary["reconstructed"]),
            summary["discrepancy_counts"],
        )
        return summary
    finally:
        db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile notice records with the TRON contract")
    parser.add_argument("--start", type=int, help="first token id to check")
    parser.add_argument("--end", type=int, help="last token id to check")
    parser.add_argument("--scan", action="store_true", help="check every token id in the range for unknown tokens")
    parser.add_argument("--no-events", dest="use_events", action="store_false", help="skip NoticeServed events")
    args = parser.parse_args()

    if args.start is not None and args.end is not None and args.start > args.end:
        parser.error("--start must not be greater than --end")

    init_db()
    summary = run_reconcile_chain_job(args.start, args.end, args.use_events, args.scan)
    print(json.dumps(summary, indent=2, default=str))


if __name__ == "__main__":
    main()

"""
Tests for the reconciliation job entry points.
"""
import json
import sys
from unittest.mock import MagicMock, patch

import pytest

from jobs import reconcile_chain_job
from jobs.reconcile_chain_job import run_reconcile_chain_job


def test_job_returns_summary(db, make_notice, recipient_address):
    make_notice()
    chain = MagicMock()
    chain.owner_of.return_value = recipient_address

    summary = run_reconcile_chain_job(use_events=False, client=chain)

    assert summary["checked"] == 1
    assert summary["matched"] == 1
    assert summary["discrepancy_counts"] == {}


def test_cli_rejects_inverted_range():
    with patch.object(sys, "argv", ["reconcile", "--start", "10", "--end", "2"]):
        with pytest.raises(SystemExit):
            reconcile_chain_job.main()


def test_cli_prints_json(db, capsys):
    summary = {"run_id": "r1", "checked": 0}
    with patch.object(sys, "argv", ["reconcile", "--scan", "--no-events"]), \
            patch.object(reconcile_chain_job, "init_db"), \
            patch.object(reconcile_chain_job, "run_reconcile_chain_job", return_value=summary) as run:
        reconcile_chain_job.main()

    run.assert_called_once_with(None, None, False, True)
    assert json.loads(capsys.readouterr().out) == summary

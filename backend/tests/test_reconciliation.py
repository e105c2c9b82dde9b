"""
Tests for DB/chain reconciliation with a mocked chain client.
"""
from unittest.mock import MagicMock, patch

import pytest

from blockserved.db.models import DiscrepancyKind, Notice, NoticeSource, ReconciliationDiscrepancy
from blockserved.services.reconciliation_service import (
    ReconciliationService,
    follows_pair_convention,
    list_open_discrepancies,
    resolve_discrepancy,
)
from blockserved.services.tron_client import NoticeCreatedEvent, NoticeServedEvent
from blockserved.services.notice_service import NoticeService
from blockserved.utils.exceptions import BlockchainUnavailableError, NotFoundError, StorageError, ValidationError


@pytest.fixture
def chain():
    client = MagicMock()
    client.get_notice_served_events.return_value = []
    client.get_notice_created_events.return_value = []
    return client


def kinds(db):
    return sorted(d.kind.value for d in db.query(ReconciliationDiscrepancy).all())


class TestPairConvention:

    def test_convention(self):
        assert follows_pair_convention(1, 2)
        assert follows_pair_convention(7, None)
        assert not follows_pair_convention(2, 3)
        assert not follows_pair_convention(1, 5)


class TestOwnerChecks:

    def test_matching_owner_marks_verified(self, db, make_notice, chain, recipient_address):
        notice = make_notice()
        chain.owner_of.return_value = recipient_address.lower()

        report = ReconciliationService(chain).run(db)

        assert report.matched == 1
        assert report.discrepancies == []
        db.refresh(notice)
        assert notice.chain_verified is True

    def test_mismatch_recorded_not_repaired(self, db, make_notice, chain, recipient_address, stranger_address):
        notice = make_notice()
        chain.owner_of.return_value = stranger_address

        ReconciliationService(chain).run(db)

        row = db.query(ReconciliationDiscrepancy).one()
        assert row.kind == DiscrepancyKind.owner_mismatch
        assert row.expected == recipient_address
        assert row.actual == stranger_address
        db.refresh(notice)
        assert notice.recipient_address == recipient_address
        assert notice.chain_verified is False

    def test_not_minted(self, db, make_notice, chain):
        make_notice()
        chain.owner_of.return_value = None
        ReconciliationService(chain).run(db)
        assert kinds(db) == ["not_minted"]

    def test_chain_failure_is_not_reported_as_missing(self, db, make_notice, chain):
        make_notice()
        chain.owner_of.side_effect = BlockchainUnavailableError("timeout")
        ReconciliationService(chain).run(db)
        assert kinds(db) == ["chain_unavailable"]

    def test_range_limits_checked_tokens(self, db, make_notice, chain, recipient_address):
        make_notice(alert_token_id=1, document_token_id=2)
        make_notice(alert_token_id=101, document_token_id=102)
        chain.owner_of.return_value = recipient_address

        ReconciliationService(chain).run(db, start_token=100, end_token=200, use_events=False)

        chain.owner_of.assert_called_once_with(101)

    def test_repeat_runs_do_not_duplicate(self, db, make_notice, chain):
        make_notice()
        chain.owner_of.return_value = None
        ReconciliationService(chain).run(db)
        ReconciliationService(chain).run(db)
        assert db.query(ReconciliationDiscrepancy).count() == 1

    def test_token_uri_matching_ipfs_hash(self, db, make_notice, chain, recipient_address):
        notice = make_notice(ipfs_hash="QmStored")
        chain.owner_of.return_value = recipient_address
        chain.token_uri.return_value = "ipfs://QmStored"

        report = ReconciliationService(chain).run(db)

        chain.token_uri.assert_called_once_with(notice.alert_token_id)
        assert report.matched == 1
        assert kinds(db) == []

    def test_token_uri_mismatch_recorded(self, db, make_notice, chain, recipient_address):
        notice = make_notice(ipfs_hash="QmStored")
        chain.owner_of.return_value = recipient_address
        chain.token_uri.return_value = "ipfs://QmOther"

        report = ReconciliationService(chain).run(db)

        row = db.query(ReconciliationDiscrepancy).one()
        assert row.kind == DiscrepancyKind.metadata_mismatch
        assert row.expected == "QmStored"
        assert row.actual == "ipfs://QmOther"
        assert report.matched == 0
        db.refresh(notice)
        assert notice.ipfs_hash == "QmStored"
        assert notice.chain_verified is False

    def test_token_uri_skipped_without_ipfs_hash(self, db, make_notice, chain, recipient_address):
        make_notice()
        chain.owner_of.return_value = recipient_address
        ReconciliationService(chain).run(db)
        chain.token_uri.assert_not_called()

    def test_token_seen_by_both_passes_counted_once(self, db, make_notice, chain, recipient_address):
        make_notice(alert_token_id=1, document_token_id=2)
        chain.get_notice_served_events.return_value = [NoticeServedEvent(
            alert_id=1, document_id=2, recipient="", transaction_id="ab" * 32,
            block_number=100, block_timestamp=None,
        )]
        chain.owner_of.return_value = recipient_address

        report = ReconciliationService(chain).run(db)

        assert report.checked == 1
        assert report.matched == 1


class TestEvents:

    def served(self, alert_id, document_id, tx="ab" * 32, recipient=""):
        return NoticeServedEvent(
            alert_id=alert_id, document_id=document_id, recipient=recipient,
            transaction_id=tx, block_number=100, block_timestamp=1700000000000,
        )

    def test_reconstructs_notice_from_complete_events(self, db, chain, recipient_address, server_address):
        chain.get_notice_served_events.return_value = [self.served(5, 6)]
        chain.get_notice_created_events.return_value = [NoticeCreatedEvent(
            notice_id=3, server=server_address, recipient=recipient_address,
            timestamp=1700000000, transaction_id="ab" * 32, block_number=100,
        )]
        chain.owner_of.return_value = recipient_address

        report = ReconciliationService(chain).run(db)

        assert report.reconstructed == ["NFT-5"]
        notice = db.query(Notice).filter(Notice.notice_id == "NFT-5").one()
        assert notice.source == NoticeSource.chain_reconstructed
        assert notice.case_number == "CHAIN-3"
        assert notice.document_token_id == 6
        assert notice.chain_verified is True

    def test_incomplete_event_recorded_missing(self, db, chain, recipient_address):
        chain.get_notice_served_events.return_value = [self.served(5, 6, recipient=recipient_address)]

        report = ReconciliationService(chain).run(db)

        assert report.reconstructed == []
        assert kinds(db) == ["missing_in_db"]
        assert db.query(Notice).count() == 0

    def test_existing_notice_only_gaps_filled(self, db, make_notice, chain, recipient_address):
        notice = make_notice(alert_token_id=9, document_token_id=None, transaction_hash="cd" * 32)
        chain.get_notice_served_events.return_value = [self.served(9, 10, tx="ef" * 32)]
        chain.owner_of.return_value = recipient_address

        ReconciliationService(chain).run(db)

        db.refresh(notice)
        assert notice.document_token_id == 10
        assert notice.transaction_hash == "cd" * 32
        assert notice.block_number == 100

    def test_pair_convention_is_informational(self, db, make_notice, chain, recipient_address):
        make_notice(alert_token_id=4, document_token_id=5)
        chain.get_notice_served_events.return_value = [self.served(4, 5)]
        chain.owner_of.return_value = recipient_address

        report = ReconciliationService(chain).run(db)

        assert kinds(db) == ["token_pair_convention"]
        assert report.matched == 1

    def test_failed_reconstruction_keeps_earlier_findings(self, db, chain, recipient_address, server_address):
        chain.get_notice_served_events.return_value = [self.served(4, 5)]
        chain.get_notice_created_events.return_value = [NoticeCreatedEvent(
            notice_id=3, server=server_address, recipient=recipient_address,
            timestamp=1700000000, transaction_id="ab" * 32, block_number=100,
        )]

        def failing_upsert(session, **data):
            session.rollback()
            raise StorageError("disk full")

        with patch.object(NoticeService, "upsert_notice", side_effect=failing_upsert):
            report = ReconciliationService(chain).run(db)

        assert report.reconstructed == []
        assert kinds(db) == ["missing_in_db", "token_pair_convention"]

    def test_event_fetch_failure(self, db, chain):
        chain.get_notice_served_events.side_effect = BlockchainUnavailableError("down")
        ReconciliationService(chain).run(db)
        assert kinds(db) == ["chain_unavailable"]


class TestRangeScan:

    def test_unknown_minted_token_is_missing(self, db, make_notice, chain, recipient_address, stranger_address):
        make_notice(alert_token_id=1, document_token_id=2)
        chain.owner_of.side_effect = lambda token_id: {1: recipient_address, 3: stranger_address}.get(token_id)
        chain.total_supply.return_value = 4

        ReconciliationService(chain).run(db, use_events=False, scan_range=True)

        rows = db.query(ReconciliationDiscrepancy).all()
        assert [(r.kind, r.token_id) for r in rows] == [(DiscrepancyKind.missing_in_db, 3)]

    def test_explicit_zero_start_is_scanned(self, db, chain):
        chain.owner_of.return_value = None

        ReconciliationService(chain).run(db, start_token=0, end_token=1, use_events=False, scan_range=True)

        assert [c.args[0] for c in chain.owner_of.call_args_list] == [0, 1]


class TestReview:

    def test_list_and_resolve(self, db, make_notice, chain):
        make_notice()
        chain.owner_of.return_value = None
        ReconciliationService(chain).run(db)

        [row] = list_open_discrepancies(db)
        assert list_open_discrepancies(db, kind="owner_mismatch") == []
        resolve_discrepancy(db, row.id)
        assert list_open_discrepancies(db) == []

    def test_unknown_kind(self, db):
        with pytest.raises(ValidationError):
            list_open_discrepancies(db, kind="bogus")

    def test_resolve_missing(self, db):
        with pytest.raises(NotFoundError):
            resolve_discrepancy(db, 12345)

"""
API tests for cases, the energy proxy, reconciliation review and health.
"""
from blockserved.db.models import DiscrepancyKind, ReconciliationDiscrepancy
from blockserved.utils.exceptions import ServiceNotConfiguredError

ADMIN = {"X-Admin-Token": "test-admin-token"}


class TestCases:

    def test_create_list_update(self, client, server_address):
        resp = client.post("/api/cases", json={
            "caseNumber": "CASE-2024-010",
            "serverAddress": server_address,
            "description": "Eviction",
        })
        assert resp.status_code == 201
        assert resp.json()["case"]["status"] == "draft"

        again = client.post("/api/cases", json={"caseNumber": "CASE-2024-010", "serverAddress": server_address})
        assert again.status_code == 201

        listing = client.get("/api/cases", headers={"X-Server-Address": server_address}).json()
        assert listing["count"] == 1

        updated = client.patch(
            "/api/cases/CASE-2024-010/status",
            json={"status": "closed"},
            headers={"X-Server-Address": server_address},
        )
        assert updated.json()["case"]["status"] == "closed"

    def test_serving_a_notice_creates_served_case(self, client, make_notice, server_address):
        make_notice(case_number="CASE-2024-020")
        [case] = client.get("/api/cases", headers={"X-Server-Address": server_address}).json()["cases"]
        assert case["case_number"] == "CASE-2024-020"
        assert case["status"] == "served"

    def test_status_update_checks(self, client, server_address, stranger_address):
        client.post("/api/cases", json={"caseNumber": "CASE-1", "serverAddress": server_address})
        headers = {"X-Server-Address": server_address}

        bad = client.patch("/api/cases/CASE-1/status", json={"status": "bogus"}, headers=headers)
        assert bad.status_code == 400

        mismatch = client.patch(
            "/api/cases/CASE-1/status",
            json={"status": "closed", "serverAddress": stranger_address},
            headers=headers,
        )
        assert mismatch.status_code == 403

        other = client.patch(
            "/api/cases/CASE-1/status",
            json={"status": "closed"},
            headers={"X-Server-Address": stranger_address},
        )
        assert other.status_code == 404


class TestEnergyProxy:

    def test_create_order_passes_through(self, client, energy_client, recipient_address):
        energy_client.create_order.return_value = {"status": "success", "orderID": "o-9"}

        resp = client.post("/api/energy/createOrder", json={"quantity": 65000, "receiver": recipient_address})

        assert resp.json() == {"status": "success", "orderID": "o-9"}
        energy_client.create_order.assert_called_once_with(65000, recipient_address, 1)

    def test_invalid_receiver(self, client, energy_client):
        resp = client.post("/api/energy/createOrder", json={"quantity": 65000, "receiver": "nope"})
        assert resp.status_code == 400
        energy_client.create_order.assert_not_called()

    def test_check_order(self, client, energy_client):
        energy_client.check_order.return_value = {"status": "filled"}
        assert client.post("/api/energy/checkOrder", json={"orderID": "o-9"}).json() == {"status": "filled"}

    def test_unconfigured(self, client, energy_client, recipient_address):
        energy_client.check_address.side_effect = ServiceNotConfiguredError("Energy.Store")
        resp = client.post("/api/energy/checkAddress", json={"address": recipient_address})
        assert resp.status_code == 503


class TestReconciliationApi:

    def test_admin_token_required(self, client):
        assert client.get("/api/reconciliation/discrepancies").status_code == 401
        assert client.get(
            "/api/reconciliation/discrepancies", headers={"X-Admin-Token": "wrong"},
        ).status_code == 401

    def test_run_list_resolve(self, client, db, make_notice, chain_client):
        make_notice()
        chain_client.get_notice_served_events.return_value = []
        chain_client.get_notice_created_events.return_value = []
        chain_client.owner_of.return_value = None

        run = client.post("/api/reconciliation/run", headers=ADMIN).json()
        assert run["report"]["discrepancy_counts"] == {"not_minted": 1}

        listing = client.get("/api/reconciliation/discrepancies", headers=ADMIN).json()
        [row] = listing["discrepancies"]
        assert row["kind"] == DiscrepancyKind.not_minted.value

        resolved = client.post(f"/api/reconciliation/discrepancies/{row['id']}/resolve", headers=ADMIN).json()
        assert resolved["discrepancy"]["resolved"] is True
        assert db.query(ReconciliationDiscrepancy).filter(ReconciliationDiscrepancy.resolved.is_(False)).count() == 0

    def test_unknown_kind_filter(self, client):
        resp = client.get("/api/reconciliation/discrepancies?kind=bogus", headers=ADMIN)
        assert resp.status_code == 400


class TestHealth:

    def test_root_and_liveness(self, client):
        assert client.get("/").json()["message"] == "BlockServed API is running"
        assert client.get("/health").json() == {"status": "healthy"}

    def test_readiness(self, client, storage):
        data = client.get("/api/health/ready").json()
        assert data["database"]["status"] == "ok"
        assert data["storage"]["primary"]["path"] == storage.primary_root
        assert data["chain"]["contractConfigured"] is True
        assert data["energy"]["configured"] is False

    def test_correlation_header(self, client):
        resp = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert resp.headers["X-Correlation-ID"] == "abc-123"

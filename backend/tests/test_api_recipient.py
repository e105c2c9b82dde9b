"""
API tests for the recipient portal and the document access endpoints.
"""
from blockserved.db.models import AccessAttempt, AuditLog, BlobKind


class TestRecipientPortal:

    def test_lists_only_own_notices(self, client, make_notice, recipient_address, stranger_address):
        mine = make_notice()
        make_notice(recipient_address=stranger_address)

        data = client.get(f"/api/recipient/{recipient_address}/notices").json()

        assert data["total"] == 1
        [row] = data["notices"]
        assert row["notice_id"] == mine.notice_id
        assert row["status"] == "not_viewed"
        assert "encryption_key" not in row

    def test_query_is_audited(self, client, db, recipient_address):
        client.get(
            f"/api/recipient/{recipient_address}/notices",
            headers={"X-Timezone": "America/Chicago", "User-Agent": "pytest-browser"},
        )
        entry = db.query(AuditLog).one()
        assert entry.actor_address == recipient_address

    def test_invalid_address(self, client):
        assert client.get("/api/recipient/garbage/notices").status_code == 400

    def test_document_marks_viewed(self, client, db, storage, make_notice, recipient_address, pdf_bytes):
        notice = make_notice()
        storage.store(db, notice.notice_id, BlobKind.document_full, pdf_bytes)

        resp = client.get(f"/api/recipient/{recipient_address}/notice/{notice.alert_token_id}/document")

        assert resp.status_code == 200
        payload = resp.json()["notice"]
        assert payload["encryption_key"] == notice.encryption_key
        assert payload["status"] == "viewed"
        assert payload["alreadySigned"] is False
        assert "/api/v2/documents/serve/" in payload["document_url"]

    def test_document_hidden_from_stranger(self, client, db, make_notice, stranger_address):
        notice = make_notice()
        resp = client.get(f"/api/recipient/{stranger_address}/notice/{notice.notice_id}/document")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Notice not found or you are not the recipient"
        assert db.query(AccessAttempt).filter(AccessAttempt.granted.is_(False)).count() == 1

    def test_accept_is_idempotent(self, client, make_notice, recipient_address):
        notice = make_notice()
        url = f"/api/recipient/{recipient_address}/notice/{notice.notice_id}/accept"

        first = client.post(url, json={"signature": "sig-1"}).json()
        second = client.post(url, json={"signature": "sig-2"}).json()

        assert first["alreadySigned"] is False
        assert first["message"] == "Document accepted successfully"
        assert second["alreadySigned"] is True
        assert second["signedAt"] == first["signedAt"]

        status = client.get(f"/api/recipient/{recipient_address}/notice/{notice.notice_id}/status").json()
        assert status["status"] == "signed"
        assert status["accepted"] is True

    def test_server_cannot_accept(self, client, make_notice, server_address):
        notice = make_notice()
        resp = client.post(f"/api/recipient/{server_address}/notice/{notice.notice_id}/accept", json={})
        assert resp.status_code == 403

    def test_status_for_stranger(self, client, make_notice, stranger_address):
        notice = make_notice()
        resp = client.get(f"/api/recipient/{stranger_address}/notice/{notice.notice_id}/status")
        assert resp.status_code == 404


class TestAccessEndpoints:

    def test_verify_then_fetch_document(self, client, db, storage, make_notice, recipient_address, pdf_bytes):
        notice = make_notice()
        storage.store(db, notice.notice_id, BlobKind.document_full, pdf_bytes)

        resp = client.post("/api/access/verify-recipient", json={
            "walletAddress": recipient_address,
            "noticeId": notice.notice_id,
        })
        assert resp.status_code == 200
        data = resp.json()
        assert data["isRecipient"] is True
        token = data["accessToken"]

        doc = client.get(f"/api/access/document/{notice.notice_id}", headers={"X-Access-Token": token})
        assert doc.status_code == 200
        assert doc.content == pdf_bytes

    def test_document_requires_token(self, client, make_notice):
        notice = make_notice()
        assert client.get(f"/api/access/document/{notice.notice_id}").status_code == 401

    def test_token_for_other_notice_rejected(self, client, make_notice, recipient_address):
        first = make_notice()
        second = make_notice()
        token = client.post("/api/access/verify-recipient", json={
            "walletAddress": recipient_address,
            "noticeId": first.notice_id,
        }).json()["accessToken"]

        resp = client.get(f"/api/access/document/{second.notice_id}", headers={"X-Access-Token": token})
        assert resp.status_code == 403

    def test_verify_denied_and_missing(self, client, make_notice, stranger_address):
        notice = make_notice()
        denied = client.post("/api/access/verify-recipient", json={
            "walletAddress": stranger_address,
            "noticeId": notice.notice_id,
        })
        assert denied.status_code == 403

        missing = client.post("/api/access/verify-recipient", json={
            "walletAddress": stranger_address,
            "noticeId": "nope",
        })
        assert missing.status_code == 404

    def test_public_info_has_no_secrets(self, client, make_notice):
        notice = make_notice()
        data = client.get(f"/api/access/public/{notice.alert_token_id}").json()
        assert data["alertTokenId"] == notice.alert_token_id
        assert data["requiresAuthentication"] is True
        assert "encryptionKey" not in data
        assert "recipientAddress" not in data

    def test_attempt_history_for_server(self, client, make_notice, server_address, stranger_address):
        notice = make_notice()
        client.post("/api/access/verify-recipient", json={
            "walletAddress": stranger_address,
            "noticeId": notice.notice_id,
        })

        data = client.get(
            f"/api/access/attempts/{notice.notice_id}",
            headers={"X-Server-Address": server_address},
        ).json()
        [attempt] = data["attempts"]
        assert attempt["wallet_address"] == stranger_address
        assert attempt["granted"] is False

        resp = client.get(
            f"/api/access/attempts/{notice.notice_id}",
            headers={"X-Server-Address": stranger_address},
        )
        assert resp.status_code == 403


class TestAuditLog:

    def test_server_reads_recipient_activity(self, client, make_notice, recipient_address, server_address):
        notice = make_notice()
        client.get(
            f"/api/recipient/{recipient_address}/notice/{notice.notice_id}/document",
            headers={"X-Timezone": "America/Chicago"},
        )
        client.post(f"/api/recipient/{recipient_address}/notice/{notice.notice_id}/accept", json={})

        data = client.get(
            f"/api/audit/{notice.alert_token_id}",
            headers={"X-Server-Address": server_address},
        ).json()

        assert data["noticeId"] == notice.notice_id
        assert data["totalEvents"] == 2
        actions = [e["action"] for e in data["events"]]
        assert sorted(actions) == ["recipient_document_accept", "recipient_document_view"]
        view = next(e for e in data["events"] if e["action"] == "recipient_document_view")
        assert view["wallet"] == recipient_address
        assert view["timezone"] == "America/Chicago"
        assert view["description"] == f"Recipient viewed document for notice {notice.notice_id}"

    def test_action_type_filter(self, client, make_notice, recipient_address, server_address):
        notice = make_notice()
        client.get(f"/api/recipient/{recipient_address}/notice/{notice.notice_id}/document")
        client.post(f"/api/recipient/{recipient_address}/notice/{notice.notice_id}/accept", json={})

        data = client.get(
            f"/api/audit/{notice.notice_id}?actionType=recipient_document_accept",
            headers={"X-Server-Address": server_address},
        ).json()
        assert [e["action"] for e in data["events"]] == ["recipient_document_accept"]

    def test_other_server_forbidden(self, client, make_notice, stranger_address):
        notice = make_notice()
        resp = client.get(f"/api/audit/{notice.notice_id}", headers={"X-Server-Address": stranger_address})
        assert resp.status_code == 403

    def test_unknown_notice_and_missing_header(self, client, make_notice, server_address):
        notice = make_notice()
        assert client.get("/api/audit/nope", headers={"X-Server-Address": server_address}).status_code == 404
        assert client.get(f"/api/audit/{notice.notice_id}").status_code == 400

"""
API tests for disk-backed document storage and the standalone PDF store.
"""
import base64
from datetime import timedelta

from blockserved.db.models import AuditLog, NoticeBlob, StorageType


def upload(client, data, notice_id=None, filename="notice.pdf"):
    form = {"noticeId": notice_id} if notice_id else {}
    return client.post(
        "/api/v2/documents/upload-to-disk",
        files={"pdf": (filename, data, "application/pdf")},
        data=form,
    )


class TestUploadToDisk:

    def test_upload_serve_round_trip(self, client, db, make_notice, pdf_bytes):
        notice = make_notice()

        resp = upload(client, pdf_bytes, notice.notice_id)

        assert resp.status_code == 200
        data = resp.json()
        assert data["size"] == len(pdf_bytes)
        assert data["pageCount"] == 2
        assert data["storageType"] == StorageType.disk.value
        assert data["url"].endswith(f"/api/v2/documents/serve/{data['fileName']}")

        served = client.get(f"/api/v2/documents/serve/{data['fileName']}")
        assert served.status_code == 200
        assert served.content == pdf_bytes
        assert served.headers["content-type"] == "application/pdf"

        db.refresh(notice)
        assert notice.page_count == 2
        assert db.query(AuditLog).filter(AuditLog.target_id == notice.notice_id).count() == 1

    def test_upload_keyed_by_token_id(self, client, db, storage, make_notice, pdf_bytes, recipient_address):
        notice = make_notice(alert_token_id=1, document_token_id=2)

        assert upload(client, pdf_bytes, "1").status_code == 200

        assert db.query(NoticeBlob).one().notice_id == notice.notice_id
        resp = client.get("/api/v2/documents/get-from-disk/1", headers={"X-Wallet-Address": recipient_address})
        assert resp.status_code == 200
        assert resp.content == pdf_bytes
        assert storage.find_orphans(db, timedelta(0)) == []

    def test_upload_before_notice_exists(self, client, db, pdf_bytes):
        resp = upload(client, pdf_bytes)
        assert resp.status_code == 200
        assert db.query(NoticeBlob).one().notice_id is None

    def test_non_pdf_rejected(self, client):
        resp = upload(client, b"GIF89a....", filename="image.gif")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Only PDF files are allowed"

    def test_serve_unknown(self, client):
        assert client.get("/api/v2/documents/serve/missing.pdf").status_code == 404


class TestThumbnails:

    def test_data_uri_stored_inline(self, client, make_notice):
        notice = make_notice()
        payload = "data:image/png;base64," + base64.b64encode(b"\x89PNG tiny").decode()

        data = client.post("/api/v2/documents/store-thumbnail", json={
            "noticeId": notice.notice_id,
            "thumbnail": payload,
        }).json()

        assert data["storageType"] == StorageType.inline.value
        assert data["url"].startswith("data:image/png;base64,")

    def test_empty_thumbnail(self, client, make_notice):
        notice = make_notice()
        resp = client.post("/api/v2/documents/store-thumbnail", json={
            "noticeId": notice.notice_id,
            "thumbnail": "",
        })
        assert resp.status_code == 400


class TestAttach:

    def test_early_upload_attached_by_server(self, client, db, storage, make_notice, pdf_bytes, server_address):
        file_name = upload(client, pdf_bytes).json()["fileName"]
        notice = make_notice()

        resp = client.post(
            "/api/v2/documents/attach",
            json={"fileName": file_name, "noticeId": notice.notice_id},
            headers={"X-Server-Address": server_address},
        )

        assert resp.status_code == 200
        assert resp.json()["noticeId"] == notice.notice_id
        assert storage.find_orphans(db, timedelta(0)) == []
        db.refresh(notice)
        assert notice.page_count == 2

    def test_other_server_forbidden(self, client, make_notice, pdf_bytes, stranger_address):
        file_name = upload(client, pdf_bytes).json()["fileName"]
        notice = make_notice()
        resp = client.post(
            "/api/v2/documents/attach",
            json={"fileName": file_name, "noticeId": notice.notice_id},
            headers={"X-Server-Address": stranger_address},
        )
        assert resp.status_code == 403

    def test_unknown_file(self, client, make_notice, server_address):
        notice = make_notice()
        resp = client.post(
            "/api/v2/documents/attach",
            json={"fileName": "missing.pdf", "noticeId": notice.notice_id},
            headers={"X-Server-Address": server_address},
        )
        assert resp.status_code == 404


class TestGetFromDisk:

    def test_parties_only(self, client, make_notice, pdf_bytes, recipient_address, server_address, stranger_address):
        notice = make_notice()
        upload(client, pdf_bytes, notice.notice_id)
        url = f"/api/v2/documents/get-from-disk/{notice.notice_id}"

        assert client.get(url, headers={"X-Wallet-Address": recipient_address}).content == pdf_bytes
        assert client.get(url, headers={"X-Server-Address": server_address}).status_code == 200
        assert client.get(url, headers={"X-Wallet-Address": stranger_address}).status_code == 403

    def test_no_document_yet(self, client, make_notice, recipient_address):
        notice = make_notice()
        resp = client.get(
            f"/api/v2/documents/get-from-disk/{notice.notice_id}",
            headers={"X-Wallet-Address": recipient_address},
        )
        assert resp.status_code == 404


class TestPdfSimple:

    def test_upload_retrieve_list(self, client, pdf_bytes):
        resp = client.post(
            "/api/pdf-simple/upload",
            files={"document": ("scan.pdf", pdf_bytes, "application/pdf")},
        )
        assert resp.status_code == 200
        data = resp.json()
        file_id = data["fileId"]
        assert data["fileSize"] == len(pdf_bytes)
        assert data["retrieveUrl"] == f"/api/pdf-simple/retrieve/{file_id}"

        assert client.get(data["retrieveUrl"]).content == pdf_bytes
        assert client.get(data["directUrl"]).content == pdf_bytes

        listing = client.get("/api/pdf-simple/list").json()
        assert listing["count"] == 1
        assert listing["files"][0]["fileId"] == file_id

        health = client.get("/api/pdf-simple/health").json()
        assert health["success"] is True
        assert health["pdfCount"] == 1

    def test_retrieve_unknown(self, client):
        assert client.get("/api/pdf-simple/retrieve/0123abcd").status_code == 404

    def test_rejects_non_pdf(self, client):
        resp = client.post(
            "/api/pdf-simple/upload",
            files={"document": ("notes.txt", b"plain text", "text/plain")},
        )
        assert resp.status_code == 400

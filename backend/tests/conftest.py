"""
Shared fixtures.

Settings are read once at import time, so the environment is pinned here
before anything from blockserved is imported.
"""
import io
import os
import tempfile

_DATA_DIR = tempfile.mkdtemp(prefix="blockserved-tests-")
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["DISK_MOUNT_PATH"] = os.path.join(_DATA_DIR, "mount")
os.environ["DOCUMENT_STORAGE_PATH"] = os.path.join(_DATA_DIR, "local")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-0123456789abcdef0123"
os.environ["ENERGY_STORE_API_ID"] = ""
os.environ["ENERGY_STORE_API_KEY"] = ""
os.environ["CONTRACT_ADDRESS"] = "TT1yMvy76jHce2Tz2Yqf2kuoTDHrM4VZzS"

import pytest
from fastapi.testclient import TestClient
from reportlab.pdfgen import canvas
from unittest.mock import MagicMock

from blockserved.api.v1.deps import get_chain_client, get_energy_client, get_storage
from blockserved.db.database import Base, SessionLocal, engine, get_db
from blockserved.db import models  # noqa: F401
from blockserved.main import app
from blockserved.services.notice_service import NoticeService
from blockserved.services.storage_service import DocumentStorage


# =============================================================================
# WALLETS
# =============================================================================

SERVER = "TLa2f6VPqDgRE67v1736s7bJ8Ray5wYjU7"
RECIPIENT = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
STRANGER = "TRU5sfpi1jGjgmRrtyjPXhi73GLFsC1jiN"


@pytest.fixture
def server_address():
    return SERVER


@pytest.fixture
def recipient_address():
    return RECIPIENT


@pytest.fixture
def stranger_address():
    return STRANGER


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def db():
    """Fresh schema per test on the shared in-memory SQLite connection."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_notice(db):
    """Create a notice served by SERVER to RECIPIENT; keyword overrides apply."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        n = counter["n"]
        data = {
            "case_number": f"CASE-2024-{n:03d}",
            "recipient_address": RECIPIENT,
            "server_address": SERVER,
            "notice_type": "Summons",
            "issuing_agency": "County Court",
            "notice_id": f"N-{n}",
            "alert_token_id": 2 * n - 1,
            "document_token_id": 2 * n,
            "encryption_key": f"key-{n}",
        }
        data.update(overrides)
        notice_id = NoticeService.create_notice(db, **data)
        return NoticeService.get_notice(db, notice_id)

    return _make


# =============================================================================
# STORAGE / PDF
# =============================================================================

@pytest.fixture
def storage(tmp_path):
    return DocumentStorage(
        primary_root=str(tmp_path / "mount" / "documents"),
        fallback_root=str(tmp_path / "local"),
        inline_max_bytes=1024,
    )


def build_pdf(pages: int = 1) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf)
    for i in range(pages):
        c.drawString(72, 720, f"Legal notice page {i + 1}")
        c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture
def pdf_bytes():
    return build_pdf(pages=2)


# =============================================================================
# APP
# =============================================================================

@pytest.fixture
def chain_client():
    client = MagicMock()
    client.get_transaction_info.return_value = None
    return client


@pytest.fixture
def energy_client():
    return MagicMock()


@pytest.fixture
def client(db, storage, chain_client, energy_client):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_chain_client] = lambda: chain_client
    app.dependency_overrides[get_energy_client] = lambda: energy_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

"""Shared fixtures for ledger tests."""

import pytest
from fastapi.testclient import TestClient

from docledger.core.config import Settings
from docledger.main import create_app
from docledger.services.ledger import Ledger
from docledger.services.ledger_service import LedgerService
from docledger.services.transaction_pool import DocumentCategory, DocumentRegistration
from docledger.services.hashing import digest_bytes


TEST_SECRET = "test-ledger-secret"


@pytest.fixture
def settings():
    """Settings isolated from the environment defaults."""
    return Settings(
        SECRET_KEY=TEST_SECRET,
        ledger_difficulty=2,
        seal_on_register=True,
        reject_duplicate_content=True,
        ocr_confidence_threshold=70.0,
        max_upload_size_mb=1,
    )


@pytest.fixture
def fresh_ledger():
    """A new ledger with only its genesis block."""
    return Ledger(difficulty=2, secret_key=TEST_SECRET)


@pytest.fixture
def service(settings):
    """A new service with its own ledger and tracker."""
    return LedgerService(settings=settings)


@pytest.fixture
def client(settings, service):
    """Test client bound to the ``service`` fixture."""
    app = create_app(settings=settings, service=service, configure_logging=False)
    return TestClient(app)


@pytest.fixture
def sample_content():
    return b"%PDF-1.4 Sale deed for plot no. 45, khasra 112/3, village Rampur."


def make_registration(content: bytes, document_id: str = "DOC-TEST-1", **overrides) -> DocumentRegistration:
    fields = {
        "document_id": document_id,
        "file_name": f"{document_id}.pdf",
        "content_fingerprint": digest_bytes(content),
        "uploader_id": "user_123",
        "document_category": DocumentCategory.LAND_DEED,
        "linked_case_id": None,
        "metadata_fingerprint": "",
    }
    fields.update(overrides)
    return DocumentRegistration(**fields)


def metadata(document_id: str, **overrides) -> dict:
    data = {
        "document_id": document_id,
        "file_name": f"{document_id}.pdf",
        "uploader_id": "user_123",
        "document_category": "land_deed",
    }
    data.update(overrides)
    return data

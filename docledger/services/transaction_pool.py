"""
Pending document-registration transactions.

Transactions are created here, wait in the pool, and are drained as a batch
when the ledger seals a block. The pool never checks for duplicate content;
that is the registration policy's job.
"""

import logging
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from docledger.core.errors import ValidationError
from docledger.services.hashing import compute_integrity_tag, verify_integrity_tag

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================

class TransactionKind(str, Enum):
    """Kinds of ledger transactions."""
    DOCUMENT_UPLOAD = "DOCUMENT_UPLOAD"


class DocumentCategory(str, Enum):
    """Land-record document categories accepted for registration."""
    LAND_DEED = "land_deed"
    SALE_DEED = "sale_deed"
    MUTATION_RECORD = "mutation_record"
    SURVEY_MAP = "survey_map"
    TAX_RECEIPT = "tax_receipt"
    IDENTITY_PROOF = "identity_proof"
    ADDRESS_PROOF = "address_proof"
    COURT_ORDER = "court_order"
    AGREEMENT = "agreement"
    AFFIDAVIT = "affidavit"
    POWER_OF_ATTORNEY = "power_of_attorney"
    PARTITION_DEED = "partition_deed"
    INHERITANCE_CERTIFICATE = "inheritance_certificate"
    ENCUMBRANCE_CERTIFICATE = "encumbrance_certificate"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DocumentCategory":
        """Missing means OTHER; anything unknown is rejected."""
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return cls.OTHER
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Unknown document category: {value}",
                details=[{"allowed": [c.value for c in cls]}],
            )


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class DocumentRegistration:
    """What a caller hands to the pool: one upload's identity and fingerprints."""
    document_id: str
    file_name: str
    content_fingerprint: str
    uploader_id: str
    document_category: DocumentCategory = DocumentCategory.OTHER
    linked_case_id: Optional[str] = None
    metadata_fingerprint: str = ""


@dataclass(frozen=True)
class Transaction:
    """
    A document-registration transaction.

    Created once and never changed; copied verbatim into exactly one block.
    """
    transaction_id: str
    kind: TransactionKind
    created_at: str
    document_id: str
    file_name: str
    content_fingerprint: str
    metadata_fingerprint: str
    uploader_id: str
    linked_case_id: Optional[str]
    document_category: DocumentCategory
    integrity_tag: str = ""

    def payload(self) -> dict:
        """Every field except the integrity tag, JSON-ready."""
        data = self.to_dict()
        data.pop("integrity_tag")
        return data

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["document_category"] = self.document_category.value
        return data

    def has_valid_tag(self, secret_key: Optional[str] = None) -> bool:
        return verify_integrity_tag(self.payload(), self.integrity_tag, secret_key)


def generate_transaction_id() -> str:
    return f"tx_{uuid4().hex}"


# =============================================================================
# TRANSACTION POOL
# =============================================================================

class TransactionPool:
    """Unordered staging area for transactions awaiting a block."""

    def __init__(self, secret_key: Optional[str] = None):
        self._secret_key = secret_key
        self._pending: list[Transaction] = []
        self._lock = threading.Lock()

    def submit(self, registration: DocumentRegistration) -> Transaction:
        """Build a tagged transaction for ``registration`` and queue it."""
        unsigned = Transaction(
            transaction_id=generate_transaction_id(),
            kind=TransactionKind.DOCUMENT_UPLOAD,
            created_at=datetime.now(timezone.utc).isoformat(),
            document_id=registration.document_id,
            file_name=registration.file_name,
            content_fingerprint=registration.content_fingerprint,
            metadata_fingerprint=registration.metadata_fingerprint,
            uploader_id=registration.uploader_id,
            linked_case_id=registration.linked_case_id,
            document_category=registration.document_category,
        )
        tag = compute_integrity_tag(unsigned.payload(), self._secret_key)
        transaction = replace(unsigned, integrity_tag=tag)

        with self._lock:
            self._pending.append(transaction)
            pending = len(self._pending)

        logger.debug(
            "Transaction %s queued for document %s (%d pending)",
            transaction.transaction_id,
            transaction.document_id,
            pending,
            extra={"document_id": transaction.document_id},
        )
        return transaction

    def drain_all(self) -> list[Transaction]:
        """Remove and return every pending transaction in one step."""
        with self._lock:
            drained, self._pending = self._pending, []
        return drained

    def peek(self) -> list[Transaction]:
        """Copy of the pending list; the pool is unchanged."""
        with self._lock:
            return list(self._pending)

    def find_by_fingerprint(self, content_fingerprint: str) -> Optional[Transaction]:
        with self._lock:
            return next(
                (tx for tx in self._pending if tx.content_fingerprint == content_fingerprint),
                None,
            )

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def __len__(self) -> int:
        return self.pending_count

"""
Ledger Service - the boundary the upload, review and certificate handlers use.

Wires together the ledger, its transaction pool, the verification tracker and
the certificate generator. One instance per process, created by the app
factory and handed to routes through ``app.state``. Tests build their own.

Every document gets:
1. A document ID (DOC-YYYY-NNNNNN-XXXX) unless the caller supplies one
2. A content fingerprint (SHA-256 of the bytes)
3. A metadata fingerprint (SHA-256 of the canonical metadata record)
4. A tagged transaction, sealed into a block right away (or later, if
   sealing on register is switched off)
5. A verification record that starts at ``pending``
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union
from uuid import uuid4

from docledger.core.config import Settings, get_settings
from docledger.core.errors import (
    DuplicateContentError,
    IntegrityViolation,
    NotFoundError,
    ValidationError,
)
from docledger.services.certificate_generator import Certificate, CertificateGenerator
from docledger.services.hashing import digest_bytes, digest_record, is_fingerprint, normalize_fingerprint
from docledger.services.ledger import Block, ChainAudit, Ledger, LedgerLookup
from docledger.services.transaction_pool import DocumentCategory, DocumentRegistration, Transaction
from docledger.services.verification_status import (
    CaseVerificationSummary,
    DocumentVerificationRecord,
    SealRecord,
    VerificationStatus,
    VerificationSummary,
    VerificationTracker,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DOCUMENT ID GENERATOR
# =============================================================================

class DocumentIDGenerator:
    """Generate unique, timestamped document IDs."""

    _counter = 0
    _last_year = ""
    _lock = threading.Lock()

    @classmethod
    def generate(cls) -> str:
        """
        Document ID in format DOC-YYYY-NNNNNN-XXXX

        YYYY = Year, NNNNNN = counter (resets yearly), XXXX = random suffix
        """
        year = datetime.now(timezone.utc).strftime("%Y")
        with cls._lock:
            if year != cls._last_year:
                cls._counter = 0
                cls._last_year = year
            cls._counter += 1
            counter = cls._counter
        return f"DOC-{year}-{counter:06d}-{uuid4().hex[:4].upper()}"

    @classmethod
    def is_valid(cls, doc_id: str) -> bool:
        return bool(re.match(r"^DOC-\d{4}-\d{6}-[A-Z0-9]{4}$", doc_id or ""))


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class DocumentMetadata:
    """Metadata the upload handler supplies alongside the bytes."""
    file_name: str
    uploader_id: str
    document_category: DocumentCategory = DocumentCategory.OTHER
    linked_case_id: Optional[str] = None
    document_id: Optional[str] = None
    mime_type: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentMetadata":
        return cls(
            file_name=data.get("file_name", ""),
            uploader_id=data.get("uploader_id", ""),
            document_category=DocumentCategory.parse(data.get("document_category")),
            linked_case_id=data.get("linked_case_id") or None,
            document_id=data.get("document_id") or None,
            mime_type=data.get("mime_type", ""),
            description=data.get("description", ""),
        )

    def validate(self) -> None:
        self.document_category = DocumentCategory.parse(self.document_category)
        errors = []
        if not (self.file_name or "").strip():
            errors.append({"loc": ["file_name"], "msg": "must not be empty", "type": "value_error"})
        if not (self.uploader_id or "").strip():
            errors.append({"loc": ["uploader_id"], "msg": "must not be empty", "type": "value_error"})
        if errors:
            raise ValidationError("Invalid document metadata", details=errors)


@dataclass
class RegistrationResult:
    """Outcome of ``register``: the transaction and the block it landed in."""
    transaction: Transaction
    block: Optional[Block]
    verification: DocumentVerificationRecord

    @property
    def sealed(self) -> bool:
        return self.block is not None

    def to_dict(self) -> dict:
        return {
            "document_id": self.transaction.document_id,
            "sealed": self.sealed,
            "transaction": self.transaction.to_dict(),
            "block": self.block.summary() if self.block else None,
            "verification_status": self.verification.status.value,
        }


@dataclass
class VerificationResult:
    """Whether a fingerprint is sealed, and where."""
    verified: bool
    content_fingerprint: str
    chain_integrity: bool
    block_index: Optional[int] = None
    block_digest: Optional[str] = None
    sealed_at: Optional[str] = None
    transaction_id: Optional[str] = None
    document_id: Optional[str] = None
    checked_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "verified": self.verified,
            "content_fingerprint": self.content_fingerprint,
            "chain_integrity": self.chain_integrity,
            "block_index": self.block_index,
            "block_digest": self.block_digest,
            "sealed_at": self.sealed_at,
            "transaction_id": self.transaction_id,
            "document_id": self.document_id,
            "checked_at": self.checked_at,
        }


@dataclass
class ChainStats:
    total_blocks: int
    total_sealed_transactions: int
    pending_count: int
    chain_integrity: bool
    latest_block_digest: str
    genesis_block_digest: str
    difficulty: int

    def to_dict(self) -> dict:
        return {
            "total_blocks": self.total_blocks,
            "total_sealed_transactions": self.total_sealed_transactions,
            "pending_count": self.pending_count,
            "chain_integrity": self.chain_integrity,
            "latest_block_digest": self.latest_block_digest,
            "genesis_block_digest": self.genesis_block_digest,
            "difficulty": self.difficulty,
        }


# =============================================================================
# LEDGER SERVICE
# =============================================================================

class LedgerService:
    """Registration, verification, review and certificates over one ledger."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        ledger: Optional[Ledger] = None,
        tracker: Optional[VerificationTracker] = None,
    ):
        self.settings = settings or get_settings()
        secret_key = self.settings.SECRET_KEY
        self.ledger = ledger or Ledger(difficulty=self.settings.ledger_difficulty, secret_key=secret_key)
        self.tracker = tracker or VerificationTracker(
            ocr_confidence_threshold=self.settings.ocr_confidence_threshold
        )
        self.certificates = CertificateGenerator(self.ledger, secret_key)
        self._register_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(
        self,
        content: bytes,
        metadata: Union[DocumentMetadata, dict[str, Any]],
    ) -> RegistrationResult:
        """
        Fingerprint ``content``, queue its transaction and seal it.

        Raises:
            ValidationError: metadata incomplete or document ID already used
            DuplicateContentError: identical content already sealed or pending
        """
        if isinstance(metadata, dict):
            metadata = DocumentMetadata.from_dict(metadata)
        metadata.validate()

        content_fingerprint = digest_bytes(content)
        document_id = metadata.document_id or DocumentIDGenerator.generate()

        metadata_fingerprint = digest_record({
            "document_id": document_id,
            "file_name": metadata.file_name,
            "file_size": len(content),
            "mime_type": metadata.mime_type,
            "uploader_id": metadata.uploader_id,
            "linked_case_id": metadata.linked_case_id,
            "document_category": metadata.document_category.value,
        })

        with self._register_lock:
            self._check_not_registered(content_fingerprint, document_id)
            transaction = self.ledger.pool.submit(DocumentRegistration(
                document_id=document_id,
                file_name=metadata.file_name,
                content_fingerprint=content_fingerprint,
                uploader_id=metadata.uploader_id,
                document_category=metadata.document_category,
                linked_case_id=metadata.linked_case_id,
                metadata_fingerprint=metadata_fingerprint,
            ))
            verification = self.tracker.track(document_id, metadata.linked_case_id)

        logger.info(
            "Registered document %s (%s) fingerprint %s",
            document_id,
            metadata.file_name,
            content_fingerprint,
            extra={"document_id": document_id},
        )

        block = None
        if self.settings.seal_on_register:
            block = self._seal_and_locate(transaction)

        return RegistrationResult(transaction=transaction, block=block, verification=verification)

    def _check_not_registered(self, content_fingerprint: str, document_id: str) -> None:
        if self.settings.reject_duplicate_content:
            existing = self.ledger.find_recorded_fingerprint(content_fingerprint)
            if existing.found and existing.block_index is not None:
                raise DuplicateContentError(content_fingerprint, {
                    "document_id": existing.transaction.document_id,
                    "file_name": existing.transaction.file_name,
                    "block_index": existing.block_index,
                    "block_digest": existing.block_digest,
                    "sealed_at": existing.sealed_at,
                })
            if existing.found:
                raise DuplicateContentError(content_fingerprint, {
                    "document_id": existing.transaction.document_id,
                    "file_name": existing.transaction.file_name,
                    "sealed": False,
                })

        if self.tracker.find(document_id) is not None:
            raise ValidationError(f"Document '{document_id}' is already registered")

    def _seal_and_locate(self, transaction: Transaction) -> Block:
        block = self.ledger.seal_pending_transactions()
        if block is None or transaction not in block.transactions:
            # Another seal drained this transaction first; seals are
            # serialized, so it is already appended by now.
            lookup = self.ledger.find_transaction_by_id(transaction.transaction_id)
            block = self.ledger.blocks[lookup.block_index]
        self._attach_seals(block)
        return block

    def _attach_seals(self, block: Block) -> None:
        for tx in block.transactions:
            self.tracker.attach_seal(tx.document_id, SealRecord(
                content_fingerprint=tx.content_fingerprint,
                transaction_id=tx.transaction_id,
                block_index=block.index,
                block_digest=block.block_digest,
                sealed_at=block.created_at,
            ))

    def seal_pending(self) -> Optional[Block]:
        """Seal whatever is pending (for deferred sealing)."""
        block = self.ledger.seal_pending_transactions()
        if block is not None:
            self._attach_seals(block)
        return block

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify_by_bytes(self, content: bytes) -> VerificationResult:
        return self._verify(digest_bytes(content))

    def verify_by_fingerprint(self, fingerprint: str) -> VerificationResult:
        """Raises ValidationError unless ``fingerprint`` is a 64-char hex digest."""
        if not is_fingerprint(fingerprint):
            raise ValidationError(
                "Malformed fingerprint: expected 64 hexadecimal characters",
                details=[{"loc": ["fingerprint"], "msg": "not a SHA-256 hex digest", "type": "value_error"}],
            )
        return self._verify(normalize_fingerprint(fingerprint))

    def _verify(self, content_fingerprint: str) -> VerificationResult:
        lookup = self.ledger.find_transaction_by_fingerprint(content_fingerprint)
        chain_integrity = self.ledger.validate_chain()
        if not lookup.found:
            logger.info("Fingerprint %s not found in ledger", content_fingerprint)
            return VerificationResult(
                verified=False,
                content_fingerprint=content_fingerprint,
                chain_integrity=chain_integrity,
            )

        return VerificationResult(
            verified=True,
            content_fingerprint=content_fingerprint,
            chain_integrity=chain_integrity,
            block_index=lookup.block_index,
            block_digest=lookup.block_digest,
            sealed_at=lookup.sealed_at,
            transaction_id=lookup.transaction.transaction_id,
            document_id=lookup.transaction.document_id,
        )

    def get_blockchain_record(self, document_id: str) -> LedgerLookup:
        lookup = self.ledger.find_transaction_by_document_id(document_id)
        if not lookup.found:
            raise NotFoundError("Ledger record for document", document_id)
        return lookup

    def chain_stats(self) -> ChainStats:
        blocks = self.ledger.blocks
        return ChainStats(
            total_blocks=len(blocks),
            total_sealed_transactions=sum(len(block.transactions) for block in blocks),
            pending_count=self.ledger.pool.pending_count,
            chain_integrity=self.ledger.validate_chain(),
            latest_block_digest=blocks[-1].block_digest,
            genesis_block_digest=blocks[0].block_digest,
            difficulty=self.ledger.difficulty,
        )

    def assert_chain_intact(self) -> ChainAudit:
        """Audit the chain; raise IntegrityViolation if anything is broken."""
        audit = self.ledger.audit_chain()
        if not audit.is_valid:
            raise IntegrityViolation(
                f"Ledger integrity compromised: {len(audit.broken_links)} problem(s) found",
                broken_links=[link.to_dict() for link in audit.broken_links],
            )
        return audit

    # -------------------------------------------------------------------------
    # Verification workflow
    # -------------------------------------------------------------------------

    def record_ocr_result(
        self,
        document_id: str,
        text: Optional[str] = None,
        confidence: float = 0.0,
        error: Optional[str] = None,
    ) -> DocumentVerificationRecord:
        return self.tracker.record_ocr_result(document_id, text=text, confidence=confidence, error=error)

    def assign_case(self, document_id: str, case_id: str) -> DocumentVerificationRecord:
        return self.tracker.assign_case(document_id, case_id)

    def record_review_decision(
        self,
        document_id: str,
        verified: bool,
        reviewer_id: str,
        remarks: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> VerificationStatus:
        record = self.tracker.record_review_decision(
            document_id,
            verified=verified,
            reviewer_id=reviewer_id,
            remarks=remarks,
            rejection_reason=rejection_reason,
        )
        return record.status

    def get_verification_record(self, document_id: str) -> DocumentVerificationRecord:
        return self.tracker.get(document_id)

    def case_summary(self, case_id: str) -> CaseVerificationSummary:
        return self.tracker.case_summary(case_id)

    def awaiting_review(self) -> list[DocumentVerificationRecord]:
        return self.tracker.awaiting_review()

    def verification_summary(self) -> VerificationSummary:
        return self.tracker.verification_summary()

    # -------------------------------------------------------------------------
    # Certificates
    # -------------------------------------------------------------------------

    def generate_certificate(self, document_id: str) -> Optional[Certificate]:
        return self.certificates.generate_certificate(document_id)

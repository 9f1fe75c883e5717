"""
Document Verification Workflow

Tracks each registered document through:

    pending -> ocr-processed -> lawyer-review -> verified | rejected

- OCR success (text extracted and analysed) moves pending -> ocr-processed.
  OCR failure keeps the document pending; sealing does not depend on OCR.
- A document that is ocr-processed and belongs to a case is awaiting a
  reviewer, so it moves to lawyer-review without a separate trigger.
- A reviewer decision moves lawyer-review -> verified or rejected. Both are
  terminal. Rejection requires a non-blank reason.

Being sealed in the ledger is recorded separately (``SealRecord``) and can
be attached at any time.

Case-level status is derived from the case's documents every time it is
asked for, never stored:
- issues-found if any document is rejected
- complete if every document is verified
- partial otherwise (pending for a case with no documents)
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from docledger.core.errors import InvalidTransitionError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================

class VerificationStatus(str, Enum):
    """Per-document verification state."""
    PENDING = "pending"
    OCR_PROCESSED = "ocr-processed"
    LAWYER_REVIEW = "lawyer-review"
    VERIFIED = "verified"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (VerificationStatus.VERIFIED, VerificationStatus.REJECTED)


class CaseOverallStatus(str, Enum):
    """Aggregate verification state of a case."""
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"
    ISSUES_FOUND = "issues-found"


# Legal moves. Anything else is an InvalidTransitionError.
ALLOWED_TRANSITIONS: dict[VerificationStatus, frozenset[VerificationStatus]] = {
    VerificationStatus.PENDING: frozenset({VerificationStatus.OCR_PROCESSED}),
    VerificationStatus.OCR_PROCESSED: frozenset({VerificationStatus.LAWYER_REVIEW}),
    VerificationStatus.LAWYER_REVIEW: frozenset({VerificationStatus.VERIFIED, VerificationStatus.REJECTED}),
    VerificationStatus.VERIFIED: frozenset(),
    VerificationStatus.REJECTED: frozenset(),
}


# =============================================================================
# CONTENT ANALYSIS
# =============================================================================

# Keywords that suggest a land-record category in extracted text.
DOCUMENT_PATTERNS: dict[str, list[str]] = {
    "land_deed": ["deed", "conveyance", "property", "land", "plot", "khasra", "khatauni", "registry", "registered"],
    "sale_deed": ["sale deed", "sold", "purchaser", "vendor", "consideration", "transfer"],
    "mutation_record": ["mutation", "fard", "jamabandi", "khewat", "khatoni"],
    "survey_map": ["survey", "map", "boundary", "area", "hectare", "acre", "measurement"],
    "tax_receipt": ["tax", "receipt", "payment", "revenue", "property tax"],
    "identity_proof": ["aadhaar", "aadhar", "pan", "voter", "passport", "driving license"],
    "court_order": ["court", "order", "judgment", "decree", "petition", "civil"],
    "partition_deed": ["partition", "division", "share", "portion", "co-sharer"],
}

_PLOT_RE = re.compile(r"(?:plot|khasra|khata)[\s.:]*(?:no\.?|number)?[\s.:]*(\d+[/\-]?\d*)", re.IGNORECASE)
_AREA_RE = re.compile(r"(\d+\.?\d*)\s*(?:hectare|acre|sq\.?\s*(?:ft|feet|meter|m)|bigha|biswa)", re.IGNORECASE)
_DATE_RE = re.compile(r"\d{1,2}[/-]\d{1,2}[/-]\d{2,4}")


@dataclass
class ContentAnalysis:
    """Keyword/category analysis of OCR text."""
    detected_categories: list[str] = field(default_factory=list)
    keywords_found: list[str] = field(default_factory=list)
    plot_numbers: list[str] = field(default_factory=list)
    areas: list[str] = field(default_factory=list)
    dates: list[str] = field(default_factory=list)

    @property
    def suggested_category(self) -> str:
        return self.detected_categories[0] if self.detected_categories else "other"

    @property
    def confidence(self) -> str:
        return "high" if self.detected_categories else "low"

    def to_dict(self) -> dict:
        return {
            "detected_categories": self.detected_categories,
            "keywords_found": self.keywords_found,
            "plot_numbers": self.plot_numbers,
            "areas": self.areas,
            "dates": self.dates,
            "suggested_category": self.suggested_category,
            "confidence": self.confidence,
        }


def analyze_document_content(text: str) -> ContentAnalysis:
    """Find category keywords and a few land-record fields in extracted text."""
    lowered = text.lower()
    analysis = ContentAnalysis()

    for category, keywords in DOCUMENT_PATTERNS.items():
        found = [keyword for keyword in keywords if keyword in lowered]
        if found:
            analysis.detected_categories.append(category)
            for keyword in found:
                if keyword not in analysis.keywords_found:
                    analysis.keywords_found.append(keyword)

    analysis.plot_numbers = [m.group(0).strip() for m in _PLOT_RE.finditer(text)]
    analysis.areas = [m.group(0).strip() for m in _AREA_RE.finditer(text)]
    analysis.dates = _DATE_RE.findall(text)
    return analysis


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class SealRecord:
    """Where the document's fingerprint was sealed in the ledger."""
    content_fingerprint: str
    transaction_id: str
    block_index: int
    block_digest: str
    sealed_at: str

    def to_dict(self) -> dict:
        return {
            "content_fingerprint": self.content_fingerprint,
            "transaction_id": self.transaction_id,
            "block_index": self.block_index,
            "block_digest": self.block_digest,
            "sealed_at": self.sealed_at,
        }


@dataclass
class OcrOutcome:
    """Result of the external text-extraction step."""
    succeeded: bool
    confidence: float = 0.0
    ocr_verified: bool = False
    keywords_found: list[str] = field(default_factory=list)
    detected_category: Optional[str] = None
    text_length: int = 0
    error: Optional[str] = None
    extracted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "confidence": self.confidence,
            "ocr_verified": self.ocr_verified,
            "keywords_found": self.keywords_found,
            "detected_category": self.detected_category,
            "text_length": self.text_length,
            "error": self.error,
            "extracted_at": self.extracted_at.isoformat(),
        }


@dataclass
class StatusChange:
    """One entry in a document's verification history."""
    timestamp: datetime
    from_status: VerificationStatus
    to_status: VerificationStatus
    actor: str
    details: str = ""

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "actor": self.actor,
            "details": self.details,
        }


@dataclass
class DocumentVerificationRecord:
    """Verification state of one document."""
    document_id: str
    case_id: Optional[str] = None
    status: VerificationStatus = VerificationStatus.PENDING
    blockchain: Optional[SealRecord] = None
    ocr: Optional[OcrOutcome] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    remarks: str = ""
    rejection_reason: str = ""
    history: list[StatusChange] = field(default_factory=list)

    @property
    def is_sealed(self) -> bool:
        return self.blockchain is not None

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "case_id": self.case_id,
            "status": self.status.value,
            "blockchain": self.blockchain.to_dict() if self.blockchain else None,
            "ocr": self.ocr.to_dict() if self.ocr else None,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "remarks": self.remarks,
            "rejection_reason": self.rejection_reason,
            "history": [change.to_dict() for change in self.history],
        }


@dataclass
class CaseVerificationSummary:
    """Counts and overall status for a case's documents."""
    case_id: str
    total_documents: int
    ocr_processed: int
    lawyer_verified: int
    rejected: int
    overall_status: CaseOverallStatus

    def to_dict(self) -> dict:
        return {
            "case_id": self.case_id,
            "total_documents": self.total_documents,
            "ocr_processed": self.ocr_processed,
            "lawyer_verified": self.lawyer_verified,
            "rejected": self.rejected,
            "overall_status": self.overall_status.value,
        }


@dataclass
class VerificationSummary:
    """Review progress across every case-linked document."""
    pending: int
    verified: int
    rejected: int
    total: int
    recent_documents: list[DocumentVerificationRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "summary": {
                "pending": self.pending,
                "verified": self.verified,
                "rejected": self.rejected,
                "total": self.total,
            },
            "recent_documents": [record.to_dict() for record in self.recent_documents],
        }


def compute_overall_status(statuses: list[VerificationStatus]) -> CaseOverallStatus:
    """Aggregate rule for a case's documents."""
    if not statuses:
        return CaseOverallStatus.PENDING
    if any(status == VerificationStatus.REJECTED for status in statuses):
        return CaseOverallStatus.ISSUES_FOUND
    if all(status == VerificationStatus.VERIFIED for status in statuses):
        return CaseOverallStatus.COMPLETE
    return CaseOverallStatus.PARTIAL


# =============================================================================
# TRACKER
# =============================================================================

class VerificationTracker:
    """In-memory verification records, indexed by document and case."""

    def __init__(self, ocr_confidence_threshold: float = 70.0):
        self.ocr_confidence_threshold = ocr_confidence_threshold
        self._records: dict[str, DocumentVerificationRecord] = {}
        self._case_index: dict[str, list[str]] = {}
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def track(self, document_id: str, case_id: Optional[str] = None) -> DocumentVerificationRecord:
        """Start tracking a document at ``pending``. Idempotent."""
        with self._lock:
            record = self._records.get(document_id)
            if record is None:
                record = DocumentVerificationRecord(document_id=document_id)
                self._records[document_id] = record
            if case_id and record.case_id is None:
                self._link_case(record, case_id)
            return record

    def get(self, document_id: str) -> DocumentVerificationRecord:
        record = self._records.get(document_id)
        if record is None:
            raise NotFoundError("Document verification record", document_id)
        return record

    def find(self, document_id: str) -> Optional[DocumentVerificationRecord]:
        return self._records.get(document_id)

    def records_for_case(self, case_id: str) -> list[DocumentVerificationRecord]:
        with self._lock:
            return [self._records[doc_id] for doc_id in self._case_index.get(case_id, [])]

    def attach_seal(self, document_id: str, seal: SealRecord) -> DocumentVerificationRecord:
        """Record where the document was sealed. Does not change status."""
        with self._lock:
            record = self.track(document_id)
            record.blockchain = seal
            return record

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _transition(
        self,
        record: DocumentVerificationRecord,
        target: VerificationStatus,
        actor: str,
        details: str = "",
    ) -> None:
        if target not in ALLOWED_TRANSITIONS[record.status]:
            raise InvalidTransitionError(record.document_id, record.status.value, target.value)

        record.history.append(StatusChange(
            timestamp=datetime.now(timezone.utc),
            from_status=record.status,
            to_status=target,
            actor=actor,
            details=details,
        ))
        logger.info(
            "Document %s: %s -> %s",
            record.document_id,
            record.status.value,
            target.value,
            extra={"document_id": record.document_id},
        )
        record.status = target

    def _advance_to_review(self, record: DocumentVerificationRecord) -> None:
        if record.status == VerificationStatus.OCR_PROCESSED and record.case_id:
            self._transition(record, VerificationStatus.LAWYER_REVIEW, "system", f"Awaiting review for case {record.case_id}")

    def _link_case(self, record: DocumentVerificationRecord, case_id: str) -> None:
        if record.case_id and record.case_id in self._case_index:
            self._case_index[record.case_id] = [
                doc_id for doc_id in self._case_index[record.case_id] if doc_id != record.document_id
            ]
        record.case_id = case_id
        self._case_index.setdefault(case_id, [])
        if record.document_id not in self._case_index[case_id]:
            self._case_index[case_id].append(record.document_id)

    def record_ocr_result(
        self,
        document_id: str,
        text: Optional[str] = None,
        confidence: float = 0.0,
        error: Optional[str] = None,
    ) -> DocumentVerificationRecord:
        """
        Record the outcome of text extraction.

        No text (or an error) counts as a failure: the outcome is stored and the
        document stays pending, so extraction can be retried later.
        """
        with self._lock:
            record = self.get(document_id)
            if record.status not in (VerificationStatus.PENDING, VerificationStatus.OCR_PROCESSED):
                raise InvalidTransitionError(document_id, record.status.value, VerificationStatus.OCR_PROCESSED.value)

            if error or not text:
                failure = error or "No text extracted"
                logger.warning(
                    "OCR failed for document %s: %s",
                    document_id,
                    failure,
                    extra={"document_id": document_id},
                )
                # An earlier successful extraction stands.
                if record.ocr is None or not record.ocr.succeeded:
                    record.ocr = OcrOutcome(succeeded=False, confidence=confidence, error=failure)
                return record

            analysis = analyze_document_content(text)
            record.ocr = OcrOutcome(
                succeeded=True,
                confidence=confidence,
                ocr_verified=confidence > self.ocr_confidence_threshold,
                keywords_found=analysis.keywords_found,
                detected_category=analysis.suggested_category,
                text_length=len(text),
            )
            if record.status == VerificationStatus.PENDING:
                self._transition(record, VerificationStatus.OCR_PROCESSED, "system", f"OCR confidence {confidence:.1f}")
            self._advance_to_review(record)
            return record

    def assign_case(self, document_id: str, case_id: str) -> DocumentVerificationRecord:
        """Associate a case; an ocr-processed document then awaits review."""
        if not case_id or not case_id.strip():
            raise ValidationError("case_id is required")
        with self._lock:
            record = self.get(document_id)
            if record.status.is_terminal and record.case_id != case_id:
                raise InvalidTransitionError(document_id, record.status.value, record.status.value)
            self._link_case(record, case_id.strip())
            self._advance_to_review(record)
            return record

    def record_review_decision(
        self,
        document_id: str,
        verified: bool,
        reviewer_id: str,
        remarks: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> DocumentVerificationRecord:
        """
        Apply a reviewer's decision.

        Raises:
            ValidationError: no reviewer, or rejection without a reason (status unchanged)
            InvalidTransitionError: document is not awaiting review
        """
        if not reviewer_id or not reviewer_id.strip():
            raise ValidationError("reviewer_id is required")
        with self._lock:
            record = self.get(document_id)
            target = VerificationStatus.VERIFIED if verified else VerificationStatus.REJECTED

            if not verified and not (rejection_reason or "").strip():
                raise ValidationError(
                    "A rejection reason is required to reject a document",
                    details=[{"loc": ["rejection_reason"], "msg": "must not be empty", "type": "value_error"}],
                )

            self._transition(
                record,
                target,
                reviewer_id,
                remarks or (rejection_reason or "").strip(),
            )
            record.reviewed_by = reviewer_id
            record.reviewed_at = datetime.now(timezone.utc)
            record.remarks = remarks or ""
            record.rejection_reason = "" if verified else rejection_reason.strip()
            return record

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    def case_summary(self, case_id: str) -> CaseVerificationSummary:
        records = self.records_for_case(case_id)
        statuses = [record.status for record in records]
        return CaseVerificationSummary(
            case_id=case_id,
            total_documents=len(records),
            ocr_processed=sum(1 for r in records if r.ocr is not None and r.ocr.succeeded),
            lawyer_verified=sum(1 for s in statuses if s == VerificationStatus.VERIFIED),
            rejected=sum(1 for s in statuses if s == VerificationStatus.REJECTED),
            overall_status=compute_overall_status(statuses),
        )

    def awaiting_review(self) -> list[DocumentVerificationRecord]:
        """Case-linked documents with no decision yet, newest first."""
        with self._lock:
            return [
                record for record in reversed(list(self._records.values()))
                if record.case_id and not record.status.is_terminal
            ]

    def verification_summary(self, recent_limit: int = 10) -> VerificationSummary:
        """Pending/verified/rejected counts across every case-linked document."""
        with self._lock:
            linked = [record for record in self._records.values() if record.case_id]
        verified = sum(1 for r in linked if r.status == VerificationStatus.VERIFIED)
        rejected = sum(1 for r in linked if r.status == VerificationStatus.REJECTED)
        return VerificationSummary(
            pending=len(linked) - verified - rejected,
            verified=verified,
            rejected=rejected,
            total=len(linked),
            recent_documents=list(reversed(linked))[:recent_limit],
        )

"""
Ledger API Router

Exposes the LedgerService over HTTP:
- document registration (upload + metadata) and verification (upload or fingerprint)
- ledger record lookup and certificates
- OCR results, case assignment, lawyer review decisions, the review queue and summaries
- chain statistics, chain listing, integrity audit, deferred sealing
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from docledger.core.errors import ErrorResponse, NotFoundError, ValidationError
from docledger.services.ledger_service import DocumentMetadata, LedgerService


router = APIRouter(
    prefix="/api/ledger",
    tags=["Ledger"],
    responses={
        404: {"model": ErrorResponse, "description": "Document or record not found"},
        409: {"model": ErrorResponse, "description": "Duplicate content, invalid transition or integrity violation"},
        422: {"model": ErrorResponse, "description": "Validation error"},
    },
)


def get_ledger_service(request: Request) -> LedgerService:
    """The service instance owned by the running app."""
    return request.app.state.ledger_service


async def _read_upload(document: UploadFile, service: LedgerService) -> bytes:
    content = await document.read()
    limit = service.settings.max_upload_size_bytes
    if len(content) > limit:
        raise ValidationError(
            f"File exceeds the {service.settings.max_upload_size_mb} MB upload limit",
            details=[{"loc": ["document"], "msg": "file too large", "type": "value_error"}],
        )
    return content


# =============================================================================
# Schemas
# =============================================================================

class OcrResultRequest(BaseModel):
    """Outcome of the external text-extraction step."""
    text: Optional[str] = Field(None, description="Extracted text; empty or missing means OCR failed")
    confidence: float = Field(0.0, ge=0.0, le=100.0)
    error: Optional[str] = Field(None, description="Extraction error message")


class CaseAssignmentRequest(BaseModel):
    case_id: str = Field(..., min_length=1)


class ReviewDecisionRequest(BaseModel):
    """A reviewer's decision on a document."""
    verified: bool
    reviewer_id: str = Field(..., min_length=1)
    remarks: Optional[str] = None
    rejection_reason: Optional[str] = None


# =============================================================================
# Registration & Verification
# =============================================================================

@router.post("/documents", status_code=status.HTTP_201_CREATED)
async def register_document(
    document: UploadFile = File(...),
    uploader_id: str = Form(...),
    document_category: Optional[str] = Form(None),
    linked_case_id: Optional[str] = Form(None),
    document_id: Optional[str] = Form(None),
    description: str = Form(""),
    service: LedgerService = Depends(get_ledger_service),
):
    """Fingerprint an uploaded document and seal it into the ledger.

    Mining runs in the threadpool, off the event loop.
    """
    content = await _read_upload(document, service)
    metadata = DocumentMetadata.from_dict({
        "file_name": document.filename or "",
        "uploader_id": uploader_id,
        "document_category": document_category,
        "linked_case_id": linked_case_id,
        "document_id": document_id,
        "mime_type": document.content_type or "",
        "description": description,
    })
    result = await run_in_threadpool(service.register, content, metadata)
    return result.to_dict()


@router.post("/verify")
async def verify_document(
    document: UploadFile = File(...),
    service: LedgerService = Depends(get_ledger_service),
):
    """Re-fingerprint an uploaded file and look it up in the ledger."""
    content = await _read_upload(document, service)
    return service.verify_by_bytes(content).to_dict()


@router.get("/verify/{fingerprint}")
async def verify_fingerprint(
    fingerprint: str,
    service: LedgerService = Depends(get_ledger_service),
):
    return service.verify_by_fingerprint(fingerprint).to_dict()


@router.get("/documents/{document_id}/record")
async def get_blockchain_record(
    document_id: str,
    service: LedgerService = Depends(get_ledger_service),
):
    """Where this document's upload was sealed, plus its verification state."""
    lookup = service.get_blockchain_record(document_id)
    record = service.tracker.find(document_id)
    return {
        **lookup.to_dict(),
        "chain_integrity": service.ledger.validate_chain(),
        "verification": record.to_dict() if record else None,
    }


@router.get("/documents/{document_id}/certificate")
async def get_certificate(
    document_id: str,
    service: LedgerService = Depends(get_ledger_service),
):
    certificate = service.generate_certificate(document_id)
    if certificate is None:
        raise NotFoundError("Ledger record for document", document_id)
    return certificate.to_dict()


# =============================================================================
# Verification Workflow
# =============================================================================

@router.post("/documents/{document_id}/ocr")
async def record_ocr_result(
    document_id: str,
    request: OcrResultRequest,
    service: LedgerService = Depends(get_ledger_service),
):
    record = service.record_ocr_result(
        document_id,
        text=request.text,
        confidence=request.confidence,
        error=request.error,
    )
    return record.to_dict()


@router.post("/documents/{document_id}/case")
async def assign_case(
    document_id: str,
    request: CaseAssignmentRequest,
    service: LedgerService = Depends(get_ledger_service),
):
    return service.assign_case(document_id, request.case_id).to_dict()


@router.post("/documents/{document_id}/review")
async def record_review_decision(
    document_id: str,
    request: ReviewDecisionRequest,
    service: LedgerService = Depends(get_ledger_service),
):
    """Record a lawyer's verify/reject decision."""
    new_status = service.record_review_decision(
        document_id,
        verified=request.verified,
        remarks=request.remarks,
        rejection_reason=request.rejection_reason,
        reviewer_id=request.reviewer_id,
    )
    record = service.get_verification_record(document_id)
    summary = service.case_summary(record.case_id).to_dict() if record.case_id else None
    return {
        "document_id": document_id,
        "status": new_status.value,
        "case_summary": summary,
    }


@router.get("/pending-verification")
async def get_pending_verification(service: LedgerService = Depends(get_ledger_service)):
    """Case-linked documents still awaiting a lawyer decision, newest first."""
    records = service.awaiting_review()
    return {
        "count": len(records),
        "documents": [record.to_dict() for record in records],
    }


@router.get("/verification-summary")
async def get_verification_summary(service: LedgerService = Depends(get_ledger_service)):
    return service.verification_summary().to_dict()


@router.get("/cases/{case_id}/summary")
async def get_case_summary(
    case_id: str,
    service: LedgerService = Depends(get_ledger_service),
):
    return service.case_summary(case_id).to_dict()


# =============================================================================
# Chain
# =============================================================================

@router.get("/stats")
async def get_chain_stats(service: LedgerService = Depends(get_ledger_service)):
    return service.chain_stats().to_dict()


@router.get("/chain")
async def get_chain(service: LedgerService = Depends(get_ledger_service)):
    """Block headers for every block, plus overall validity."""
    return service.ledger.summary()


@router.get("/integrity")
async def check_integrity(service: LedgerService = Depends(get_ledger_service)):
    """Full audit; responds 409 with the broken links if the chain is compromised."""
    return service.assert_chain_intact().to_dict()


@router.post("/seal")
async def seal_pending(service: LedgerService = Depends(get_ledger_service)):
    block = await run_in_threadpool(service.seal_pending)
    return {
        "sealed": block is not None,
        "block": block.summary() if block else None,
    }

# Ledger services - hashing, pool, chain, verification workflow, certificates

from docledger.services.certificate_generator import (
    Certificate,
    CertificateGenerator,
    verify_certificate_signature,
)
from docledger.services.ledger import Block, ChainAudit, Ledger, LedgerLookup
from docledger.services.ledger_service import (
    ChainStats,
    DocumentMetadata,
    LedgerService,
    RegistrationResult,
    VerificationResult,
)
from docledger.services.transaction_pool import (
    DocumentCategory,
    DocumentRegistration,
    Transaction,
    TransactionKind,
    TransactionPool,
)
from docledger.services.verification_status import (
    CaseOverallStatus,
    CaseVerificationSummary,
    DocumentVerificationRecord,
    VerificationStatus,
    VerificationSummary,
    VerificationTracker,
)

__all__ = [
    # Chain
    "Block",
    "ChainAudit",
    "Ledger",
    "LedgerLookup",
    # Pool
    "DocumentCategory",
    "DocumentRegistration",
    "Transaction",
    "TransactionKind",
    "TransactionPool",
    # Verification workflow
    "CaseOverallStatus",
    "CaseVerificationSummary",
    "DocumentVerificationRecord",
    "VerificationStatus",
    "VerificationSummary",
    "VerificationTracker",
    # Certificates
    "Certificate",
    "CertificateGenerator",
    "verify_certificate_signature",
    # Service
    "ChainStats",
    "DocumentMetadata",
    "LedgerService",
    "RegistrationResult",
    "VerificationResult",
]

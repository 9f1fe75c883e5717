"""
Ledger Verification Certificates

A certificate states that a document's fingerprint is sealed in the ledger
and whether the ledger is intact *right now*. Chain integrity is evaluated
every time a certificate is issued and never cached, so certificates issued
before and after a tamper event disagree.

Certificate includes:
- Document ID and content fingerprint (SHA-256)
- Block coordinates (index, digest) and transaction ID
- Chain integrity verdict: INTACT or COMPROMISED
- Short verification code for manual lookup
- HMAC signature over every other field
"""

import hashlib
import hmac
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from docledger.services.hashing import HASH_ALGORITHM, compute_integrity_tag
from docledger.services.ledger import Ledger

CHAIN_INTACT = "INTACT"
CHAIN_COMPROMISED = "COMPROMISED"

ISSUER = "Document Integrity Ledger Verification System"
DISCLAIMER = (
    "This certificate verifies that the document was registered on the ledger "
    "and that its content fingerprint has not changed since registration. "
    "It is an integrity statement issued by this system, not a public-key signature."
)


@dataclass
class Certificate:
    """Verifier-facing summary of where and how a document is sealed."""
    certificate_id: str
    document_id: str
    content_fingerprint: str
    hash_algorithm: str
    block_index: int
    block_digest: str
    transaction_id: str
    sealed_at: str
    chain_integrity: str
    issued_at: str
    issuer: str
    disclaimer: str
    verification_code: str
    certificate_signature: str = ""

    @property
    def chain_intact(self) -> bool:
        return self.chain_integrity == CHAIN_INTACT

    def to_dict(self) -> dict:
        return asdict(self)


def generate_certificate_id(now: Optional[datetime] = None) -> str:
    """Unique certificate ID: LDG-YYYYMMDD-XXXXXXXXXXXX."""
    now = now or datetime.now(timezone.utc)
    return f"LDG-{now.strftime('%Y%m%d')}-{secrets.token_hex(6).upper()}"


def generate_verification_code(certificate_id: str, content_fingerprint: str, secret_key: str) -> str:
    """Short code for manual lookup, e.g. 1A2B-3C4D-5E6F."""
    full_hash = hashlib.sha256(f"{certificate_id}:{content_fingerprint}:{secret_key}".encode()).hexdigest()
    return f"{full_hash[:4]}-{full_hash[4:8]}-{full_hash[8:12]}".upper()


def sign_certificate(certificate: Certificate, secret_key: Optional[str] = None) -> str:
    data = {k: v for k, v in certificate.to_dict().items() if k != "certificate_signature"}
    return compute_integrity_tag(data, secret_key)


def verify_certificate_signature(certificate: Certificate, secret_key: Optional[str] = None) -> bool:
    return hmac.compare_digest(sign_certificate(certificate, secret_key), certificate.certificate_signature)


class CertificateGenerator:
    """Builds certificates from a ledger."""

    def __init__(self, ledger: Ledger, secret_key: str):
        self.ledger = ledger
        self._secret_key = secret_key

    def generate_certificate(self, document_id: str) -> Optional[Certificate]:
        """Certificate for ``document_id``, or None if it was never sealed."""
        record = self.ledger.find_transaction_by_document_id(document_id)
        if not record.found:
            return None

        now = datetime.now(timezone.utc)
        certificate_id = generate_certificate_id(now)
        transaction = record.transaction

        certificate = Certificate(
            certificate_id=certificate_id,
            document_id=document_id,
            content_fingerprint=transaction.content_fingerprint,
            hash_algorithm=HASH_ALGORITHM,
            block_index=record.block_index,
            block_digest=record.block_digest,
            transaction_id=transaction.transaction_id,
            sealed_at=record.sealed_at,
            chain_integrity=CHAIN_INTACT if self.ledger.validate_chain() else CHAIN_COMPROMISED,
            issued_at=now.isoformat(),
            issuer=ISSUER,
            disclaimer=DISCLAIMER,
            verification_code=generate_verification_code(
                certificate_id, transaction.content_fingerprint, self._secret_key
            ),
        )
        certificate.certificate_signature = sign_certificate(certificate, self._secret_key)
        return certificate

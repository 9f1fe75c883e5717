"""Document Integrity Ledger and Verification Pipeline."""

__version__ = "1.0.0"

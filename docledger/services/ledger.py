"""
Hash-Chained Document Ledger

Provides:
- Blocks linked by the previous block's SHA-256 digest
- Proof-of-work sealing (leading hex zeros, fixed difficulty)
- Genesis block mined once when the ledger is created
- Chain validation (self-digest, linkage, difficulty)
- Detailed chain audit for tamper reports
- Lookups by content fingerprint, document ID and transaction ID

Single writer, many readers:
- seals are serialized by one lock (drain + mine + append happen together)
- the batch being mined stays visible to fingerprint checks until its block
  is appended
- readers work on a snapshot tuple of the block list
- a block is appended only after its nonce search has finished

Usage:
    ledger = Ledger(difficulty=2)
    ledger.pool.submit(registration)
    block = ledger.seal_pending_transactions()
    assert ledger.validate_chain()
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from docledger.services.hashing import canonical_json
from docledger.services.transaction_pool import Transaction, TransactionPool

logger = logging.getLogger(__name__)

GENESIS_PREVIOUS_DIGEST = "0" * 64
DEFAULT_DIFFICULTY = 2


# =============================================================================
# BLOCK
# =============================================================================

@dataclass
class Block:
    """One sealed batch of transactions."""
    index: int
    created_at: str
    transactions: list[Transaction]
    previous_block_digest: str
    nonce: int = 0
    block_digest: str = ""

    def compute_digest(self) -> str:
        """Digest of index, previous digest, timestamp, transactions and nonce."""
        content = (
            f"{self.index}"
            f"{self.previous_block_digest}"
            f"{self.created_at}"
            f"{canonical_json([tx.to_dict() for tx in self.transactions])}"
            f"{self.nonce}"
        )
        return hashlib.sha256(content.encode()).hexdigest()

    @property
    def is_genesis(self) -> bool:
        return self.index == 0

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "created_at": self.created_at,
            "transactions": [tx.to_dict() for tx in self.transactions],
            "previous_block_digest": self.previous_block_digest,
            "nonce": self.nonce,
            "block_digest": self.block_digest,
        }

    def summary(self) -> dict:
        return {
            "index": self.index,
            "block_digest": self.block_digest,
            "previous_block_digest": self.previous_block_digest,
            "created_at": self.created_at,
            "transaction_count": len(self.transactions),
            "nonce": self.nonce,
        }


def meets_difficulty(digest: str, difficulty: int) -> bool:
    return digest.startswith("0" * difficulty)


def mine_block(block: Block, difficulty: int) -> Block:
    """
    Search nonces from 0 upward until the digest has ``difficulty`` leading zeros.

    Mutates and returns ``block``. Only ever called on a block that is not
    yet part of a chain.
    """
    started = time.perf_counter()
    block.nonce = 0
    block.block_digest = block.compute_digest()
    while not meets_difficulty(block.block_digest, difficulty):
        block.nonce += 1
        block.block_digest = block.compute_digest()

    logger.debug(
        "Mined block %d with nonce %d in %.1f ms",
        block.index,
        block.nonce,
        (time.perf_counter() - started) * 1000,
        extra={"block_index": block.index},
    )
    return block


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class LedgerLookup:
    """Where a transaction was sealed, or ``found=False``."""
    found: bool
    block_index: Optional[int] = None
    block_digest: Optional[str] = None
    previous_block_digest: Optional[str] = None
    sealed_at: Optional[str] = None
    transaction: Optional[Transaction] = None

    def to_dict(self) -> dict:
        if not self.found:
            return {"found": False}
        return {
            "found": True,
            "block_index": self.block_index,
            "block_digest": self.block_digest,
            "previous_block_digest": self.previous_block_digest,
            "sealed_at": self.sealed_at,
            "transaction": self.transaction.to_dict() if self.transaction else None,
        }


@dataclass
class BrokenLink:
    """A single failure found while auditing the chain."""
    position: int
    block_digest: str
    error: str
    transaction_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "position": self.position,
            "block_digest": self.block_digest,
            "error": self.error,
        }
        if self.transaction_id:
            data["transaction_id"] = self.transaction_id
        return data


@dataclass
class ChainAudit:
    """Full audit of the ledger; every failure, not just the first."""
    is_valid: bool
    blocks_checked: int
    transactions_checked: int
    broken_links: list[BrokenLink] = field(default_factory=list)
    checked_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "blocks_checked": self.blocks_checked,
            "transactions_checked": self.transactions_checked,
            "broken_links": [link.to_dict() for link in self.broken_links],
            "checked_at": self.checked_at,
        }


# =============================================================================
# LEDGER
# =============================================================================

class Ledger:
    """
    Append-only chain of blocks with its pending transaction pool.

    Each instance owns its own chain; create one per process (or per test).
    """

    def __init__(
        self,
        difficulty: int = DEFAULT_DIFFICULTY,
        pool: Optional[TransactionPool] = None,
        secret_key: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if difficulty < 1:
            raise ValueError("difficulty must be at least 1")

        self.difficulty = difficulty
        self.pool = pool if pool is not None else TransactionPool(secret_key=secret_key)
        self._secret_key = secret_key
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._blocks: list[Block] = []
        self._in_flight: list[Transaction] = []
        self._seal_lock = threading.Lock()
        self._state_lock = threading.Lock()

        genesis = mine_block(
            Block(
                index=0,
                created_at=self._clock().isoformat(),
                transactions=[],
                previous_block_digest=GENESIS_PREVIOUS_DIGEST,
            ),
            self.difficulty,
        )
        self._blocks.append(genesis)
        logger.info(
            "Ledger initialized with genesis block %s (difficulty %d)",
            genesis.block_digest,
            self.difficulty,
            extra={"block_index": 0},
        )

    # -------------------------------------------------------------------------
    # Chain access
    # -------------------------------------------------------------------------

    @property
    def blocks(self) -> tuple[Block, ...]:
        """Snapshot of the chain. Later appends do not show up in it."""
        return tuple(self._blocks)

    @property
    def genesis(self) -> Block:
        return self._blocks[0]

    @property
    def tail(self) -> Block:
        return self._blocks[-1]

    def __len__(self) -> int:
        return len(self._blocks)

    # -------------------------------------------------------------------------
    # Sealing
    # -------------------------------------------------------------------------

    def seal_pending_transactions(self) -> Optional[Block]:
        """
        Mine every pending transaction into one new block.

        Returns None, without mining, when the pool is empty.
        """
        with self._seal_lock:
            with self._state_lock:
                transactions = self.pool.drain_all()
                self._in_flight = transactions
            if not transactions:
                return None

            previous = self._blocks[-1]
            block = mine_block(
                Block(
                    index=previous.index + 1,
                    created_at=self._clock().isoformat(),
                    transactions=transactions,
                    previous_block_digest=previous.block_digest,
                ),
                self.difficulty,
            )
            with self._state_lock:
                self._blocks.append(block)
                self._in_flight = []

        logger.info(
            "Sealed block %d with %d transaction(s): %s",
            block.index,
            len(block.transactions),
            block.block_digest,
            extra={"block_index": block.index},
        )
        return block

    # -------------------------------------------------------------------------
    # Integrity verification
    # -------------------------------------------------------------------------

    def validate_chain(self) -> bool:
        """
        True only if every block's stored digest matches its fields, meets the
        difficulty, and (after genesis) links to the previous block's digest.
        """
        chain = self.blocks
        for position, block in enumerate(chain):
            if block.compute_digest() != block.block_digest:
                return False
            if not meets_difficulty(block.block_digest, self.difficulty):
                return False
            if position == 0:
                if block.index != 0:
                    return False
                continue
            if block.index != position:
                return False
            if block.previous_block_digest != chain[position - 1].block_digest:
                return False
        return True

    def audit_chain(self) -> ChainAudit:
        """
        Check every block and every transaction tag and report all failures.

        ``validate_chain`` stops at the first failure; this keeps going so a
        tamper report can point at each broken block.
        """
        chain = self.blocks
        broken: list[BrokenLink] = []
        transactions_checked = 0

        for position, block in enumerate(chain):
            if block.compute_digest() != block.block_digest:
                broken.append(BrokenLink(position, block.block_digest, "Block digest mismatch - block contents altered"))
            if not meets_difficulty(block.block_digest, self.difficulty):
                broken.append(BrokenLink(position, block.block_digest, "Block digest does not meet difficulty"))
            if block.index != position:
                broken.append(BrokenLink(position, block.block_digest, f"Block index {block.index} out of sequence"))
            if position > 0 and block.previous_block_digest != chain[position - 1].block_digest:
                broken.append(BrokenLink(position, block.block_digest, "Chain link broken - previous digest mismatch"))

            for tx in block.transactions:
                transactions_checked += 1
                if not tx.has_valid_tag(self._secret_key):
                    broken.append(BrokenLink(
                        position,
                        block.block_digest,
                        "Transaction integrity tag mismatch",
                        transaction_id=tx.transaction_id,
                    ))

        audit = ChainAudit(
            is_valid=not broken,
            blocks_checked=len(chain),
            transactions_checked=transactions_checked,
            broken_links=broken,
        )
        if not audit.is_valid:
            logger.error(
                "Chain audit found %d problem(s) across %d blocks",
                len(broken),
                len(chain),
                extra={"error_code": "integrity_violation"},
            )
        return audit

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _find(self, predicate: Callable[[Transaction], bool]) -> LedgerLookup:
        for block in self.blocks:
            for tx in block.transactions:
                if predicate(tx):
                    return LedgerLookup(
                        found=True,
                        block_index=block.index,
                        block_digest=block.block_digest,
                        previous_block_digest=block.previous_block_digest,
                        sealed_at=block.created_at,
                        transaction=tx,
                    )
        return LedgerLookup(found=False)

    def find_transaction_by_fingerprint(self, content_fingerprint: str) -> LedgerLookup:
        """First block holding this content fingerprint."""
        return self._find(lambda tx: tx.content_fingerprint == content_fingerprint)

    def find_transaction_by_document_id(self, document_id: str) -> LedgerLookup:
        """First block holding a transaction for this document."""
        return self._find(lambda tx: tx.document_id == document_id)

    def find_transaction_by_id(self, transaction_id: str) -> LedgerLookup:
        return self._find(lambda tx: tx.transaction_id == transaction_id)

    def find_recorded_fingerprint(self, content_fingerprint: str) -> LedgerLookup:
        """
        Sealed, being mined, or pending: wherever this fingerprint is known.

        A match outside the chain has ``found=True`` and no block coordinates.
        Checked under the same lock as drain and append, so a transaction is
        never between places while this runs.
        """
        with self._state_lock:
            sealed = self._find(lambda tx: tx.content_fingerprint == content_fingerprint)
            if sealed.found:
                return sealed
            unsealed = next(
                (tx for tx in self._in_flight if tx.content_fingerprint == content_fingerprint),
                None,
            ) or self.pool.find_by_fingerprint(content_fingerprint)
        if unsealed is None:
            return LedgerLookup(found=False)
        return LedgerLookup(found=True, transaction=unsealed)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    @property
    def total_sealed_transactions(self) -> int:
        return sum(len(block.transactions) for block in self.blocks)

    def summary(self) -> dict:
        """Block headers plus validity, for admin views."""
        return {
            "blocks": [block.summary() for block in self.blocks],
            "difficulty": self.difficulty,
            "is_valid": self.validate_chain(),
        }

"""
Tests for the hash-chained ledger.

Covers genesis, sealing, proof-of-work, tamper detection, lookups and
concurrent sealing.
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from docledger.services.ledger import (
    GENESIS_PREVIOUS_DIGEST,
    Block,
    Ledger,
    meets_difficulty,
    mine_block,
)
from docledger.services.hashing import digest_bytes

from conftest import TEST_SECRET, make_registration


def seal(ledger: Ledger, content: bytes, document_id: str):
    ledger.pool.submit(make_registration(content, document_id))
    return ledger.seal_pending_transactions()


@pytest.fixture
def sealed_ledger(fresh_ledger):
    """Ledger with two sealed blocks after genesis."""
    seal(fresh_ledger, b"hello", "DOC-A")
    seal(fresh_ledger, b"world", "DOC-B")
    return fresh_ledger


# =============================================================================
# Genesis
# =============================================================================

class TestGenesis:
    """Tests for ledger creation."""

    def test_new_ledger_has_only_genesis(self, fresh_ledger):
        assert len(fresh_ledger) == 1
        genesis = fresh_ledger.genesis
        assert genesis.index == 0
        assert genesis.is_genesis
        assert genesis.transactions == []
        assert genesis.previous_block_digest == GENESIS_PREVIOUS_DIGEST

    def test_genesis_is_mined(self, fresh_ledger):
        genesis = fresh_ledger.genesis
        assert genesis.block_digest == genesis.compute_digest()
        assert genesis.block_digest.startswith("00")

    def test_new_ledger_is_valid(self, fresh_ledger):
        assert fresh_ledger.validate_chain()

    def test_separate_ledgers_are_independent(self):
        first = Ledger(difficulty=1, secret_key=TEST_SECRET)
        second = Ledger(difficulty=1, secret_key=TEST_SECRET)
        seal(first, b"only-in-first", "DOC-1")
        assert len(first) == 2
        assert len(second) == 1

    def test_difficulty_must_be_positive(self):
        with pytest.raises(ValueError):
            Ledger(difficulty=0)


# =============================================================================
# Proof of Work
# =============================================================================

class TestMining:

    def test_meets_difficulty(self):
        assert meets_difficulty("00ab", 2)
        assert not meets_difficulty("0abc", 2)

    def test_mined_digest_has_leading_zeros(self):
        block = Block(index=5, created_at="2024-01-01T00:00:00+00:00", transactions=[], previous_block_digest="f" * 64)
        mine_block(block, 3)
        assert block.block_digest.startswith("000")
        assert block.block_digest == block.compute_digest()

    def test_mining_is_deterministic(self):
        """Same fields, same nonce search, same digest."""
        def fresh():
            return Block(index=1, created_at="2024-01-01T00:00:00+00:00", transactions=[], previous_block_digest="a" * 64)

        first, second = mine_block(fresh(), 2), mine_block(fresh(), 2)
        assert first.nonce == second.nonce
        assert first.block_digest == second.block_digest


# =============================================================================
# Sealing
# =============================================================================

class TestSealing:
    """Tests for turning pending transactions into blocks."""

    def test_seal_empty_pool_returns_none(self, fresh_ledger):
        """No empty blocks after genesis."""
        assert fresh_ledger.seal_pending_transactions() is None
        assert len(fresh_ledger) == 1

    def test_seal_appends_linked_block(self, fresh_ledger):
        block = seal(fresh_ledger, b"hello", "DOC-A")

        assert block.index == 1
        assert block.previous_block_digest == fresh_ledger.genesis.block_digest
        assert fresh_ledger.tail is block
        assert fresh_ledger.pool.pending_count == 0

    def test_seal_batches_all_pending(self, fresh_ledger):
        for i in range(5):
            fresh_ledger.pool.submit(make_registration(f"doc-{i}".encode(), f"DOC-{i}"))

        block = fresh_ledger.seal_pending_transactions()

        assert len(block.transactions) == 5
        assert len(fresh_ledger) == 2
        assert fresh_ledger.total_sealed_transactions == 5

    def test_chain_grows_append_only(self, fresh_ledger):
        """Each seal adds exactly one block linked to the previous one."""
        for i in range(4):
            seal(fresh_ledger, f"doc-{i}".encode(), f"DOC-{i}")

        blocks = fresh_ledger.blocks
        assert len(blocks) == 5
        for position in range(1, len(blocks)):
            assert blocks[position].index == position
            assert blocks[position].previous_block_digest == blocks[position - 1].block_digest
        assert fresh_ledger.validate_chain()

    def test_blocks_snapshot_does_not_grow(self, fresh_ledger):
        snapshot = fresh_ledger.blocks
        seal(fresh_ledger, b"later", "DOC-LATER")
        assert len(snapshot) == 1
        assert len(fresh_ledger.blocks) == 2

    def test_uses_injected_clock(self):
        fixed = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        ledger = Ledger(difficulty=1, secret_key=TEST_SECRET, clock=lambda: fixed)
        block = seal(ledger, b"clocked", "DOC-CLOCK")
        assert block.created_at == fixed.isoformat()
        assert ledger.genesis.created_at == fixed.isoformat()

    def test_concurrent_seals_keep_chain_valid(self, fresh_ledger):
        """Concurrent submitters and sealers never lose or duplicate a transaction."""
        def worker(worker_id: int):
            for i in range(10):
                fresh_ledger.pool.submit(make_registration(f"{worker_id}-{i}".encode(), f"DOC-{worker_id}-{i}"))
                fresh_ledger.seal_pending_transactions()

        threads = [threading.Thread(target=worker, args=(w,)) for w in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        fresh_ledger.seal_pending_transactions()

        sealed_ids = [tx.transaction_id for block in fresh_ledger.blocks for tx in block.transactions]
        assert len(sealed_ids) == 60
        assert len(set(sealed_ids)) == 60
        assert fresh_ledger.pool.pending_count == 0
        assert all(block.transactions for block in fresh_ledger.blocks[1:])
        assert fresh_ledger.validate_chain()


# =============================================================================
# Tamper Detection
# =============================================================================

class TestTamperDetection:
    """Any mutation of a sealed block must fail validation."""

    def test_nonce_change_detected_and_restore_recovers(self, sealed_ledger):
        block = sealed_ledger.blocks[1]
        original = block.nonce

        block.nonce = original + 1
        assert not sealed_ledger.validate_chain()

        block.nonce = original
        assert sealed_ledger.validate_chain()

    def test_transaction_change_detected(self, sealed_ledger):
        block = sealed_ledger.blocks[1]
        block.transactions[0] = replace(block.transactions[0], content_fingerprint=digest_bytes(b"forged"))
        assert not sealed_ledger.validate_chain()

    def test_timestamp_change_detected(self, sealed_ledger):
        sealed_ledger.blocks[2].created_at = "1999-01-01T00:00:00+00:00"
        assert not sealed_ledger.validate_chain()

    def test_previous_digest_change_detected(self, sealed_ledger):
        sealed_ledger.blocks[2].previous_block_digest = "0" * 64
        assert not sealed_ledger.validate_chain()

    def test_remined_block_breaks_next_link(self, sealed_ledger):
        """Re-mining a tampered block fixes its own digest but not the next block's link."""
        block = sealed_ledger.blocks[1]
        block.transactions[0] = replace(block.transactions[0], file_name="forged.pdf")
        mine_block(block, sealed_ledger.difficulty)

        assert block.block_digest == block.compute_digest()
        assert not sealed_ledger.validate_chain()

    def test_genesis_tamper_detected(self, sealed_ledger):
        sealed_ledger.genesis.nonce += 1
        assert not sealed_ledger.validate_chain()


# =============================================================================
# Audit
# =============================================================================

class TestAudit:
    """Tests for the detailed chain audit."""

    def test_clean_audit(self, sealed_ledger):
        audit = sealed_ledger.audit_chain()
        assert audit.is_valid
        assert audit.blocks_checked == 3
        assert audit.transactions_checked == 2
        assert audit.broken_links == []

    def test_audit_reports_every_broken_block(self, sealed_ledger):
        sealed_ledger.blocks[1].nonce += 1
        sealed_ledger.blocks[2].created_at = "1999-01-01T00:00:00+00:00"

        audit = sealed_ledger.audit_chain()

        assert not audit.is_valid
        positions = {link.position for link in audit.broken_links}
        assert {1, 2} <= positions

    def test_audit_detects_forged_tag(self, sealed_ledger):
        block = sealed_ledger.blocks[1]
        forged = replace(block.transactions[0], uploader_id="mallory")
        block.transactions[0] = replace(forged, integrity_tag=block.transactions[0].integrity_tag)
        mine_block(block, sealed_ledger.difficulty)

        audit = sealed_ledger.audit_chain()

        assert any(link.transaction_id == forged.transaction_id for link in audit.broken_links)

    def test_audit_to_dict(self, sealed_ledger):
        data = sealed_ledger.audit_chain().to_dict()
        assert data["is_valid"] is True
        assert "checked_at" in data


# =============================================================================
# Lookups
# =============================================================================

class TestLookups:
    """Tests for finding sealed transactions."""

    def test_find_by_fingerprint(self, sealed_ledger):
        lookup = sealed_ledger.find_transaction_by_fingerprint(digest_bytes(b"world"))
        assert lookup.found
        assert lookup.block_index == 2
        assert lookup.block_digest == sealed_ledger.blocks[2].block_digest
        assert lookup.previous_block_digest == sealed_ledger.blocks[1].block_digest
        assert lookup.transaction.document_id == "DOC-B"

    def test_find_by_fingerprint_missing(self, sealed_ledger):
        lookup = sealed_ledger.find_transaction_by_fingerprint(digest_bytes(b"never sealed"))
        assert not lookup.found
        assert lookup.to_dict() == {"found": False}

    def test_find_by_document_id(self, sealed_ledger):
        lookup = sealed_ledger.find_transaction_by_document_id("DOC-A")
        assert lookup.found
        assert lookup.block_index == 1

    def test_find_by_transaction_id(self, sealed_ledger):
        tx = sealed_ledger.blocks[2].transactions[0]
        assert sealed_ledger.find_transaction_by_id(tx.transaction_id).block_index == 2

    def test_pending_transactions_not_found(self, fresh_ledger):
        fresh_ledger.pool.submit(make_registration(b"pending", "DOC-PENDING"))
        assert not fresh_ledger.find_transaction_by_document_id("DOC-PENDING").found

    def test_find_recorded_fingerprint(self, sealed_ledger):
        """Sealed matches carry block coordinates, pending ones do not."""
        sealed = sealed_ledger.find_recorded_fingerprint(digest_bytes(b"hello"))
        assert sealed.found
        assert sealed.block_index == 1

        sealed_ledger.pool.submit(make_registration(b"queued", "DOC-Q"))
        pending = sealed_ledger.find_recorded_fingerprint(digest_bytes(b"queued"))
        assert pending.found
        assert pending.block_index is None
        assert pending.transaction.document_id == "DOC-Q"

        assert not sealed_ledger.find_recorded_fingerprint(digest_bytes(b"unknown")).found

    def test_first_match_wins(self, fresh_ledger):
        seal(fresh_ledger, b"same", "DOC-FIRST")
        seal(fresh_ledger, b"same", "DOC-SECOND")
        lookup = fresh_ledger.find_transaction_by_fingerprint(digest_bytes(b"same"))
        assert lookup.block_index == 1
        assert lookup.transaction.document_id == "DOC-FIRST"

    def test_summary(self, sealed_ledger):
        summary = sealed_ledger.summary()
        assert summary["is_valid"] is True
        assert summary["difficulty"] == 2
        assert [b["transaction_count"] for b in summary["blocks"]] == [0, 1, 1]

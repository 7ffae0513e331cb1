"""Tests for the rate-limit ledger."""

import threading
from datetime import datetime, timezone

import pytest

from rln.crypto.field import FieldElement
from rln.engine.ledger import RateLimitLedger
from rln.errors import DuplicateNullifier, InvalidProof
from rln.models.share import Share


def _now() -> datetime:
    return datetime(2026, 2, 18, 12, 0, 0, tzinfo=timezone.utc)


def _share(nullifier: int, signal: int = 111, y: int = 5) -> Share:
    return Share(
        external_nullifier=FieldElement(9),
        signal_hash=FieldElement(signal),
        y=FieldElement(y),
        nullifier=FieldElement(nullifier),
        message_id=0,
    )


class TestSubmit:
    def test_accepts_fresh_nullifier(self) -> None:
        ledger = RateLimitLedger()
        entry = ledger.submit(_share(1), proof_verdict=True, epoch=7, now=_now())
        assert entry.epoch == 7
        assert entry.recorded_utc == _now()
        assert ledger.is_nullifier_used(FieldElement(1))
        assert ledger.entries_for_epoch(7) == [FieldElement(1)]
        assert ledger.get(FieldElement(1)) == entry
        assert len(ledger) == 1

    def test_invalid_proof_rejected_without_state_change(self) -> None:
        ledger = RateLimitLedger()
        with pytest.raises(InvalidProof):
            ledger.submit(_share(1), proof_verdict=False, epoch=7)
        assert not ledger.is_nullifier_used(FieldElement(1))
        assert ledger.entries_for_epoch(7) == []

    def test_duplicate_leaves_ledger_unchanged(self) -> None:
        ledger = RateLimitLedger()
        first = ledger.submit(_share(1), proof_verdict=True, epoch=7, now=_now())
        before = ledger.entries()
        with pytest.raises(DuplicateNullifier) as exc_info:
            ledger.submit(_share(1, signal=222, y=6), proof_verdict=True, epoch=7)
        assert ledger.entries() == before
        assert ledger.entries_for_epoch(7) == [FieldElement(1)]
        assert exc_info.value.previous == first
        assert exc_info.value.is_collision

    def test_duplicate_checked_before_verdict(self) -> None:
        ledger = RateLimitLedger()
        ledger.submit(_share(1), proof_verdict=True, epoch=7)
        with pytest.raises(DuplicateNullifier):
            ledger.submit(_share(1, signal=222), proof_verdict=False, epoch=7)

    def test_rebroadcast_is_not_collision(self) -> None:
        ledger = RateLimitLedger()
        ledger.submit(_share(1), proof_verdict=True, epoch=7)
        with pytest.raises(DuplicateNullifier) as exc_info:
            ledger.submit(_share(1), proof_verdict=True, epoch=7)
        assert not exc_info.value.is_collision

    def test_epochs_indexed(self) -> None:
        ledger = RateLimitLedger()
        ledger.submit(_share(1), proof_verdict=True, epoch=8)
        ledger.submit(_share(2), proof_verdict=True, epoch=7)
        ledger.submit(_share(3), proof_verdict=True, epoch=8)
        assert ledger.epochs() == [7, 8]
        assert ledger.entries_for_epoch(8) == [FieldElement(1), FieldElement(3)]


class TestRestore:
    def test_restore_and_reject_duplicate(self) -> None:
        source = RateLimitLedger()
        entry = source.submit(_share(1), proof_verdict=True, epoch=3)
        target = RateLimitLedger()
        target.restore(entry)
        assert target.get(FieldElement(1)) == entry
        with pytest.raises(DuplicateNullifier):
            target.restore(entry)


class TestConcurrency:
    def test_exactly_one_submit_wins(self) -> None:
        ledger = RateLimitLedger()
        accepted: list[int] = []
        rejected: list[int] = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def worker(n: int) -> None:
            barrier.wait()
            try:
                ledger.submit(_share(1, signal=100 + n), proof_verdict=True, epoch=1)
            except DuplicateNullifier:
                with lock:
                    rejected.append(n)
            else:
                with lock:
                    accepted.append(n)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(accepted) == 1
        assert len(rejected) == 7
        assert len(ledger) == 1

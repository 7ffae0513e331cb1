"""Rate-limit ledger — nullifier bookkeeping and duplicate detection.

Per nullifier the ledger is a two-state machine:

    Unseen → Recorded

submit() fires the transition when the oracle verdict is true and the
nullifier is unseen. A nullifier that is already Recorded is rejected
with DuplicateNullifier whatever the verdict, and the rejection carries
the recorded entry next to the incoming one so the caller can attempt
recovery. A false verdict is rejected with InvalidProof. Rejections never
touch ledger state.

Epochs are not derived from the clock here: the caller passes the epoch
that the share's external nullifier was built for.

The ledger is in-memory. The event log is the durable record; restore()
replays logged entries into a fresh ledger.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from rln.crypto.field import FieldElement
from rln.errors import DuplicateNullifier, InvalidProof
from rln.models.share import LedgerEntry, Share

logger = logging.getLogger(__name__)


class RateLimitLedger:
    """Nullifier → entry map with an epoch index.

    Usage:
        ledger = RateLimitLedger()
        entry = ledger.submit(share, proof_verdict=True, epoch=epoch)
        ledger.is_nullifier_used(share.nullifier)
        ledger.entries_for_epoch(epoch)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[FieldElement, LedgerEntry] = {}
        self._by_epoch: Dict[int, List[FieldElement]] = {}

    def submit(
        self,
        share: Share,
        proof_verdict: bool,
        epoch: int,
        now: Optional[datetime] = None,
    ) -> LedgerEntry:
        """Record a share, or raise DuplicateNullifier / InvalidProof.

        The duplicate check runs first: a used nullifier is reported as
        a duplicate even when the accompanying proof is invalid.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        incoming = LedgerEntry(
            nullifier=share.nullifier,
            epoch=epoch,
            external_nullifier=share.external_nullifier,
            signal_hash=share.signal_hash,
            y=share.y,
            message_id=share.message_id,
            recorded_utc=now,
        )

        with self._lock:
            previous = self._entries.get(share.nullifier)
            if previous is not None:
                raise DuplicateNullifier(previous, incoming)
            if not proof_verdict:
                raise InvalidProof(
                    f"Proof rejected for nullifier {share.nullifier.to_hex()}"
                )
            self._record(incoming)

        logger.debug("Recorded nullifier %s in epoch %d", share.nullifier.to_hex(), epoch)
        return incoming

    def restore(self, entry: LedgerEntry) -> None:
        """Re-insert a previously accepted entry (event-log replay)."""
        with self._lock:
            previous = self._entries.get(entry.nullifier)
            if previous is not None:
                raise DuplicateNullifier(previous, entry)
            self._record(entry)

    def get(self, nullifier: FieldElement) -> Optional[LedgerEntry]:
        return self._entries.get(nullifier)

    def is_nullifier_used(self, nullifier: FieldElement) -> bool:
        return nullifier in self._entries

    def entries_for_epoch(self, epoch: int) -> List[FieldElement]:
        """Nullifiers recorded in ``epoch``, in submission order."""
        with self._lock:
            return list(self._by_epoch.get(epoch, []))

    def epochs(self) -> List[int]:
        with self._lock:
            return sorted(self._by_epoch)

    def entries(self) -> List[LedgerEntry]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def _record(self, entry: LedgerEntry) -> None:
        # Caller holds the lock.
        self._entries[entry.nullifier] = entry
        self._by_epoch.setdefault(entry.epoch, []).append(entry.nullifier)

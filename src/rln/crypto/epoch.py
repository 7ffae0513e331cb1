"""Epoch numbering and external nullifiers.

An epoch is a labelling integer, floor(unix_time / epoch_length). There is
no stored epoch table and nothing to open or close: a share is bound to an
epoch and an application through its external nullifier,

    external_nullifier = H(epoch, hash_bytes(app_id))

and the ledger scopes every submission to the epoch baked into it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from rln.crypto.field import FieldElement
from rln.crypto.hasher import FieldHasher, hash_bytes


DEFAULT_EPOCH_LENGTH = 3600  # one hour


def epoch_for(now: Optional[datetime] = None, epoch_length: int = DEFAULT_EPOCH_LENGTH) -> int:
    """Return the epoch number containing ``now`` (defaults to UTC now)."""
    if epoch_length <= 0:
        raise ValueError("epoch_length must be positive")
    if now is None:
        now = datetime.now(timezone.utc)
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return int(now.timestamp()) // epoch_length


def epoch_start(epoch: int, epoch_length: int = DEFAULT_EPOCH_LENGTH) -> datetime:
    """Return the UTC instant at which ``epoch`` begins."""
    return datetime.fromtimestamp(epoch * epoch_length, tz=timezone.utc)


def app_context_hash(hasher: FieldHasher, app_id: str) -> FieldElement:
    """Hash the full application identifier (no truncation)."""
    if not app_id:
        raise ValueError("app_id must be non-empty")
    return hash_bytes(hasher, app_id)


def external_nullifier(hasher: FieldHasher, epoch: int, app_id: str) -> FieldElement:
    """Bind a share to one epoch and one application context."""
    if epoch < 0:
        raise ValueError("epoch must be non-negative")
    return hasher.hash2(FieldElement(epoch), app_context_hash(hasher, app_id))

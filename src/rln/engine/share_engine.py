"""Share engine — computes the per-message share and nullifier.

Each identity's shares lie on a line through its secret:

    y = secret + a1 * signal_hash
    nullifier = H(a1, message_id)

Two share derivations exist and are NOT interchangeable; the engine is
always constructed with one of them:

PER_MESSAGE (default)
    a1 = H(secret, external_nullifier, message_id)
    One line per (identity, epoch, message slot). With a message limit k,
    an identity gets k independent slots per epoch; reusing a slot for a
    second signal reveals the secret.

EPOCH_SCOPED
    a1 = H(secret, external_nullifier)
    One line per (identity, epoch), shared by all message ids; nullifiers
    still differ per message id. This is the classic one-share-per-epoch
    derivation, and it is only safe with a message limit of 1: two honest
    messages in one epoch already sit on the same line.

The engine is pure: no state, no side effects.
"""

from __future__ import annotations

import enum

from rln.crypto.field import FieldElement
from rln.crypto.hasher import FieldHasher, hash_bytes
from rln.models.share import Share


class ShareVariant(str, enum.Enum):
    """Which slope derivation the engine uses."""
    PER_MESSAGE = "per_message"
    EPOCH_SCOPED = "epoch_scoped"


class ShareEngine:
    """Derives shares for one hash primitive and one share variant.

    Usage:
        engine = ShareEngine(hasher, ShareVariant.PER_MESSAGE)
        signal_hash = engine.hash_signal("hello")
        share = engine.compute_share(secret, ext_nullifier, 0, signal_hash)
    """

    def __init__(
        self,
        hasher: FieldHasher,
        variant: ShareVariant = ShareVariant.PER_MESSAGE,
    ) -> None:
        self._hasher = hasher
        self._variant = ShareVariant(variant)

    @property
    def variant(self) -> ShareVariant:
        return self._variant

    def slope(
        self,
        secret: FieldElement,
        external_nullifier: FieldElement,
        message_id: int,
    ) -> FieldElement:
        """Return a1 for the configured variant."""
        if self._variant == ShareVariant.PER_MESSAGE:
            return self._hasher.hash3(secret, external_nullifier, _message_field(message_id))
        return self._hasher.hash2(secret, external_nullifier)

    def nullifier(self, a1: FieldElement, message_id: int) -> FieldElement:
        return self._hasher.hash2(a1, _message_field(message_id))

    def compute_share(
        self,
        secret: FieldElement,
        external_nullifier: FieldElement,
        message_id: int,
        signal_hash: FieldElement,
    ) -> Share:
        """Compute (y, nullifier) for one message."""
        a1 = self.slope(secret, external_nullifier, message_id)
        y = secret + a1 * signal_hash
        nullifier = self.nullifier(a1, message_id)
        return Share(
            external_nullifier=external_nullifier,
            signal_hash=signal_hash,
            y=y,
            nullifier=nullifier,
            message_id=message_id,
        )

    def hash_signal(self, signal: bytes | str) -> FieldElement:
        """Hash a message payload of any length into the field."""
        return hash_bytes(self._hasher, signal)


def _message_field(message_id: int) -> FieldElement:
    if isinstance(message_id, bool) or not isinstance(message_id, int):
        raise TypeError("message_id must be an int")
    if message_id < 0:
        raise ValueError("message_id must be non-negative")
    return FieldElement(message_id)

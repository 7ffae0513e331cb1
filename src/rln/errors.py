"""Error taxonomy for the RLN engine.

Every rejection is local and synchronous. Components raise these errors;
the service facade converts them into failed ServiceResults carrying the
error's ``code``. No error leaves the tree, ledger or registry partially
updated.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from rln.models.share import LedgerEntry


class RLNError(Exception):
    """Base class for protocol rejections."""

    code = "rln_error"


class InsufficientStake(RLNError):
    """Registration deposit is below the configured minimum."""

    code = "insufficient_stake"

    def __init__(self, provided: Decimal, required: Decimal) -> None:
        super().__init__(f"Stake {provided} is below the required minimum {required}")
        self.provided = provided
        self.required = required


class InvalidProof(RLNError):
    """The proof oracle rejected the statement."""

    code = "invalid_proof"


class DuplicateNullifier(RLNError):
    """The nullifier already has a recorded entry.

    Carries the previously recorded entry and the rejected one so the
    caller can feed both into secret recovery. A duplicate with the same
    signal hash is a re-broadcast, not a violation (is_collision is False).
    """

    code = "duplicate_nullifier"

    def __init__(self, previous: LedgerEntry, incoming: LedgerEntry) -> None:
        super().__init__(f"Nullifier already used: {previous.nullifier.to_hex()}")
        self.previous = previous
        self.incoming = incoming

    @property
    def is_collision(self) -> bool:
        return self.previous.signal_hash != self.incoming.signal_hash


class CapacityExceeded(RLNError):
    """The commitment tree has no free leaf left."""

    code = "capacity_exceeded"

    def __init__(self, capacity: int) -> None:
        super().__init__(f"Commitment tree is full ({capacity} leaves)")
        self.capacity = capacity


class NonRecoverable(RLNError):
    """Recovery preconditions are not met; no secret can be derived."""

    code = "non_recoverable"


class AlreadySlashed(RLNError):
    """A commitment can be slashed at most once."""

    code = "already_slashed"


class AlreadyRegistered(RLNError):
    """The commitment is already in the membership registry."""

    code = "already_registered"


class UnknownIdentity(RLNError):
    """No registration exists for the commitment."""

    code = "unknown_identity"


class UnknownRoot(RLNError):
    """The statement refers to a root the tree never had."""

    code = "unknown_root"


class EpochOutOfRange(RLNError):
    """The external nullifier matches no acceptable epoch for this app."""

    code = "epoch_out_of_range"

    def __init__(self, message: str, current_epoch: Optional[int] = None) -> None:
        super().__init__(message)
        self.current_epoch = current_epoch


class OracleUnavailable(RLNError, RuntimeError):
    """The proof oracle could not reach a verdict (missing key, binary or timeout)."""

    code = "oracle_unavailable"

"""Identity and membership registration models.

An Identity is held only by its owner; the registry and the tree only
ever see the commitment. A Registration records the commitment's leaf,
its stake and whether it has been slashed.

State machine:
    ACTIVE → SLASHED
Slashed commitments stay in the tree; removing a leaf would invalidate
proofs against historical roots.
"""

from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from rln.crypto.field import FIELD_MODULUS, FieldElement
from rln.crypto.hasher import FieldHasher


@dataclass(frozen=True)
class Identity:
    """An actor's secret and its public commitment (commitment = H(secret))."""
    secret: FieldElement
    commitment: FieldElement

    @staticmethod
    def from_secret(secret: FieldElement, hasher: FieldHasher) -> Identity:
        if secret.is_zero():
            raise ValueError("Identity secret must be non-zero")
        return Identity(secret=secret, commitment=hasher.hash1(secret))

    @staticmethod
    def generate(hasher: FieldHasher) -> Identity:
        """Create a fresh identity with a CSPRNG secret in [1, P)."""
        secret = FieldElement(secrets.randbelow(FIELD_MODULUS - 1) + 1)
        return Identity.from_secret(secret, hasher)

    def __repr__(self) -> str:
        return f"Identity(commitment={self.commitment.to_hex()})"


class RegistrationState(str, enum.Enum):
    """Lifecycle state of a membership registration."""
    ACTIVE = "active"
    SLASHED = "slashed"


# Valid registration state transitions
REGISTRATION_TRANSITIONS: Dict[RegistrationState, frozenset] = {
    RegistrationState.ACTIVE: frozenset({RegistrationState.SLASHED}),
    RegistrationState.SLASHED: frozenset(),
}


@dataclass
class Registration:
    """A registered commitment and its stake.

    Mutable only through transition_to; all other fields are fixed at
    registration time.
    """
    commitment: FieldElement
    leaf_index: int
    stake: Decimal
    state: RegistrationState = RegistrationState.ACTIVE
    registered_utc: Optional[datetime] = None
    slashed_utc: Optional[datetime] = None

    @property
    def slashed(self) -> bool:
        return self.state == RegistrationState.SLASHED

    def transition_to(self, new_state: RegistrationState) -> None:
        """Transition to a new state, validating the transition is legal."""
        allowed = REGISTRATION_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise ValueError(
                f"Invalid registration transition: {self.state.value} → {new_state.value}"
            )
        self.state = new_state

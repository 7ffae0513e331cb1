"""Membership registry — stakes behind identity commitments.

Before an identity can publish, its owner stakes at least the configured
minimum against the commitment. The registry records the stake and the
commitment's leaf index; it never sees the secret.

Slashing marks the registration SLASHED and forfeits the whole stake.
Moving the forfeited funds is the host ledger's business, not ours.

The registry is a pure state machine. Event logging is handled by the
service layer.

State machine:
    ACTIVE → SLASHED
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from rln.crypto.field import FieldElement
from rln.errors import (
    AlreadyRegistered,
    AlreadySlashed,
    InsufficientStake,
    UnknownIdentity,
)
from rln.models.identity import Registration, RegistrationState


class MembershipRegistry:
    """Tracks registrations by commitment.

    Usage:
        registry = MembershipRegistry(min_stake=Decimal("1.0"))
        registry.check_stake(commitment, Decimal("1.0"))
        record = registry.register(commitment, leaf_index=0, stake=Decimal("1.0"))
        record = registry.mark_slashed(commitment)
    """

    def __init__(self, min_stake: Decimal = Decimal("0")) -> None:
        if min_stake < Decimal("0"):
            raise ValueError("Minimum stake must not be negative")
        self._min_stake = min_stake
        self._registrations: Dict[FieldElement, Registration] = {}
        self._forfeited = Decimal("0")

    @property
    def min_stake(self) -> Decimal:
        return self._min_stake

    def check_stake(self, commitment: FieldElement, stake: Decimal) -> None:
        """Validate a registration request without mutating anything.

        Raises:
            InsufficientStake: stake below the minimum.
            AlreadyRegistered: the commitment is already registered.
            ValueError: stake is NaN or infinite.
        """
        if not stake.is_finite():
            raise ValueError(f"Stake must be a finite amount, got {stake}")
        if stake < self._min_stake:
            raise InsufficientStake(stake, self._min_stake)
        if commitment in self._registrations:
            raise AlreadyRegistered(
                f"Commitment already registered: {commitment.to_hex()}"
            )

    def register(
        self,
        commitment: FieldElement,
        leaf_index: int,
        stake: Decimal,
        now: Optional[datetime] = None,
    ) -> Registration:
        """Create an ACTIVE registration for a commitment already in the tree."""
        self.check_stake(commitment, stake)
        if now is None:
            now = datetime.now(timezone.utc)

        record = Registration(
            commitment=commitment,
            leaf_index=leaf_index,
            stake=stake,
            state=RegistrationState.ACTIVE,
            registered_utc=now,
        )
        self._registrations[commitment] = record
        return record

    def check_slashable(self, commitment: FieldElement) -> Registration:
        """Return the registration if it can be slashed, else raise."""
        record = self._get(commitment)
        if record.slashed:
            raise AlreadySlashed(f"Commitment already slashed: {commitment.to_hex()}")
        return record

    def mark_slashed(
        self,
        commitment: FieldElement,
        now: Optional[datetime] = None,
    ) -> Registration:
        """Slash a registration and forfeit its stake.

        Transitions: ACTIVE → SLASHED
        """
        record = self.check_slashable(commitment)
        if now is None:
            now = datetime.now(timezone.utc)
        record.transition_to(RegistrationState.SLASHED)
        record.slashed_utc = now
        self._forfeited += record.stake
        return record

    def get(self, commitment: FieldElement) -> Optional[Registration]:
        return self._registrations.get(commitment)

    def registrations(self) -> List[Registration]:
        return sorted(self._registrations.values(), key=lambda r: r.leaf_index)

    @property
    def total_staked(self) -> Decimal:
        """Stake still held by active registrations."""
        return sum(
            (r.stake for r in self._registrations.values() if not r.slashed),
            Decimal("0"),
        )

    @property
    def total_forfeited(self) -> Decimal:
        return self._forfeited

    def __len__(self) -> int:
        return len(self._registrations)

    def _get(self, commitment: FieldElement) -> Registration:
        """Internal lookup with clear error on missing commitment."""
        record = self._registrations.get(commitment)
        if record is None:
            raise UnknownIdentity(f"Unknown commitment: {commitment.to_hex()}")
        return record

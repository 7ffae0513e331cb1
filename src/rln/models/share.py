"""Share, public statement and ledger entry models.

A Share is one point (signal_hash, y) on the publisher's secret line,
plus the nullifier that links every share on that line. Two shares with
the same nullifier and different signal hashes reveal the line.

The Statement is the public-input vector handed to the proof oracle.
Its order is fixed: [external_nullifier, y, nullifier, root, signal_hash].
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from rln.crypto.field import FieldElement


STATEMENT_SIZE = 5


@dataclass(frozen=True)
class Share:
    """A published share. message_id is private to the publisher and may be unknown to observers."""
    external_nullifier: FieldElement
    signal_hash: FieldElement
    y: FieldElement
    nullifier: FieldElement
    message_id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_nullifier": self.external_nullifier.to_hex(),
            "signal_hash": self.signal_hash.to_hex(),
            "y": self.y.to_hex(),
            "nullifier": self.nullifier.to_hex(),
            "message_id": self.message_id,
        }

    @staticmethod
    def from_dict(raw: dict[str, Any]) -> Share:
        """Parse an untrusted share payload into normalized field elements."""
        required = ["external_nullifier", "signal_hash", "y", "nullifier"]
        missing = [k for k in required if k not in raw]
        if missing:
            raise KeyError(f"missing share keys: {', '.join(missing)}")
        message_id = raw.get("message_id")
        return Share(
            external_nullifier=FieldElement.parse(raw["external_nullifier"]),
            signal_hash=FieldElement.parse(raw["signal_hash"]),
            y=FieldElement.parse(raw["y"]),
            nullifier=FieldElement.parse(raw["nullifier"]),
            message_id=int(message_id) if message_id is not None else None,
        )


@dataclass(frozen=True)
class Statement:
    """Public inputs of an RLN proof."""
    external_nullifier: FieldElement
    y: FieldElement
    nullifier: FieldElement
    root: FieldElement
    signal_hash: FieldElement

    def public_inputs(self) -> tuple[FieldElement, ...]:
        """The five public inputs in their fixed serialisation order."""
        return (
            self.external_nullifier,
            self.y,
            self.nullifier,
            self.root,
            self.signal_hash,
        )

    @staticmethod
    def from_public_inputs(values: Sequence[Any]) -> Statement:
        if len(values) != STATEMENT_SIZE:
            raise ValueError(
                f"Statement needs {STATEMENT_SIZE} public inputs, got {len(values)}"
            )
        ext, y, nullifier, root, signal_hash = (FieldElement.parse(v) for v in values)
        return Statement(
            external_nullifier=ext,
            y=y,
            nullifier=nullifier,
            root=root,
            signal_hash=signal_hash,
        )

    @staticmethod
    def from_share(share: Share, root: FieldElement) -> Statement:
        return Statement(
            external_nullifier=share.external_nullifier,
            y=share.y,
            nullifier=share.nullifier,
            root=root,
            signal_hash=share.signal_hash,
        )

    def to_share(self, message_id: Optional[int] = None) -> Share:
        return Share(
            external_nullifier=self.external_nullifier,
            signal_hash=self.signal_hash,
            y=self.y,
            nullifier=self.nullifier,
            message_id=message_id,
        )


@dataclass(frozen=True)
class LedgerEntry:
    """A recorded (or rejected) submission for one nullifier."""
    nullifier: FieldElement
    epoch: int
    external_nullifier: FieldElement
    signal_hash: FieldElement
    y: FieldElement
    message_id: Optional[int] = None
    recorded_utc: Optional[datetime] = None

    def to_share(self) -> Share:
        return Share(
            external_nullifier=self.external_nullifier,
            signal_hash=self.signal_hash,
            y=self.y,
            nullifier=self.nullifier,
            message_id=self.message_id,
        )


@dataclass(frozen=True)
class SlashingEvidence:
    """Two shares on one nullifier with different signal hashes."""
    nullifier: FieldElement
    epoch: int
    first: Share
    second: Share

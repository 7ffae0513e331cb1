"""Core data models for the RLN engine."""

from rln.models.identity import (
    Identity,
    Registration,
    RegistrationState,
)
from rln.models.share import (
    LedgerEntry,
    Share,
    SlashingEvidence,
    Statement,
)

__all__ = [
    "Identity",
    "Registration",
    "RegistrationState",
    "LedgerEntry",
    "Share",
    "SlashingEvidence",
    "Statement",
]

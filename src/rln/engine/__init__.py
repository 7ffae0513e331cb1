"""Protocol engine — share derivation, rate-limit ledger, secret recovery."""

from rln.engine.ledger import RateLimitLedger
from rln.engine.recovery import derive_slope, recover_secret
from rln.engine.share_engine import ShareEngine, ShareVariant

__all__ = [
    "RateLimitLedger",
    "ShareEngine",
    "ShareVariant",
    "derive_slope",
    "recover_secret",
]

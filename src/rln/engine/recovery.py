"""Secret recovery from two colliding shares.

Both shares are points on y = secret + a1 * x with x = signal_hash:

    a1     = (y1 - y2) / (x1 - x2)
    secret = y1 - a1 * x1

Division is by modular inverse; plain integer division gives wrong
secrets whenever the quotient is not an integer.
"""

from __future__ import annotations

from rln.crypto.field import FieldElement
from rln.errors import NonRecoverable
from rln.models.share import Share


def recover_secret(share1: Share, share2: Share) -> FieldElement:
    """Recover the identity secret from two shares on the same nullifier.

    Raises NonRecoverable when the nullifiers differ or the signal hashes
    are equal (a re-broadcast of the same message is not a violation).
    Whether the secret matches a particular registration is for the
    caller to check.
    """
    if share1.nullifier != share2.nullifier:
        raise NonRecoverable("Shares do not share a nullifier")
    x1, y1 = share1.signal_hash, share1.y
    x2, y2 = share2.signal_hash, share2.y
    if x1 == x2:
        raise NonRecoverable(
            "Shares have the same signal hash; two distinct messages are required"
        )

    a1 = (y1 - y2) / (x1 - x2)
    return y1 - a1 * x1


def derive_slope(secret: FieldElement, share: Share) -> FieldElement:
    """Recover a1 from one share once the secret is known (x must be non-zero)."""
    if share.signal_hash.is_zero():
        raise NonRecoverable("cannot derive a1 when signal hash is zero")
    return (share.y - secret) / share.signal_hash

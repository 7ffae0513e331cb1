"""Field hash primitive.

The protocol needs a collision-resistant hash over field elements with
three fixed arities:
- hash1: identity commitment, byte-string folding seed
- hash2: tree node combination, nullifier, external nullifier
- hash3: per-message share slope

The hash is pluggable behind the FieldHasher protocol. The default,
Sha256FieldHasher, hashes the fixed-width (32 bytes, big-endian) encoding
of each input with SHA-256 and reduces the digest into the field. The
input count changes the encoded length, so arities never collide.

Arbitrary-length byte strings (message payloads, application ids) are
hashed by splitting them into 31-byte limbs, each strictly below the
modulus, and folding every limb into the accumulator.
"""

from __future__ import annotations

import hashlib
from typing import Protocol, Union, runtime_checkable

from rln.crypto.field import FIELD_MODULUS, FieldElement


# 31 bytes = 248 bits < log2(FIELD_MODULUS), so no limb can reach the modulus.
LIMB_BYTES = 31


@runtime_checkable
class FieldHasher(Protocol):
    """Collision-resistant hash over field elements."""

    def hash1(self, a: FieldElement) -> FieldElement:
        ...

    def hash2(self, a: FieldElement, b: FieldElement) -> FieldElement:
        ...

    def hash3(self, a: FieldElement, b: FieldElement, c: FieldElement) -> FieldElement:
        ...


class Sha256FieldHasher:
    """SHA-256 over fixed-width field encodings, reduced into the field."""

    name = "sha256-field-v1"

    def hash1(self, a: FieldElement) -> FieldElement:
        return self._digest(a)

    def hash2(self, a: FieldElement, b: FieldElement) -> FieldElement:
        return self._digest(a, b)

    def hash3(self, a: FieldElement, b: FieldElement, c: FieldElement) -> FieldElement:
        return self._digest(a, b, c)

    @staticmethod
    def _digest(*values: FieldElement) -> FieldElement:
        h = hashlib.sha256()
        for v in values:
            if not isinstance(v, FieldElement):
                raise TypeError(f"hash inputs must be FieldElement, got {type(v).__name__}")
            h.update(v.to_bytes())
        as_int = int.from_bytes(h.digest(), byteorder="big")
        return FieldElement(as_int % FIELD_MODULUS)


def split_limbs(data: bytes) -> list[FieldElement]:
    """Split bytes into big-endian 31-byte limbs, each a valid field element."""
    return [
        FieldElement(int.from_bytes(data[i:i + LIMB_BYTES], byteorder="big"))
        for i in range(0, len(data), LIMB_BYTES)
    ]


def hash_bytes(hasher: FieldHasher, data: Union[bytes, str]) -> FieldElement:
    """Hash an arbitrary-length byte string into the field.

    The accumulator is seeded with the byte length, so inputs that differ
    only by leading zero bytes (same limb values) still hash differently.
    Every limb is folded in; nothing past the first limb is dropped.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    acc = hasher.hash1(FieldElement(len(data)))
    for limb in split_limbs(data):
        acc = hasher.hash2(acc, limb)
    return acc

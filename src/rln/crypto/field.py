"""Prime field arithmetic over the BN254 scalar field.

Every scalar in the protocol (secrets, commitments, shares, nullifiers,
tree nodes) is a FieldElement. Arithmetic reduces modulo FIELD_MODULUS on
every operation and only combines FieldElements with FieldElements; mixing
in a plain int is a TypeError rather than a silent coercion.

Division is multiplication by the modular inverse (Fermat's little theorem,
valid because the modulus is prime).
"""

from __future__ import annotations

from typing import Union


# BN254 scalar field modulus (the field circom/snarkjs circuits work in).
FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# Field elements serialise to 32 bytes big-endian.
FIELD_BYTES = 32


class FieldElement:
    """An immutable element of the prime field.

    Usage:
        a = FieldElement(5)
        b = FieldElement.parse("0x2a")
        c = (a * b - a) / b
        c.to_hex()
    """

    __slots__ = ("_value",)

    def __init__(self, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(
                f"FieldElement requires an int, got {type(value).__name__}"
            )
        object.__setattr__(self, "_value", value % FIELD_MODULUS)

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("FieldElement is immutable")

    @classmethod
    def parse(cls, value: Union[int, str, "FieldElement"]) -> FieldElement:
        """Parse a decimal or 0x-prefixed hex literal (or int) into the field."""
        if isinstance(value, FieldElement):
            return value
        if isinstance(value, int):
            return cls(value)
        text = str(value).strip()
        if not text:
            raise ValueError("empty field element literal")
        return cls(int(text, 0))

    @classmethod
    def zero(cls) -> FieldElement:
        return cls(0)

    @classmethod
    def one(cls) -> FieldElement:
        return cls(1)

    @property
    def value(self) -> int:
        """Canonical residue in [0, FIELD_MODULUS)."""
        return self._value

    def is_zero(self) -> bool:
        return self._value == 0

    def inverse(self) -> FieldElement:
        """Multiplicative inverse; zero has none."""
        if self._value == 0:
            raise ZeroDivisionError("inverse does not exist for 0 in field")
        return FieldElement(pow(self._value, FIELD_MODULUS - 2, FIELD_MODULUS))

    def to_bytes(self) -> bytes:
        return self._value.to_bytes(FIELD_BYTES, byteorder="big", signed=False)

    def to_hex(self) -> str:
        return hex(self._value)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def __add__(self, other: FieldElement) -> FieldElement:
        return FieldElement(self._value + _require_field(other, "+")._value)

    def __sub__(self, other: FieldElement) -> FieldElement:
        return FieldElement(self._value - _require_field(other, "-")._value)

    def __mul__(self, other: FieldElement) -> FieldElement:
        return FieldElement(self._value * _require_field(other, "*")._value)

    def __truediv__(self, other: FieldElement) -> FieldElement:
        return self * _require_field(other, "/").inverse()

    def __neg__(self) -> FieldElement:
        return FieldElement(-self._value)

    # ------------------------------------------------------------------
    # Comparison and conversion
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldElement):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(("FieldElement", self._value))

    def __int__(self) -> int:
        return self._value

    def __repr__(self) -> str:
        return f"FieldElement({self.to_hex()})"

    def __str__(self) -> str:
        return str(self._value)


def _require_field(other: object, op: str) -> FieldElement:
    if not isinstance(other, FieldElement):
        raise TypeError(
            f"unsupported operand for {op}: FieldElement and {type(other).__name__}"
        )
    return other

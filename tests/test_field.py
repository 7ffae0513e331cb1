"""Tests for prime field arithmetic."""

import pytest

from rln.crypto.field import FIELD_MODULUS, FieldElement


class TestFieldElement:
    def test_reduces_on_construction(self) -> None:
        assert FieldElement(FIELD_MODULUS).is_zero()
        assert FieldElement(FIELD_MODULUS + 5) == FieldElement(5)
        assert FieldElement(-1).value == FIELD_MODULUS - 1

    def test_rejects_non_int(self) -> None:
        with pytest.raises(TypeError):
            FieldElement("5")  # type: ignore[arg-type]
        with pytest.raises(TypeError):
            FieldElement(True)  # type: ignore[arg-type]
        with pytest.raises(TypeError):
            FieldElement(1.5)  # type: ignore[arg-type]

    def test_no_mixing_with_plain_ints(self) -> None:
        with pytest.raises(TypeError):
            FieldElement(1) + 1  # type: ignore[operator]
        with pytest.raises(TypeError):
            FieldElement(2) * 3  # type: ignore[operator]

    def test_immutable(self) -> None:
        a = FieldElement(7)
        with pytest.raises(AttributeError):
            a._value = 8  # type: ignore[misc]

    def test_wraparound(self) -> None:
        top = FieldElement(FIELD_MODULUS - 1)
        assert top + FieldElement(1) == FieldElement.zero()
        assert FieldElement.zero() - FieldElement.one() == top
        assert -FieldElement.one() == top

    def test_division_is_modular_inverse(self) -> None:
        a = FieldElement(10)
        b = FieldElement(3)
        q = a / b
        # 10/3 is not an integer; the field quotient still multiplies back.
        assert q * b == a
        assert q != FieldElement(3)

    def test_inverse_of_zero(self) -> None:
        with pytest.raises(ZeroDivisionError):
            FieldElement.zero().inverse()
        with pytest.raises(ZeroDivisionError):
            FieldElement.one() / FieldElement.zero()

    def test_parse_formats(self) -> None:
        assert FieldElement.parse("42") == FieldElement(42)
        assert FieldElement.parse("0x2a") == FieldElement(42)
        assert FieldElement.parse(42) == FieldElement(42)
        a = FieldElement(9)
        assert FieldElement.parse(a) is a

    def test_parse_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            FieldElement.parse("")
        with pytest.raises(ValueError):
            FieldElement.parse("not-a-number")

    def test_serialisation(self) -> None:
        a = FieldElement(255)
        assert a.to_bytes() == b"\x00" * 31 + b"\xff"
        assert a.to_hex() == "0xff"
        assert str(a) == "255"
        assert int(a) == 255

    def test_hashable(self) -> None:
        seen = {FieldElement(1), FieldElement(1 + FIELD_MODULUS)}
        assert len(seen) == 1

    def test_not_equal_to_int(self) -> None:
        assert FieldElement(1) != 1

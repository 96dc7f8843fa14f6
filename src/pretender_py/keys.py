"""Order-preserving byte encoding of key values.

Key columns in the backing store are BLOBs compared bytewise, so every scalar
key value is encoded such that byte order matches DynamoDB order:

* ``S``: ``b"S"`` + UTF-8 bytes (code point order equals UTF-8 byte order)
* ``B``: ``b"B"`` + raw bytes
* ``N``: ``b"N"`` + a sign/exponent/digits form that sorts numerically

In ``S`` and ``B`` payloads every ``0x00`` byte is escaped as ``0x00 0xFF``,
which keeps prefixes intact and frees ``0x00 0x01`` to act as the component
separator in composite index sort keys.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .errors import ValidationError
from .values import AttributeValue

SEPARATOR = b"\x00\x01"
_UPPER_SUFFIX = b"\x00\x02"
_EXPONENT_BIAS = 500


@dataclass(frozen=True)
class SortKeyRange:
    """Sort-column predicate: ``lower <= sort < upper`` and ``sort`` starts with ``prefix``."""

    lower: bytes | None = None
    upper: bytes | None = None
    prefix: bytes | None = None


def encode_key_value(av: AttributeValue) -> bytes:
    if av.type == "S":
        try:
            return b"S" + _escape(av.value.encode("utf-8"))
        except UnicodeEncodeError as err:
            raise ValidationError("key string values must be valid UTF-8") from err
    if av.type == "B":
        return b"B" + _escape(av.value)
    if av.type == "N":
        return b"N" + _encode_number(av.value)
    raise ValidationError(f"key values must be of type S, N or B (got {av.type})")


def composite_sort_key(index_sort: bytes | None, base_hash: bytes, base_sort: bytes | None) -> bytes:
    parts = [part for part in (index_sort, base_hash, base_sort) if part is not None]
    return SEPARATOR.join(parts)


def upper_bound(encoded: bytes) -> bytes:
    # Sorts after ``encoded`` and after every composite key that starts with it,
    # but before any longer value that has ``encoded`` as a proper prefix.
    return encoded + _UPPER_SUFFIX


def _escape(raw: bytes) -> bytes:
    return raw.replace(b"\x00", b"\x00\xff")


def _encode_number(value: Decimal) -> bytes:
    if value.is_zero():
        return b"1"

    sign, digit_tuple, exponent = value.as_tuple()
    digits = list(digit_tuple)
    while digits and digits[-1] == 0:
        digits.pop()
        exponent = int(exponent) + 1
    position = len(digits) + int(exponent)

    if sign == 0:
        head = f"2{position + _EXPONENT_BIAS:03d}"
        return (head + "".join(str(d) for d in digits)).encode("ascii")

    head = f"0{_EXPONENT_BIAS - 1 - position:03d}"
    body = "".join(str(9 - d) for d in digits)
    return (head + body + "~").encode("ascii")


def encode_primary_key(hash_value: AttributeValue, sort_value: AttributeValue | None = None) -> tuple[bytes, bytes]:
    """Returns the ``(hash_key, sort_key)`` column pair; tables without a sort key store ``b""``."""
    sort = encode_key_value(sort_value) if sort_value is not None else b""
    return encode_key_value(hash_value), sort

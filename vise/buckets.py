"""Bucket configurations for histograms."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import ClassVar, Iterable, Iterator, Optional

_FRACTION_MASK = (1 << 52) - 1
_EXPONENT_MASK = 0x7FF << 52
_SIGN_MASK = 1 << 63


def _cmp(lhs: int, rhs: int) -> int:
    return (lhs > rhs) - (lhs < rhs)


@dataclass(frozen=True)
class _DecomposedF64:
    sign_bit: int
    exponent_bits: int
    fraction_bits: int

    @classmethod
    def from_float(cls, value: float) -> _DecomposedF64:
        (bits,) = struct.unpack("<Q", struct.pack("<d", value))
        return cls(bits & _SIGN_MASK, bits & _EXPONENT_MASK, bits & _FRACTION_MASK)

    @property
    def is_zero(self) -> bool:
        return self.exponent_bits == 0 and self.fraction_bits == 0

    @property
    def is_subnormal(self) -> bool:
        return self.exponent_bits == 0 and self.fraction_bits != 0

    @property
    def is_nan(self) -> bool:
        return self.exponent_bits == _EXPONENT_MASK and self.fraction_bits != 0


def compare_f64(lhs: float, rhs: float) -> Optional[int]:
    """Compare two floats by their bit patterns.

    Returns -1, 0 or 1, or ``None`` if either value is NaN or subnormal.
    Positive and negative zero compare equal.
    """
    left = _DecomposedF64.from_float(lhs)
    right = _DecomposedF64.from_float(rhs)

    if left.is_nan or right.is_nan or left.is_subnormal or right.is_subnormal:
        return None
    if left.is_zero and right.is_zero:
        return 0

    sign_ordering = -_cmp(left.sign_bit, right.sign_bit)
    if sign_ordering != 0:
        return sign_ordering

    negative = left.sign_bit != 0
    exponent_ordering = _cmp(left.exponent_bits, right.exponent_bits)
    if negative:
        exponent_ordering = -exponent_ordering
    if exponent_ordering != 0:
        return exponent_ordering

    fraction_ordering = _cmp(left.fraction_bits, right.fraction_bits)
    if negative:
        fraction_ordering = -fraction_ordering
    return fraction_ordering


def is_f64_greater(lhs: float, rhs: float) -> bool:
    """Return whether ``lhs`` is strictly greater than ``rhs`` per :func:`compare_f64`."""
    return compare_f64(lhs, rhs) == 1


class _Kind(enum.Enum):
    VALUES = "values"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class Buckets:
    """Buckets configuration for a histogram or a family of histograms."""

    _kind: _Kind
    _params: tuple

    LATENCIES: ClassVar[Buckets]
    ZERO_TO_ONE: ClassVar[Buckets]

    @classmethod
    def values(cls, values: Iterable[float]) -> Buckets:
        """Create buckets from explicit, strictly increasing values."""
        items = tuple(float(value) for value in values)
        if not items:
            raise ValueError("Values cannot be empty")
        for index, (prev, current) in enumerate(zip(items, items[1:]), start=1):
            if not is_f64_greater(current, prev):
                raise ValueError(
                    "Values must be monotonically increasing; "
                    f"offending value has index {index}"
                )
        return cls(_Kind.VALUES, items)

    @classmethod
    def linear(cls, start: float, end: float, step: float) -> Buckets:
        """Create buckets ``start, start + step, ...`` up to ``end`` (inclusive)."""
        if not is_f64_greater(end, start):
            raise ValueError("Specified linear range is empty")
        if not is_f64_greater(step, 0.0):
            raise ValueError("Step must be positive")
        return cls(_Kind.LINEAR, (float(start), float(end), float(step)))

    @classmethod
    def exponential(cls, start: float, end: float, factor: float) -> Buckets:
        """Create buckets ``start, start * factor, ...`` up to ``end`` (inclusive)."""
        if not is_f64_greater(start, 0.0):
            raise ValueError("Range start must be positive")
        if not is_f64_greater(end, start):
            raise ValueError("Specified exponential range is empty")
        if not is_f64_greater(factor, 1.0):
            raise ValueError("Factor must be greater than 1")
        return cls(_Kind.EXPONENTIAL, (float(start), float(end), float(factor)))

    def __iter__(self) -> Iterator[float]:
        if self._kind is _Kind.VALUES:
            yield from self._params
            return
        start, end, param = self._params
        value = start
        while True:
            yield value
            if self._kind is _Kind.LINEAR:
                value = value + param
            else:
                value = value * param
            if not value <= end:
                return


Buckets.LATENCIES = Buckets.values([0.001, 0.005, 0.025, 0.1, 0.25, 1.0, 5.0, 30.0, 120.0])
Buckets.ZERO_TO_ONE = Buckets.values([0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9])
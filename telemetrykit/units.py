"""Units of measurement attached to metric values."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union


class DurationUnit(enum.Enum):
    """Time duration units. The conventional default is ``MILLISECOND``."""

    NANOSECOND = "nanosecond"
    MICROSECOND = "microsecond"
    MILLISECOND = "millisecond"
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"

    def __str__(self) -> str:
        return self.value


class InformationUnit(enum.Enum):
    """Sizes of information derived from bytes. The conventional default is ``BYTE``."""

    BIT = "bit"
    BYTE = "byte"
    KILOBYTE = "kilobyte"
    KIBIBYTE = "kibibyte"
    MEGABYTE = "megabyte"
    MEBIBYTE = "mebibyte"
    GIGABYTE = "gigabyte"
    GIBIBYTE = "gibibyte"
    TERABYTE = "terabyte"
    TEBIBYTE = "tebibyte"
    PETABYTE = "petabyte"
    PEBIBYTE = "pebibyte"
    EXABYTE = "exabyte"
    EXBIBYTE = "exbibyte"

    def __str__(self) -> str:
        return self.value


class FractionUnit(enum.Enum):
    """Units of fraction. The conventional default is ``RATIO``."""

    RATIO = "ratio"
    PERCENT = "percent"

    def __str__(self) -> str:
        return self.value


UnitValue = Union[DurationUnit, InformationUnit, FractionUnit, str, None]


@dataclass(frozen=True)
class MetricUnit:
    """The unit of a metric value.

    ``unit`` is a builtin unit enum member, a user-defined string, or
    ``None`` for a value without a unit.
    """

    unit: UnitValue = None

    def is_none(self) -> bool:
        """Return True if this metric has no unit."""
        return self.unit is None

    def __str__(self) -> str:
        if self.unit is None:
            return "none"
        if isinstance(self.unit, enum.Enum):
            return self.unit.value
        return self.unit


_ALIASES = {
    "ns": DurationUnit.NANOSECOND,
    "ms": DurationUnit.MILLISECOND,
    "s": DurationUnit.SECOND,
}

_BY_NAME = {
    member.value: member
    for family in (DurationUnit, InformationUnit, FractionUnit)
    for member in family
}


def parse_metric_unit(s: str) -> MetricUnit:
    """Parse a unit name; unknown names become custom units."""
    if s in ("", "none"):
        return MetricUnit()
    builtin = _ALIASES.get(s) or _BY_NAME.get(s)
    if builtin is not None:
        return MetricUnit(builtin)
    return MetricUnit(s)


def to_metric_unit(unit: MetricUnit | UnitValue) -> MetricUnit:
    """Convert a unit-like value into a ``MetricUnit``.

    Strings are taken as custom units without parsing; ``None`` means no unit.
    """
    if isinstance(unit, MetricUnit):
        return unit
    if unit is None or isinstance(
        unit, (DurationUnit, InformationUnit, FractionUnit, str)
    ):
        return MetricUnit(unit)
    raise TypeError(f"cannot convert {type(unit).__name__} to a metric unit")
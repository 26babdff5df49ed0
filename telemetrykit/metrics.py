"""Metric values, metric builders and the statsd line format."""

from __future__ import annotations

import enum
import math
import time as _time
import zlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Union

from .normalization import normalize_name, normalize_tags, normalize_unit
from .transport import Envelope
from .units import DurationUnit, MetricUnit, parse_metric_unit, to_metric_unit

_U32_MAX = 2**32 - 1


class ParseMetricError(ValueError):
    """Raised for strings that are not valid statsd metrics."""

    def __init__(self, message: str = "invalid metric string") -> None:
        super().__init__(message)


class MetricType(enum.Enum):
    """The type of a metric, with its statsd shortcode as value."""

    COUNTER = "c"
    DISTRIBUTION = "d"
    SET = "s"
    GAUGE = "g"

    def __str__(self) -> str:
        return self.value


_TYPE_CODES = {
    "c": MetricType.COUNTER,
    "m": MetricType.COUNTER,
    "h": MetricType.DISTRIBUTION,
    "d": MetricType.DISTRIBUTION,
    "ms": MetricType.DISTRIBUTION,
    "s": MetricType.SET,
    "g": MetricType.GAUGE,
}


def parse_metric_type(s: str) -> MetricType:
    """Parse a statsd type shortcode, accepting the usual aliases."""
    try:
        return _TYPE_CODES[s]
    except KeyError:
        raise ValueError(f"unknown metric type {s!r}") from None


def _format_number(value: float | int) -> str:
    """Render a number in plain decimal notation, never with an exponent."""
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        if value == 0 and math.copysign(1.0, value) < 0:
            return "-0"
        return str(int(value))
    return format(Decimal(repr(value)), "f")


@dataclass(frozen=True)
class MetricValue:
    """A single reported value together with the metric type it belongs to."""

    kind: MetricType
    value: float | int

    def __str__(self) -> str:
        return _format_number(self.value)


def hash_set_value(string: str) -> int:
    """Hash a set member to the 32-bit value stored in the set."""
    return zlib.crc32(string.encode("utf-8")) & _U32_MAX


def set_value_from_str(string: str) -> MetricValue:
    """Return a set value representing the given string."""
    return MetricValue(MetricType.SET, hash_set_value(string))


def set_value_from_display(value: Any) -> MetricValue:
    """Return a set value representing ``str(value)``."""
    return MetricValue(MetricType.SET, hash_set_value(str(value)))


def _to_timestamp(moment: datetime | float | int) -> float:
    if isinstance(moment, datetime):
        return moment.timestamp()
    return float(moment)


@dataclass
class Metric:
    """A metric value with its name, unit, tags and optional timestamp."""

    name: str
    value: MetricValue
    unit: MetricUnit = field(default_factory=MetricUnit)
    tags: dict[str, str] = field(default_factory=dict)
    time: float | None = None

    def _timestamp(self) -> int:
        moment = _time.time() if self.time is None else self.time
        return max(int(moment), 0)

    def to_statsd(self) -> str:
        """Render the metric as one statsd line with its timestamp."""
        return (
            f"{normalize_name(self.name)}@{normalize_unit(str(self.unit))}"
            f":{self.value}|{self.value.kind}"
            f"|#{normalize_tags(self.tags)}|T{self._timestamp()}"
        )

    def to_envelope(self) -> Envelope:
        """Wrap the metric in an envelope holding a single statsd item."""
        envelope = Envelope()
        envelope.add_item("statsd", self.to_statsd().encode("utf-8"))
        return envelope


class MetricBuilder:
    """Fluent builder for a :class:`Metric`."""

    def __init__(self, metric: Metric) -> None:
        self._metric = metric

    def with_unit(self, unit: Any) -> MetricBuilder:
        """Set the unit; plain strings are taken as custom units."""
        self._metric.unit = to_metric_unit(unit)
        return self

    def with_tag(self, name: str, value: str) -> MetricBuilder:
        """Add or replace one tag."""
        self._metric.tags[name] = value
        return self

    def with_tags(
        self, tags: Mapping[str, str] | Iterable[tuple[str, str]]
    ) -> MetricBuilder:
        """Add or replace several tags."""
        pairs = tags.items() if isinstance(tags, Mapping) else tags
        for name, value in pairs:
            self._metric.tags[name] = value
        return self

    def with_time(self, time: datetime | float | int) -> MetricBuilder:
        """Set the timestamp, as a datetime or as seconds since the epoch."""
        self._metric.time = _to_timestamp(time)
        return self

    def finish(self) -> Metric:
        """Return the built metric."""
        return self._metric


def build(name: str, value: MetricValue) -> MetricBuilder:
    """Start building a metric with the given name and value."""
    return MetricBuilder(Metric(name=name, value=value))


def incr(name: str, value: float) -> MetricBuilder:
    """A counter incremented by ``value``."""
    return build(name, MetricValue(MetricType.COUNTER, float(value)))


def count(name: str) -> MetricBuilder:
    """A counter recording a single occurrence."""
    return build(name, MetricValue(MetricType.COUNTER, 1.0))


def timing(name: str, seconds: Union[float, timedelta]) -> MetricBuilder:
    """A distribution of durations, recorded in seconds."""
    if isinstance(seconds, timedelta):
        seconds = seconds.total_seconds()
    return build(name, MetricValue(MetricType.DISTRIBUTION, float(seconds))).with_unit(
        DurationUnit.SECOND
    )


def distribution(name: str, value: float) -> MetricBuilder:
    """A distribution of values."""
    return build(name, MetricValue(MetricType.DISTRIBUTION, float(value)))


def set_metric(name: str, string: str) -> MetricBuilder:
    """A set counting unique strings."""
    return build(name, set_value_from_str(string))


def gauge(name: str, value: float) -> MetricBuilder:
    """A gauge snapshot of a value."""
    return build(name, MetricValue(MetricType.GAUGE, float(value)))


def _parse_float(text: str) -> float:
    if not text or text != text.strip() or "_" in text:
        raise ParseMetricError()
    try:
        return float(text)
    except ValueError:
        raise ParseMetricError() from None


def _parse_u32(text: str) -> int:
    digits = text[1:] if text.startswith("+") else text
    if not digits or not digits.isascii() or not digits.isdigit():
        raise ParseMetricError()
    number = int(digits)
    if number > _U32_MAX:
        raise ParseMetricError()
    return number


def parse_statsd(string: str) -> Metric:
    """Parse ``name[@unit]:value|type[|#k:v,...]`` into a metric.

    Raises :class:`ParseMetricError` when the string is not a valid metric.
    """
    first, *rest = string.split("|")
    mri, sep, value_str = first.partition(":")
    if not sep:
        raise ParseMetricError()
    name, at, unit_str = mri.partition("@")
    unit = parse_metric_unit(unit_str) if at else MetricUnit()

    if not rest:
        raise ParseMetricError()
    try:
        kind = parse_metric_type(rest[0])
    except ValueError:
        raise ParseMetricError() from None

    if kind is MetricType.SET:
        value = MetricValue(kind, _parse_u32(value_str))
    elif kind is MetricType.GAUGE:
        # Gauges may arrive as last:min:max:sum:count; only `last` is kept.
        value = MetricValue(kind, _parse_float(value_str.split(":")[0]))
    else:
        value = MetricValue(kind, _parse_float(value_str))

    builder = build(name, value).with_unit(unit)
    for component in rest[1:]:
        if component.startswith("#"):
            for pair in component[1:].split(","):
                key, _, tag_value = pair.partition(":")
                builder.with_tag(key, tag_value)
    return builder.finish()
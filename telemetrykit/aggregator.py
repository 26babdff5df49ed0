"""Time-bucketed aggregation of metrics, flushed to a transport in the background."""

from __future__ import annotations

import math
import threading
import time as _time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from .metrics import Metric, MetricType, MetricValue, _format_number
from .normalization import normalize_name, normalize_tags, normalize_unit
from .transport import Envelope, Transport
from .units import MetricUnit

_BUCKET_INTERVAL = 10
_FLUSH_INTERVAL = 5.0
_MAX_WEIGHT = 100_000


def _fmin(a: float, b: float) -> float:
    if math.isnan(a):
        return b
    if math.isnan(b):
        return a
    return min(a, b)


def _fmax(a: float, b: float) -> float:
    if math.isnan(a):
        return b
    if math.isnan(b):
        return a
    return max(a, b)


@dataclass
class GaugeSummary:
    """A snapshot of gauge values: last, min, max, sum and count."""

    last: float
    min: float
    max: float
    sum: float
    count: int = 1

    @staticmethod
    def single(value: float) -> GaugeSummary:
        """Create a summary holding one value."""
        return GaugeSummary(last=value, min=value, max=value, sum=value, count=1)

    def insert(self, value: float) -> None:
        """Fold a new value into the summary."""
        self.last = value
        self.min = _fmin(self.min, value)
        self.max = _fmax(self.max, value)
        self.sum += value
        self.count += 1


@dataclass(frozen=True)
class _BucketKey:
    kind: MetricType
    name: str
    unit: MetricUnit
    tags: tuple[tuple[str, str], ...]


class _Bucket:
    """The aggregated value of one bucket."""

    def __init__(self, value: MetricValue) -> None:
        self.kind = value.kind
        if self.kind is MetricType.COUNTER:
            self.data = value.value
        elif self.kind is MetricType.DISTRIBUTION:
            self.data = [value.value]
        elif self.kind is MetricType.SET:
            self.data = {value.value}
        else:
            self.data = GaugeSummary.single(value.value)

    def insert(self, value: MetricValue) -> int:
        """Add a value and return the weight it added."""
        if value.kind is not self.kind:
            raise ValueError("invalid metric type")
        if self.kind is MetricType.COUNTER:
            self.data += value.value
            return 0
        if self.kind is MetricType.DISTRIBUTION:
            self.data.append(value.value)
            return 1
        if self.kind is MetricType.SET:
            if value.value in self.data:
                return 0
            self.data.add(value.value)
            return 1
        self.data.insert(value.value)
        return 0

    @property
    def weight(self) -> int:
        if self.kind is MetricType.COUNTER:
            return 1
        if self.kind is MetricType.GAUGE:
            return 5
        return len(self.data)

    def render(self) -> str:
        if self.kind is MetricType.COUNTER:
            values = [self.data]
        elif self.kind is MetricType.DISTRIBUTION:
            values = self.data
        elif self.kind is MetricType.SET:
            values = sorted(self.data)
        else:
            g = self.data
            values = [g.last, g.min, g.max, g.sum, g.count]
        return "".join(f":{_format_number(v)}" for v in values)


BucketMap = dict[int, dict[_BucketKey, _Bucket]]


def get_default_tags(release: Optional[str], environment: Optional[str]) -> dict[str, str]:
    """Tags added to every flushed metric unless the metric sets them itself."""
    tags: dict[str, str] = {}
    if release is not None:
        tags["release"] = release
    tags["environment"] = environment or "production"
    return tags


def _render_unit(unit: MetricUnit) -> str:
    if isinstance(unit.unit, str):
        return normalize_unit(unit.unit)
    return str(unit)


def format_payload(
    buckets: Mapping[int, Mapping[_BucketKey, _Bucket]],
    default_tags: Mapping[str, str],
) -> bytes:
    """Render buckets as statsd lines, oldest timestamp first."""
    lines = []
    for timestamp in sorted(buckets):
        for key, bucket in buckets[timestamp].items():
            tags = normalize_tags(dict(key.tags)).with_default_tags(default_tags)
            lines.append(
                f"{normalize_name(key.name)}@{_render_unit(key.unit)}"
                f"{bucket.render()}|{key.kind.value}|#{tags}|T{timestamp}\n"
            )
    return "".join(lines).encode("utf-8")


class MetricAggregator:
    """Collects metrics into 10-second buckets and sends them periodically.

    A background thread flushes closed buckets every few seconds; an
    oversized backlog triggers an early flush. ``close`` sends everything.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        release: Optional[str] = None,
        environment: Optional[str] = None,
    ) -> None:
        self._transport = transport
        self._default_tags = get_default_tags(release, environment)
        self._lock = threading.Lock()
        self._buckets: BucketMap = {}
        self._weight = 0
        self._running = True
        self._force_flush = False
        self._wake = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name="metrics-aggregator", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while True:
            self._wake.wait(_FLUSH_INTERVAL)
            self._wake.clear()
            with self._lock:
                if not self._running:
                    break
                buckets = self._take_buckets()
            self._send(buckets)

    def _take_buckets(self) -> BucketMap:
        if self._force_flush or not self._running:
            self._weight = 0
            self._force_flush = False
            taken, self._buckets = self._buckets, {}
            return taken
        cutoff = max(int(_time.time()) - _BUCKET_INTERVAL, 0)
        taken = {ts: b for ts, b in self._buckets.items() if ts < cutoff}
        for ts in taken:
            del self._buckets[ts]
        self._weight -= sum(
            bucket.weight for group in taken.values() for bucket in group.values()
        )
        return taken

    def _send(self, buckets: BucketMap) -> None:
        if not buckets:
            return
        envelope = Envelope()
        envelope.add_item("statsd", format_payload(buckets, self._default_tags))
        if self._transport is not None:
            self._transport.send_envelope(envelope)

    def add(self, metric: Metric) -> None:
        """Aggregate a metric into its bucket."""
        moment = _time.time() if metric.time is None else metric.time
        timestamp = max(int(moment), 0)
        timestamp -= timestamp % _BUCKET_INTERVAL
        key = _BucketKey(
            kind=metric.value.kind,
            name=metric.name,
            unit=metric.unit,
            tags=tuple(sorted(metric.tags.items())),
        )
        with self._lock:
            if not self._running:
                raise RuntimeError("aggregator is closed")
            group = self._buckets.setdefault(timestamp, {})
            bucket = group.get(key)
            if bucket is None:
                bucket = group[key] = _Bucket(metric.value)
                self._weight += bucket.weight
            else:
                self._weight += bucket.insert(metric.value)
            if self._weight > _MAX_WEIGHT:
                self._force_flush = True
                self._wake.set()

    def flush(self) -> None:
        """Send every pending bucket now."""
        with self._lock:
            self._force_flush = True
            buckets = self._take_buckets()
        self._send(buckets)

    def close(self) -> None:
        """Send every pending bucket and stop the background thread."""
        with self._lock:
            self._running = False
            buckets = self._take_buckets()
        self._send(buckets)
        self._wake.set()
        if self._thread is not threading.current_thread():
            self._thread.join()

    def __enter__(self) -> MetricAggregator:
        return self

    def __exit__(self, *args) -> None:
        self.close()
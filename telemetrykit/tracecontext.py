"""Trace identifiers, the ``sentry-trace`` header and transaction contexts."""

from __future__ import annotations

import os
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

_HEADER_NAME = "sentry-trace"
_TRACE_ID_RE = re.compile(r"[0-9a-fA-F]{32}")
_SPAN_ID_RE = re.compile(r"[0-9a-fA-F]{16}")


@dataclass(frozen=True)
class TraceId:
    """A 16-byte trace identifier, random unless given."""

    value: bytes = field(default_factory=lambda: os.urandom(16))

    def __post_init__(self) -> None:
        if len(self.value) != 16:
            raise ValueError("a trace id is exactly 16 bytes")

    @staticmethod
    def parse(text: str) -> TraceId:
        """Parse 32 hexadecimal digits; raise ValueError otherwise."""
        if not _TRACE_ID_RE.fullmatch(text):
            raise ValueError(f"invalid trace id {text!r}")
        return TraceId(bytes.fromhex(text))

    def __str__(self) -> str:
        return self.value.hex()


@dataclass(frozen=True)
class SpanId:
    """An 8-byte span identifier, random unless given."""

    value: bytes = field(default_factory=lambda: os.urandom(8))

    def __post_init__(self) -> None:
        if len(self.value) != 8:
            raise ValueError("a span id is exactly 8 bytes")

    @staticmethod
    def parse(text: str) -> SpanId:
        """Parse 16 hexadecimal digits; raise ValueError otherwise."""
        if not _SPAN_ID_RE.fullmatch(text):
            raise ValueError(f"invalid span id {text!r}")
        return SpanId(bytes.fromhex(text))

    def __str__(self) -> str:
        return self.value.hex()


@dataclass(frozen=True)
class SentryTrace:
    """The contents of a ``sentry-trace`` header."""

    trace_id: TraceId
    parent_span_id: SpanId
    sampled: Optional[bool] = None

    def __str__(self) -> str:
        text = f"{self.trace_id}-{self.parent_span_id}"
        if self.sampled is not None:
            text += "-1" if self.sampled else "-0"
        return text


def parse_sentry_trace(header: str) -> Optional[SentryTrace]:
    """Parse a ``sentry-trace`` header value; return None if it is malformed."""
    parts = header.strip().split("-", 2)
    if len(parts) < 2:
        return None
    try:
        trace_id = TraceId.parse(parts[0])
        parent_span_id = SpanId.parse(parts[1])
    except ValueError:
        return None
    sampled = {"1": True, "0": False}.get(parts[2]) if len(parts) == 3 else None
    return SentryTrace(trace_id, parent_span_id, sampled)


@dataclass
class TransactionContext:
    """Metadata for starting a transaction, and the link to a distributed trace.

    ``sampled`` is an explicit sampling decision, or None to fall back to
    the configured sample rate. ``custom`` holds arbitrary caller data that
    a traces sampler may inspect.
    """

    name: str
    op: str
    trace_id: TraceId = field(default_factory=TraceId)
    parent_span_id: Optional[SpanId] = None
    sampled: Optional[bool] = None
    custom: Optional[dict[str, Any]] = None

    def custom_insert(self, key: str, value: Any) -> Any:
        """Set a custom key; return the value it replaced, or None."""
        if self.custom is None:
            self.custom = {}
        previous = self.custom.get(key)
        self.custom[key] = value
        return previous


def continue_from_headers(
    name: str,
    op: str,
    headers: Union[Mapping[str, str], Iterable[tuple[str, str]]],
) -> TransactionContext:
    """Create a context continuing the trace named in a ``sentry-trace`` header.

    Header names match case-insensitively; the last such header wins.
    """
    pairs = headers.items() if isinstance(headers, Mapping) else headers
    trace: Optional[SentryTrace] = None
    for key, value in pairs:
        if key.isascii() and key.lower() == _HEADER_NAME:
            trace = parse_sentry_trace(value)
    if trace is None:
        return TransactionContext(name, op)
    return TransactionContext(
        name,
        op,
        trace_id=trace.trace_id,
        parent_span_id=trace.parent_span_id,
        sampled=trace.sampled,
    )


TracesSampler = Callable[[TransactionContext], float]


def transaction_sample_rate(
    traces_sampler: Optional[TracesSampler],
    ctx: TransactionContext,
    traces_sample_rate: float,
) -> float:
    """Choose the sample rate for a new transaction.

    A sampler, when given, decides alone; otherwise an explicit sampling
    decision on the context gives 1.0 or 0.0, and the global rate is the
    fallback.
    """
    if traces_sampler is not None:
        return traces_sampler(ctx)
    if ctx.sampled is None:
        return traces_sample_rate
    return 1.0 if ctx.sampled else 0.0
"""Performance monitoring transactions and the spans nested inside them."""

from __future__ import annotations

import contextlib
import dataclasses
import json
import random
import threading
import time as _time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .tracecontext import (
    SentryTrace,
    SpanId,
    TraceId,
    TracesSampler,
    TransactionContext,
    transaction_sample_rate,
)
from .transport import Envelope, Transport

_MAX_SPANS = 1_000
_HEADER_NAME = "sentry-trace"


@dataclass
class TraceContext:
    """The trace metadata of a transaction."""

    trace_id: TraceId = field(default_factory=TraceId)
    span_id: SpanId = field(default_factory=SpanId)
    parent_span_id: Optional[SpanId] = None
    op: Optional[str] = None
    description: Optional[str] = None
    status: Any = None


@dataclass
class _SpanRecord:
    """The recorded data of one span."""

    trace_id: TraceId
    parent_span_id: Optional[SpanId]
    op: Optional[str]
    description: Optional[str]
    span_id: SpanId = field(default_factory=SpanId)
    status: Any = None
    data: dict[str, Any] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    start_timestamp: float = field(default_factory=_time.time)
    timestamp: Optional[float] = None

    def snapshot(self) -> _SpanRecord:
        return dataclasses.replace(self, data=dict(self.data), tags=dict(self.tags))


@dataclass
class _TransactionPayload:
    """The transaction as it is sent once finished."""

    name: Optional[str]
    extra: dict[str, Any] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    spans: list[_SpanRecord] = field(default_factory=list)
    request: Optional[dict[str, Any]] = None
    contexts: dict[str, Any] = field(default_factory=dict)
    start_timestamp: float = field(default_factory=_time.time)
    timestamp: Optional[float] = None


class _TransactionState:
    """State shared between a transaction and all of its spans."""

    def __init__(
        self,
        transport: Optional[Transport],
        sampled: bool,
        context: TraceContext,
        payload: Optional[_TransactionPayload],
    ) -> None:
        self.lock = threading.RLock()
        self.transport = transport
        self.sampled = sampled
        self.context = context
        self.payload = payload


def _should_send(rate: float) -> bool:
    if rate >= 1.0:
        return True
    if rate <= 0.0:
        return False
    return random.random() < rate


def _trace_headers(
    trace_id: TraceId, span_id: SpanId, sampled: bool
) -> Iterator[tuple[str, str]]:
    return iter([(_HEADER_NAME, str(SentryTrace(trace_id, span_id, sampled)))])


def _new_record(
    trace_id: TraceId, parent_span_id: SpanId, op: str, description: str
) -> _SpanRecord:
    return _SpanRecord(
        trace_id=trace_id,
        parent_span_id=parent_span_id,
        op=op,
        description=description or None,
    )


class Transaction:
    """A running transaction; the root span of a span hierarchy.

    Nothing is sent unless the transaction is sampled, has a transport and
    is explicitly finished.
    """

    def __init__(self, state: _TransactionState) -> None:
        self._state = state

    def set_data(self, key: str, value: Any) -> None:
        """Set extra information to be sent with this transaction."""
        with self._state.lock:
            if self._state.payload is not None:
                self._state.payload.extra[key] = value

    def set_tag(self, key: str, value: Any) -> None:
        """Set a tag, converting the value to a string."""
        with self._state.lock:
            if self._state.payload is not None:
                self._state.payload.tags[key] = str(value)

    @contextlib.contextmanager
    def data(self) -> Iterator[dict[str, Any]]:
        """Hold the transaction lock and yield its extra data.

        For an unsampled transaction the yielded mapping is empty and
        changes to it are discarded.
        """
        with self._state.lock:
            payload = self._state.payload
            yield payload.extra if payload is not None else {}

    def get_trace_context(self) -> TraceContext:
        """Return a copy of the trace context."""
        with self._state.lock:
            return dataclasses.replace(self._state.context)

    def set_status(self, status: Any) -> None:
        """Set the status of the transaction."""
        with self._state.lock:
            self._state.context.status = status

    def get_status(self) -> Any:
        """Return the status of the transaction, or None."""
        with self._state.lock:
            return self._state.context.status

    def set_request(self, request: Mapping[str, Any]) -> None:
        """Attach HTTP request information to the transaction."""
        with self._state.lock:
            if self._state.payload is not None:
                self._state.payload.request = dict(request)

    def iter_headers(self) -> Iterator[tuple[str, str]]:
        """Yield the headers needed for distributed tracing."""
        with self._state.lock:
            ctx = self._state.context
            return _trace_headers(ctx.trace_id, ctx.span_id, self._state.sampled)

    def is_sampled(self) -> bool:
        """Return the sampling decision."""
        with self._state.lock:
            return self._state.sampled

    def start_child(self, op: str, description: str) -> Span:
        """Start a child span; it must be finished explicitly."""
        with self._state.lock:
            ctx = self._state.context
            record = _new_record(ctx.trace_id, ctx.span_id, op, description)
            return Span(self._state, self._state.sampled, record)

    def finish(self) -> None:
        """Record the end time and send the transaction with its finished spans."""
        with self._state.lock:
            payload, self._state.payload = self._state.payload, None
            transport, self._state.transport = self._state.transport, None
            if payload is None or transport is None:
                return
            payload.timestamp = _time.time()
            payload.contexts["trace"] = dataclasses.replace(self._state.context)
        envelope = Envelope()
        envelope.add_item("transaction", payload)
        transport.send_envelope(envelope)


class Span:
    """A running span inside a transaction; it must be finished explicitly."""

    def __init__(
        self, state: _TransactionState, sampled: bool, record: _SpanRecord
    ) -> None:
        self._state = state
        self._sampled = sampled
        self._record = record
        self._lock = threading.RLock()

    def set_data(self, key: str, value: Any) -> None:
        """Set extra information to be sent with this span."""
        with self._lock:
            self._record.data[key] = value

    def set_tag(self, key: str, value: Any) -> None:
        """Set a tag, converting the value to a string."""
        with self._lock:
            self._record.tags[key] = str(value)

    @contextlib.contextmanager
    def data(self) -> Iterator[dict[str, Any]]:
        """Hold the span lock and yield its live data mapping."""
        with self._lock:
            yield self._record.data

    def get_trace_context(self) -> TraceContext:
        """Return a copy of the enclosing transaction's trace context."""
        with self._state.lock:
            return dataclasses.replace(self._state.context)

    def get_span_id(self) -> SpanId:
        """Return this span's id."""
        with self._lock:
            return self._record.span_id

    def set_status(self, status: Any) -> None:
        """Set the status of the span."""
        with self._lock:
            self._record.status = status

    def get_status(self) -> Any:
        """Return the status of the span, or None."""
        with self._lock:
            return self._record.status

    def set_request(self, request: Mapping[str, Any]) -> None:
        """Copy HTTP request information into the span's data."""
        with self._lock:
            data = self._record.data
            if request.get("method") is not None:
                data["method"] = request["method"]
            if request.get("url") is not None:
                data["url"] = str(request["url"])
            body = request.get("data")
            if body is not None:
                try:
                    data["data"] = json.loads(body)
                except (TypeError, ValueError):
                    data["data"] = body
            if request.get("query_string") is not None:
                data["query_string"] = request["query_string"]
            if request.get("cookies") is not None:
                data["cookies"] = request["cookies"]
            if request.get("headers"):
                data["headers"] = dict(request["headers"])
            if request.get("env"):
                data["env"] = dict(request["env"])

    def iter_headers(self) -> Iterator[tuple[str, str]]:
        """Yield the headers needed for distributed tracing."""
        with self._lock:
            return _trace_headers(
                self._record.trace_id, self._record.span_id, self._sampled
            )

    def is_sampled(self) -> bool:
        """Return the sampling decision."""
        return self._sampled

    def start_child(self, op: str, description: str) -> Span:
        """Start a child span of this span."""
        with self._lock:
            record = _new_record(
                self._record.trace_id, self._record.span_id, op, description
            )
        return Span(self._state, self._sampled, record)

    def finish(self) -> None:
        """Record the end time and add the span to its transaction, once."""
        with self._lock:
            if self._record.timestamp is not None:
                return
            self._record.timestamp = _time.time()
            snapshot = self._record.snapshot()
            with self._state.lock:
                payload = self._state.payload
                if payload is not None and len(payload.spans) <= _MAX_SPANS:
                    payload.spans.append(snapshot)


def start_transaction(
    ctx: TransactionContext,
    transport: Optional[Transport] = None,
    traces_sample_rate: float = 0.0,
    traces_sampler: Optional[TracesSampler] = None,
) -> Transaction:
    """Start a transaction.

    Without a transport nothing is ever sent and the sampling decision is
    the context's own. With one, the sampler or sample rate decides.
    """
    if transport is not None:
        rate = transaction_sample_rate(traces_sampler, ctx, traces_sample_rate)
        sampled = _should_send(rate)
        payload: Optional[_TransactionPayload] = _TransactionPayload(name=ctx.name)
    else:
        sampled = bool(ctx.sampled)
        payload = None

    context = TraceContext(
        trace_id=ctx.trace_id, parent_span_id=ctx.parent_span_id, op=ctx.op
    )
    if not sampled:
        payload = None
        transport = None
    return Transaction(_TransactionState(transport, sampled, context, payload))


def continue_from_span(
    name: str, op: str, span: Union[Transaction, Span, None]
) -> TransactionContext:
    """Create a transaction context continuing the trace of a running span."""
    if span is None:
        return TransactionContext(name, op)
    if isinstance(span, Transaction):
        ctx = span.get_trace_context()
        trace_id, parent_span_id = ctx.trace_id, ctx.span_id
    elif isinstance(span, Span):
        with span._lock:
            trace_id, parent_span_id = span._record.trace_id, span._record.span_id
    else:
        raise TypeError(f"expected a transaction or span, got {type(span).__name__}")
    return TransactionContext(
        name,
        op,
        trace_id=trace_id,
        parent_span_id=parent_span_id,
        sampled=span.is_sampled(),
    )
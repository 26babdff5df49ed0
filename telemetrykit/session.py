"""Release health sessions and the background flusher that batches their updates."""

from __future__ import annotations

import dataclasses
import enum
import threading
import time as _time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from .transport import Envelope, Transport

MAX_SESSION_ITEMS = 100
FLUSH_INTERVAL = 60.0


class SessionStatus(enum.Enum):
    """The state of a session; everything but ``OK`` is terminal."""

    OK = "ok"
    EXITED = "exited"
    CRASHED = "crashed"
    ABNORMAL = "abnormal"

    def __str__(self) -> str:
        return self.value


class SessionMode(enum.Enum):
    """How sessions are reported.

    ``APPLICATION`` sends every update individually; ``REQUEST`` aggregates
    sessions that were never partially sent into per-minute counts.
    """

    APPLICATION = "application"
    REQUEST = "request"


@dataclass
class SessionUpdate:
    """One update of a session, as sent to the server."""

    release: str
    environment: Optional[str] = None
    session_id: uuid.UUID = field(default_factory=uuid.uuid4)
    distinct_id: Optional[str] = None
    sequence: Optional[int] = None
    timestamp: Optional[float] = None
    started: float = field(default_factory=_time.time)
    init: bool = True
    duration: Optional[float] = None
    status: SessionStatus = SessionStatus.OK
    errors: int = 0
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class SessionAggregateItem:
    """Counts of closed sessions sharing a start minute and distinct id."""

    started: float
    distinct_id: Optional[str]
    exited: int = 0
    errored: int = 0
    abnormal: int = 0
    crashed: int = 0


@dataclass
class SessionAggregates:
    """A batch of aggregated session counts with their shared attributes."""

    aggregates: list[SessionAggregateItem]
    release: str
    environment: Optional[str] = None


class Session:
    """A running session whose updates are handed to a flusher.

    The session must be ended with :meth:`end`, which closes it as exited
    unless it already reached another state and enqueues its final update.
    """

    def __init__(
        self,
        flusher: SessionFlusher,
        release: str,
        environment: Optional[str] = None,
        distinct_id: Optional[str] = None,
    ) -> None:
        self._flusher = flusher
        self._update = SessionUpdate(
            release=release, environment=environment, distinct_id=distinct_id
        )
        self._started = _time.monotonic()
        self._dirty = True
        self._ended = False

    @property
    def update(self) -> SessionUpdate:
        """A copy of the current session state."""
        return dataclasses.replace(self._update)

    def record_event(self, is_error: bool, is_crash: bool) -> None:
        """Account for a captured event; a crash also counts as an error."""
        if self._update.status is not SessionStatus.OK:
            return
        if is_crash:
            self._update.status = SessionStatus.CRASHED
        if is_error or is_crash:
            self._update.errors += 1
            self._dirty = True

    def close(self, status: SessionStatus) -> None:
        """Move an open session into a terminal state; ``OK`` means exited."""
        if self._update.status is not SessionStatus.OK:
            return
        if status is SessionStatus.OK:
            status = SessionStatus.EXITED
        self._update.duration = _time.monotonic() - self._started
        self._update.status = status
        self._dirty = True

    def create_envelope_item(self) -> Optional[SessionUpdate]:
        """Return the pending update, if any, and mark it as sent."""
        if not self._dirty:
            return None
        item = dataclasses.replace(self._update)
        self._update.init = False
        self._dirty = False
        return item

    def end(self) -> None:
        """Close the session as exited and enqueue its final update, once."""
        if self._ended:
            return
        self._ended = True
        self.close(SessionStatus.EXITED)
        if self._dirty:
            self._dirty = False
            self._flusher.enqueue(dataclasses.replace(self._update))


class _Aggregated:
    def __init__(self, release: str, environment: Optional[str]) -> None:
        self.release = release
        self.environment = environment
        self.buckets: dict[tuple[float, Optional[str]], SessionAggregateItem] = {}

    def into_payload(self) -> SessionAggregates:
        return SessionAggregates(
            aggregates=list(self.buckets.values()),
            release=self.release,
            environment=self.environment,
        )


class SessionFlusher:
    """Queues session updates and sends them in batches.

    A background thread flushes the queue once every ``flush_interval``
    seconds; a full batch is sent right away, and ``close`` sends the rest.
    """

    def __init__(
        self,
        transport: Optional[Transport],
        mode: SessionMode = SessionMode.APPLICATION,
        flush_interval: float = FLUSH_INTERVAL,
    ) -> None:
        self._transport = transport
        self._mode = mode
        self._interval = flush_interval
        self._lock = threading.Lock()
        self._individual: list[SessionUpdate] = []
        self._aggregated: Optional[_Aggregated] = None
        self._shutdown = False
        self._cond = threading.Condition()
        self._closed = False
        self._worker = threading.Thread(
            target=self._run, name="session-flusher", daemon=True
        )
        self._worker.start()

    def _run(self) -> None:
        with self._cond:
            if self._shutdown:
                return
            last_flush = _time.monotonic()
            while True:
                timeout = max(self._interval - (_time.monotonic() - last_flush), 0.0)
                self._cond.wait(timeout)
                if self._shutdown:
                    return
                if _time.monotonic() - last_flush < self._interval:
                    continue
                self._flush_queue()
                last_flush = _time.monotonic()

    def enqueue(self, session_update: SessionUpdate) -> None:
        """Queue an update; in request mode, fresh sessions are aggregated."""
        with self._lock:
            if self._closed:
                raise RuntimeError("session flusher is closed")
            if self._mode is SessionMode.APPLICATION or not session_update.init:
                self._individual.append(session_update)
                full = len(self._individual) >= MAX_SESSION_ITEMS
            else:
                self._aggregate(session_update)
                full = False
        if full:
            self._flush_queue()

    def _aggregate(self, update: SessionUpdate) -> None:
        if self._aggregated is None:
            self._aggregated = _Aggregated(update.release, update.environment)
        started = float(int(max(update.started, 0.0)) // 60 * 60)
        key = (started, update.distinct_id)
        bucket = self._aggregated.buckets.get(key)
        if bucket is None:
            bucket = self._aggregated.buckets[key] = SessionAggregateItem(
                started=started, distinct_id=update.distinct_id
            )
        if update.status is SessionStatus.EXITED:
            if update.errors > 0:
                bucket.errored += 1
            else:
                bucket.exited += 1
        elif update.status is SessionStatus.CRASHED:
            bucket.crashed += 1
        elif update.status is SessionStatus.ABNORMAL:
            bucket.abnormal += 1
        # Open sessions are never enqueued; such an update is ignored.

    def _send(self, envelope: Envelope) -> None:
        if self._transport is not None:
            self._transport.send_envelope(envelope)

    def _flush_queue(self) -> None:
        with self._lock:
            queue, self._individual = self._individual, []
            aggregate, self._aggregated = self._aggregated, None

        if aggregate is not None:
            envelope = Envelope()
            envelope.add_item("sessions", aggregate.into_payload())
            self._send(envelope)

        for start in range(0, len(queue), MAX_SESSION_ITEMS):
            envelope = Envelope()
            for update in queue[start : start + MAX_SESSION_ITEMS]:
                envelope.add_item("session", update)
            self._send(envelope)

    def flush(self) -> None:
        """Send everything queued now."""
        self._flush_queue()

    def close(self) -> None:
        """Stop the background thread and send everything still queued."""
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()
        if self._worker is not threading.current_thread():
            self._worker.join()
        self._flush_queue()
        with self._lock:
            self._closed = True

    def __enter__(self) -> SessionFlusher:
        return self

    def __exit__(self, *args) -> None:
        self.close()
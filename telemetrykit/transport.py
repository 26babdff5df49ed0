"""Envelopes and the transports that carry them."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any


class Envelope:
    """An ordered container of ``(kind, payload)`` items sent as one unit."""

    def __init__(self, items: Iterable[tuple[str, Any]] = ()) -> None:
        self._items: list[tuple[str, Any]] = list(items)

    def add_item(self, kind: str, payload: Any) -> None:
        """Append an item of the given kind."""
        self._items.append((kind, payload))

    def items(self) -> tuple[tuple[str, Any], ...]:
        """Return the items in insertion order."""
        return tuple(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Envelope):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"Envelope({self._items!r})"


class Transport(ABC):
    """Something that delivers envelopes."""

    @abstractmethod
    def send_envelope(self, envelope: Envelope) -> None:
        """Send an envelope."""

    def flush(self, timeout: float | None = None) -> bool:
        """Drain any queue; return True if nothing was left behind."""
        return True

    def shutdown(self, timeout: float | None = None) -> bool:
        """Shut the transport down, flushing it first."""
        return self.flush(timeout)


class CapturingTransport(Transport):
    """A transport that keeps envelopes in memory instead of sending them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._collected: list[Envelope] = []

    def send_envelope(self, envelope: Envelope) -> None:
        with self._lock:
            self._collected.append(envelope)

    def fetch_and_clear_envelopes(self) -> list[Envelope]:
        """Return every captured envelope and forget them."""
        with self._lock:
            collected, self._collected = self._collected, []
        return collected
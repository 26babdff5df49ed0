"""Normalization of metric names, units and tags for the statsd wire format."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping

_NAME_RE = re.compile(r"[^a-zA-Z0-9_\-.]")
_UNIT_RE = re.compile(r"[^a-zA-Z0-9_]")
_TAG_KEY_RE = re.compile(r"[^a-zA-Z0-9_\-./]")

_MAX_NAME = 150
_MAX_UNIT = 15
_MAX_TAG_KEY = 32
_MAX_TAG_VALUE = 200

_VALUE_ESCAPES = {
    "\t": "\\t",
    "\n": "\\n",
    "\r": "\\r",
    "\\": "\\\\",
    "|": "\\u{7c}",
    ",": "\\u{2c}",
}


def truncate(s: str, max_chars: int) -> str:
    """Cut ``s`` to at most ``max_chars`` characters."""
    return s[:max_chars]


def normalize_name(name: str) -> str:
    """Truncate a metric name and replace disallowed characters with ``_``."""
    return _NAME_RE.sub("_", truncate(name, _MAX_NAME))


def normalize_unit(unit: str) -> str:
    """Truncate a unit and drop disallowed characters; empty becomes ``none``."""
    normalized = _UNIT_RE.sub("", truncate(unit, _MAX_UNIT))
    return normalized or "none"


def _normalize_key(key: str) -> str:
    return _TAG_KEY_RE.sub("", truncate(key, _MAX_TAG_KEY))


def _normalize_value(value: str) -> str:
    return "".join(
        _VALUE_ESCAPES.get(c, "" if unicodedata.category(c) == "Cc" else c)
        for c in truncate(value, _MAX_TAG_VALUE)
    )


def _normalized_pairs(tags: Mapping[str, str]):
    for key, value in sorted(tags.items()):
        key, value = _normalize_key(key), _normalize_value(value)
        if key and value:
            yield key, value


class NormalizedTags:
    """A sorted set of normalized tags, rendered as ``k:v`` pairs joined by commas."""

    def __init__(self, tags: Mapping[str, str] | None = None) -> None:
        self.tags: dict[str, str] = dict(tags or {})

    def with_default_tags(self, tags: Mapping[str, str]) -> NormalizedTags:
        """Return a copy with default tags added where no tag of that key exists."""
        merged = dict(self.tags)
        for key, value in _normalized_pairs(tags):
            merged.setdefault(key, value)
        return NormalizedTags(merged)

    def __str__(self) -> str:
        return ",".join(f"{key}:{self.tags[key]}" for key in sorted(self.tags))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NormalizedTags):
            return NotImplemented
        return self.tags == other.tags

    def __repr__(self) -> str:
        return f"NormalizedTags({self.tags!r})"


def normalize_tags(tags: Mapping[str, str]) -> NormalizedTags:
    """Normalize keys and values, dropping pairs that end up empty."""
    return NormalizedTags(dict(_normalized_pairs(tags)))
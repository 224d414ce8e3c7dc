"""Workflow event stream.

Request handling, the submission lifecycle and the content_html repair job
report what happened through `TelemetryClient.emit`. Events are flat: each
attribute is reduced to a scalar, and attributes that may carry entry text
are masked before a sink sees them.
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sized
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal, Protocol

import structlog

LOGGER = logging.getLogger("encyclopedia.telemetry")

# Matched against whole words of the attribute name: `content_html` and
# `review_note` are masked, `status` and `changed_count` are not.
MASKED_KEY_WORDS: frozenset[str] = frozenset(
    {
        "authorization",
        "body",
        "content",
        "cookie",
        "fields",
        "html",
        "note",
        "notes",
        "password",
        "secret",
        "token",
    }
)
MASK = "[redacted]"
MAX_TEXT_LENGTH = 120
_KEY_WORD_SEPARATOR = re.compile(r"[^a-z0-9]+")

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        del event_name, attributes


class StructlogTelemetrySink:
    """One structlog record per event, tagged with the event's scope (`http`, `submission`, ...)."""

    def __init__(self, logger_name: str = "encyclopedia.telemetry") -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        scope = event_name.partition(".")[0]
        self._logger.info("telemetry", telemetry_event=event_name, event_scope=scope, **attributes)


_SINK_FACTORIES: dict[str, Callable[[], TelemetrySink]] = {"log": StructlogTelemetrySink}


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if self.enabled:
            self.sink.emit(event_name=event_name, attributes=redact_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    factory = _SINK_FACTORIES.get(sink)
    if factory is None:
        LOGGER.warning("unknown telemetry sink; telemetry disabled sink=%s", sink)
        return TelemetryClient.disabled()
    return TelemetryClient(enabled=True, sink=factory())


def redact_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    """Lower-case the keys, drop blank ones, mask entry text and flatten the rest."""
    cleaned: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        cleaned[key] = MASK if _is_masked(key) else _compact_value(raw_value)
    return cleaned


def _is_masked(key: str) -> bool:
    return not MASKED_KEY_WORDS.isdisjoint(_KEY_WORD_SEPARATOR.split(key))


def _compact_value(value: Any) -> TelemetryValue:
    if isinstance(value, enum.Enum):
        value = value.value
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        return compact if len(compact) <= MAX_TEXT_LENGTH else f"{compact[:MAX_TEXT_LENGTH]}..."
    if isinstance(value, date):
        return value.isoformat()
    # Collections are reported by size so ids and names stay out of the stream.
    if isinstance(value, Sized) and isinstance(value, Iterable):
        return len(value)
    return type(value).__name__

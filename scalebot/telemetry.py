"""Internal telemetry events for bot commands, long polls and HTTP requests.

Events go to the `scalebot.telemetry` logger. Attribute values are reduced to
scalars, and any attribute whose name suggests chat text or credentials is
redacted before it reaches a sink.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

TelemetrySinkName = Literal["none", "log"]
TelemetryValue = bool | int | float | str | None

REDACTED = "[redacted]"
_REDACTED_KEY_PARTS: tuple[str, ...] = (
    "authorization",
    "certificate",
    "credential",
    "secret",
    "text",
    "token",
)
_MAX_VALUE_LENGTH = 160


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class LogTelemetrySink:
    def __init__(self, logger_name: str = "scalebot.telemetry") -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink | None = None

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False)

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled or self.sink is None:
            return
        self.sink.emit(
            event_name=event_name,
            attributes={key: scrub_value(key, value) for key, value in attributes.items()},
        )


def build_telemetry_client(*, enabled: bool, sink: TelemetrySinkName) -> TelemetryClient:
    if enabled and sink == "log":
        return TelemetryClient(enabled=True, sink=LogTelemetrySink())
    return TelemetryClient.disabled()


def scrub_value(key: str, value: Any) -> TelemetryValue:
    if any(part in key.lower() for part in _REDACTED_KEY_PARTS):
        return REDACTED
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) > _MAX_VALUE_LENGTH:
            return f"{compact[:_MAX_VALUE_LENGTH]}..."
        return compact
    return type(value).__name__

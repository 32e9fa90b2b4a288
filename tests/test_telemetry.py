from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from scalebot.telemetry import (
    REDACTED,
    LogTelemetrySink,
    TelemetryClient,
    build_telemetry_client,
    scrub_value,
)


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_command_event_redacts_chat_text_and_credentials() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "command.execute.start",
        command_name="up",
        chat_id=777,
        message_text="/up",
        bot_token="123:abc",
        ca_certificate="LS0t",
    )

    assert sink.events == [
        (
            "command.execute.start",
            {
                "command_name": "up",
                "chat_id": 777,
                "message_text": REDACTED,
                "bot_token": REDACTED,
                "ca_certificate": REDACTED,
            },
        )
    ]


@pytest.mark.parametrize(
    ("key", "value", "expected"),
    [
        ("duration_ms", 12, 12),
        ("outcome", "  ok\n", "ok"),
        ("reason", "x" * 500, "x" * 160 + "..."),
        ("details", {"a": 1}, "dict"),
        ("user_id", None, None),
        ("Webhook_Secret", "s3cret", REDACTED),
    ],
)
def test_scrub_value(key: str, value: Any, expected: Any) -> None:
    assert scrub_value(key, value) == expected


def test_disabled_client_does_not_emit() -> None:
    sink = _CaptureSink()

    TelemetryClient(enabled=False, sink=sink).emit("command.execute.start", chat_id=1)
    TelemetryClient.disabled().emit("command.execute.start", chat_id=1)

    assert sink.events == []


@pytest.mark.parametrize(
    ("enabled", "sink_name"),
    [(True, "none"), (False, "log"), (False, "none")],
)
def test_build_telemetry_client_disabled_variants(enabled: bool, sink_name: Any) -> None:
    client = build_telemetry_client(enabled=enabled, sink=sink_name)

    assert client.enabled is False
    assert client.sink is None


def test_build_telemetry_client_log_sink() -> None:
    client = build_telemetry_client(enabled=True, sink="log")

    assert client.enabled is True
    assert isinstance(client.sink, LogTelemetrySink)

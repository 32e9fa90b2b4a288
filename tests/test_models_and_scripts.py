from __future__ import annotations

import json
import signal
from pathlib import Path

import pytest
from pydantic import ValidationError

from scalebot.models.telegram_contracts import TelegramUpdate, WebhookAck
from scalebot.scripts import export_openapi, run_bot


def test_telegram_update_reads_from_alias_and_ignores_unknown_fields() -> None:
    update = TelegramUpdate.model_validate(
        {
            "update_id": 7,
            "message": {
                "message_id": 3,
                "date": 1700000000,
                "chat": {"id": -100123, "type": "group", "title": "ops"},
                "from": {"id": 4242, "is_bot": False, "first_name": "Op"},
                "text": "/up@factorio_bot",
            },
        }
    )

    assert update.message is not None
    assert update.message.chat.id == -100123
    assert update.message.from_user is not None
    assert update.message.from_user.id == 4242
    assert update.message.text == "/up@factorio_bot"


def test_update_without_message_is_valid() -> None:
    update = TelegramUpdate.model_validate({"update_id": 8, "callback_query": {"id": "1"}})

    assert update.message is None


def test_webhook_ack_rejects_extra_fields() -> None:
    with pytest.raises(ValidationError):
        WebhookAck.model_validate({"ok": True, "reply": "Done!"})


def test_export_openapi_writes_schema(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCALEBOT_BOT_TOKEN", "123:abc")
    monkeypatch.chdir(tmp_path)

    export_openapi.main()

    schema = json.loads((tmp_path / "openapi" / "openapi.json").read_text(encoding="utf-8"))
    assert schema["info"]["title"] == "Scalebot API"
    assert "/scalebot" in schema["paths"]
    assert "post" in schema["paths"]["/scalebot"]
    assert "/health" in schema["paths"]


def test_run_bot_dispatches_on_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(run_bot, "run_webhook_server", lambda _settings: calls.append("webhook"))
    monkeypatch.setattr(run_bot, "run_polling", lambda _settings: calls.append("polling"))
    monkeypatch.setenv("SCALEBOT_BOT_TOKEN", "123:abc")

    monkeypatch.setenv("SCALEBOT_MODE", "production")
    run_bot.main()
    run_bot.get_settings.cache_clear()
    monkeypatch.setenv("SCALEBOT_MODE", "development")
    run_bot.main()

    assert calls == ["webhook", "polling"]


def test_run_webhook_server_uses_app_factory(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_run(app: str, **kwargs: object) -> None:
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.setattr(run_bot.uvicorn, "run", fake_run)
    monkeypatch.setenv("SCALEBOT_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("PORT", "9090")

    run_bot.run_webhook_server(run_bot.get_settings())

    assert captured["app"] == "scalebot.main:create_app"
    assert captured["factory"] is True
    assert captured["port"] == 9090
    assert captured["log_level"] == "info"


def test_stop_handler_requests_stop_then_interrupts_on_second_signal() -> None:
    class _Service:
        def __init__(self) -> None:
            self.stop_requested = False
            self.stops = 0

        def stop(self) -> None:
            self.stops += 1
            self.stop_requested = True

    service = _Service()
    handler = run_bot.build_stop_handler(service)  # type: ignore[arg-type]

    handler(signal.SIGINT, None)
    assert service.stops == 1

    with pytest.raises(KeyboardInterrupt):
        handler(signal.SIGINT, None)
    assert service.stops == 1

from __future__ import annotations

import json
import logging
from http.client import HTTPException
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import ValidationError

from scalebot.errors import ScalebotError
from scalebot.models.telegram_contracts import TelegramUpdate

LOGGER = logging.getLogger("scalebot.telegram")
_LONG_POLL_GRACE_SECONDS = 10.0


class TelegramApiError(ScalebotError):
    def __init__(self, message: str, *, status_code: int | None, retryable: bool) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class TelegramBotClient:
    """Minimal Telegram Bot API client covering what the bot needs."""

    def __init__(
        self,
        *,
        bot_token: str,
        base_url: str = "https://api.telegram.org",
        http_timeout_seconds: float = 10.0,
    ) -> None:
        if not bot_token:
            raise ValueError("TelegramBotClient requires a bot token.")
        self._bot_token = bot_token
        self._base_url = base_url.rstrip("/")
        self._http_timeout_seconds = max(1.0, float(http_timeout_seconds))

    def send_message(self, chat_id: int, text: str) -> dict[str, Any]:
        result = self._call("sendMessage", {"chat_id": chat_id, "text": text})
        return cast(dict[str, Any], result) if isinstance(result, dict) else {}

    def set_webhook(self, url: str, *, secret_token: str | None = None) -> bool:
        payload: dict[str, object] = {"url": url, "allowed_updates": ["message"]}
        if secret_token is not None:
            payload["secret_token"] = secret_token
        return bool(self._call("setWebhook", payload))

    def delete_webhook(self) -> bool:
        return bool(self._call("deleteWebhook", {"drop_pending_updates": False}))

    def get_updates(self, *, offset: int | None, timeout_seconds: int) -> list[TelegramUpdate]:
        payload: dict[str, object] = {
            "timeout": max(0, timeout_seconds),
            "allowed_updates": ["message"],
        }
        if offset is not None:
            payload["offset"] = offset
        result = self._call(
            "getUpdates",
            payload,
            timeout_seconds=timeout_seconds + _LONG_POLL_GRACE_SECONDS,
        )
        if not isinstance(result, list):
            return []

        updates: list[TelegramUpdate] = []
        for raw_update in cast(list[Any], result):
            update = _parse_update(raw_update)
            if update is not None:
                updates.append(update)
        return updates

    def _call(
        self,
        method: str,
        payload: dict[str, object],
        *,
        timeout_seconds: float | None = None,
    ) -> object:
        url = f"{self._base_url}/bot{self._bot_token}/{method}"
        request = Request(
            url=url,
            data=json.dumps(payload, ensure_ascii=True).encode("utf-8"),
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            method="POST",
        )
        timeout = self._http_timeout_seconds if timeout_seconds is None else timeout_seconds

        try:
            with urlopen(request, timeout=timeout) as response:
                raw_body = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            response_body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            parsed = _decode_json_object(response_body)
            message = _extract_description(parsed) or response_body or str(exc.reason)
            raise TelegramApiError(
                f"Telegram {method} failed: {message}",
                status_code=exc.code,
                retryable=(exc.code >= 500 or exc.code in {408, 429}),
            ) from exc
        except URLError as exc:
            raise TelegramApiError(
                f"Telegram {method} request failed: {exc.reason}",
                status_code=None,
                retryable=True,
            ) from exc
        except TimeoutError as exc:
            raise TelegramApiError(
                f"Telegram {method} request timed out.",
                status_code=None,
                retryable=True,
            ) from exc
        except (OSError, HTTPException) as exc:
            # urlopen does not wrap failures raised while the response is read.
            raise TelegramApiError(
                f"Telegram {method} connection failed: {type(exc).__name__}: {exc}",
                status_code=None,
                retryable=True,
            ) from exc

        parsed = _decode_json_object(raw_body)
        if parsed is None:
            raise TelegramApiError(
                f"Telegram {method} returned a non-JSON response.",
                status_code=None,
                retryable=True,
            )
        if parsed.get("ok") is not True:
            raise TelegramApiError(
                f"Telegram {method} failed: {_extract_description(parsed) or 'unknown error'}",
                status_code=_to_optional_int(parsed.get("error_code")),
                retryable=False,
            )
        LOGGER.debug("telegram call ok method=%s", method)
        return parsed.get("result")


def _parse_update(raw_update: Any) -> TelegramUpdate | None:
    """Validate one update; a malformed one keeps only its id so the offset still advances."""
    try:
        return TelegramUpdate.model_validate(raw_update)
    except ValidationError:
        update_id: int | None = None
        if isinstance(raw_update, dict):
            update_id = _to_optional_int(cast(dict[str, Any], raw_update).get("update_id"))
        LOGGER.warning("malformed telegram update ignored update_id=%s", update_id, exc_info=True)
        if update_id is None:
            return None
        return TelegramUpdate(update_id=update_id)


def _decode_json_object(raw_body: str) -> dict[str, Any] | None:
    if not raw_body:
        return None
    try:
        decoded = json.loads(raw_body)
    except json.JSONDecodeError:
        return None
    if isinstance(decoded, dict):
        return cast(dict[str, Any], decoded)
    return None


def _extract_description(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    description = payload.get("description")
    if isinstance(description, str) and description.strip():
        return description.strip()
    return None


def _to_optional_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None

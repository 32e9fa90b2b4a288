from __future__ import annotations

import logging
import threading
import time
from typing import Protocol
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from scalebot.models.telegram_contracts import TelegramUpdate
from scalebot.services.telegram_client import TelegramApiError
from scalebot.telemetry import TelemetryClient

LOGGER = logging.getLogger("scalebot.polling")


class UpdateSource(Protocol):
    def delete_webhook(self) -> bool:
        ...

    def get_updates(self, *, offset: int | None, timeout_seconds: int) -> list[TelegramUpdate]:
        ...


class UpdateHandler(Protocol):
    def handle_update(self, update: TelegramUpdate) -> str | None:
        ...


class PollingService:
    """Long-poll loop for development mode; updates are handled one at a time."""

    def __init__(
        self,
        *,
        source: UpdateSource,
        handler: UpdateHandler,
        poll_timeout_seconds: int = 30,
        error_backoff_seconds: float = 5.0,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._source = source
        self._handler = handler
        self._poll_timeout_seconds = max(0, poll_timeout_seconds)
        self._error_backoff_seconds = max(0.0, error_backoff_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._offset: int | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def offset(self) -> int | None:
        return self._offset

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="scalebot-polling")
        self._thread.daemon = True
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self._poll_timeout_seconds + 3)
            self._thread = None

    def run_forever(self) -> None:
        self._source.delete_webhook()
        LOGGER.info("polling started timeout_seconds=%s", self._poll_timeout_seconds)
        while not self._stop_event.is_set():
            if not self.poll_once():
                self._stop_event.wait(self._error_backoff_seconds)
        LOGGER.info("polling stopped")

    def poll_once(self) -> bool:
        """Fetch one batch of updates and dispatch them; False when the fetch failed."""
        poll_id = uuid4().hex
        poll_tokens = bind_contextvars(poll_id=poll_id)
        started_at = time.perf_counter()
        try:
            try:
                updates = self._source.get_updates(
                    offset=self._offset,
                    timeout_seconds=self._poll_timeout_seconds,
                )
            except Exception as exc:
                LOGGER.warning(
                    "getUpdates failed error_type=%s status_code=%s",
                    type(exc).__name__,
                    exc.status_code if isinstance(exc, TelegramApiError) else None,
                    exc_info=True,
                )
                self._telemetry.emit(
                    "telegram.poll.error",
                    poll_id=poll_id,
                    duration_ms=int((time.perf_counter() - started_at) * 1000),
                    error_type=type(exc).__name__,
                )
                return False

            for update in updates:
                self._offset = update.update_id + 1
                self._dispatch(update)

            self._telemetry.emit(
                "telegram.poll.finish",
                poll_id=poll_id,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                update_count=len(updates),
            )
            return True
        finally:
            reset_contextvars(**poll_tokens)

    def _dispatch(self, update: TelegramUpdate) -> None:
        update_tokens = bind_contextvars(update_id=update.update_id)
        try:
            self._handler.handle_update(update)
        except TelegramApiError:
            LOGGER.warning("reply could not be sent update_id=%s", update.update_id, exc_info=True)
        except Exception:
            LOGGER.exception("update handling failed update_id=%s", update.update_id)
        finally:
            reset_contextvars(**update_tokens)

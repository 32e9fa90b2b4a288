from __future__ import annotations

import logging
import signal
from collections.abc import Callable
from types import FrameType

import uvicorn

from scalebot.config import AppSettings
from scalebot.dependencies import get_dispatcher, get_settings, get_telegram_client, get_telemetry
from scalebot.logging_config import configure_application_logging
from scalebot.services.polling_service import PollingService

LOGGER = logging.getLogger("scalebot.run")


def run_webhook_server(settings: AppSettings) -> None:
    uvicorn.run(
        "scalebot.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


def run_polling(settings: AppSettings) -> None:
    configure_application_logging(settings)
    if not settings.allowed_requester_ids:
        LOGGER.warning("no allowed requester ids configured; every command will be denied")

    service = PollingService(
        source=get_telegram_client(),
        handler=get_dispatcher(),
        poll_timeout_seconds=settings.polling_timeout_seconds,
        error_backoff_seconds=settings.polling_error_backoff_seconds,
        telemetry=get_telemetry(),
    )

    stop_handler = build_stop_handler(service)
    signal.signal(signal.SIGINT, stop_handler)
    signal.signal(signal.SIGTERM, stop_handler)
    LOGGER.info("launched locally")
    try:
        service.run_forever()
    except KeyboardInterrupt:
        LOGGER.info("polling interrupted")


def build_stop_handler(service: PollingService) -> Callable[[int, FrameType | None], None]:
    """First signal stops after the current long poll returns; a second one exits at once."""

    def _stop(signum: int, frame: FrameType | None) -> None:
        if service.stop_requested:
            signal.default_int_handler(signum, frame)
        LOGGER.info(
            "stopping polling after the current long poll signal=%s; send again to exit now",
            signum,
        )
        service.stop()

    return _stop


def main() -> None:
    settings = get_settings()
    mode = settings.mode

    if mode == "production":
        run_webhook_server(settings)
        return
    if mode == "development":
        run_polling(settings)
        return

    raise RuntimeError(f"Unhandled mode: {mode}")


if __name__ == "__main__":
    main()

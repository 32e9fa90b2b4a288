from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bind_contextvars, reset_contextvars

from scalebot.api.routes import build_webhook_router
from scalebot.config import AppSettings
from scalebot.dependencies import get_settings, get_telegram_client, get_telemetry
from scalebot.logging_config import configure_application_logging

LOGGER = logging.getLogger("scalebot.app")


def health_check() -> dict[str, str]:
    return {"status": "ok"}


def register_webhook(settings: AppSettings) -> str:
    url = settings.webhook_url
    if url is None:
        raise ValueError("Webhook URL cannot be derived from the current settings.")
    get_telegram_client().set_webhook(url, secret_token=settings.webhook_secret_token)
    LOGGER.info("set webhook url=%s", url)
    return url


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    if not settings.allowed_requester_ids:
        LOGGER.warning("no allowed requester ids configured; every command will be denied")

    if settings.is_production:
        register_webhook(settings)
    else:
        LOGGER.info("development mode; webhook not registered, use scalebot-run to poll")

    yield


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Scalebot API", version="0.1.0", lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                "http.request.error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                "http.request.finish",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.include_router(build_webhook_router(settings.function_name))
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )

    return app

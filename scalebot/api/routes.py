from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException
from structlog.contextvars import bind_contextvars, reset_contextvars

from scalebot.config import AppSettings
from scalebot.dependencies import get_dispatcher, get_settings
from scalebot.models.telegram_contracts import TelegramUpdate, WebhookAck
from scalebot.services.command_dispatcher import CommandDispatcher
from scalebot.services.telegram_client import TelegramApiError

LOGGER = logging.getLogger("scalebot.webhook")
SECRET_TOKEN_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def _verify_secret_token(settings: AppSettings, received: str | None) -> None:
    expected = settings.webhook_secret_token
    if expected is None:
        return
    if received is None or not secrets.compare_digest(received, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook secret token.")


def telegram_webhook(
    update: TelegramUpdate,
    dispatcher: Annotated[CommandDispatcher, Depends(get_dispatcher)],
    settings: Annotated[AppSettings, Depends(get_settings)],
    secret_token: Annotated[str | None, Header(alias=SECRET_TOKEN_HEADER)] = None,
) -> WebhookAck:
    _verify_secret_token(settings, secret_token)
    context_tokens = bind_contextvars(update_id=update.update_id)
    try:
        dispatcher.handle_update(update)
    except TelegramApiError:
        # Acknowledge anyway: a redelivered update would run the scale again.
        LOGGER.warning("reply could not be sent update_id=%s", update.update_id, exc_info=True)
    finally:
        reset_contextvars(**context_tokens)
    return WebhookAck(ok=True)


def build_webhook_router(function_name: str) -> APIRouter:
    router = APIRouter()
    router.add_api_route(
        f"/{function_name}",
        telegram_webhook,
        methods=["POST"],
        response_model=WebhookAck,
        tags=["telegram"],
        operation_id="telegram_webhook",
    )
    return router

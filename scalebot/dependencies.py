from __future__ import annotations

from functools import lru_cache

from scalebot.config import AppSettings, load_settings
from scalebot.services.command_dispatcher import CommandDispatcher, DeploymentTarget
from scalebot.services.gke_credentials import GkeCredentialResolver
from scalebot.services.telegram_client import TelegramBotClient
from scalebot.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_telegram_client() -> TelegramBotClient:
    settings = get_settings()
    if settings.bot_token is None:
        raise ValueError("SCALEBOT_BOT_TOKEN (or BOT_TOKEN) is required for Telegram calls.")
    return TelegramBotClient(
        bot_token=settings.bot_token,
        base_url=settings.telegram_api_base_url,
        http_timeout_seconds=settings.telegram_http_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_dispatcher() -> CommandDispatcher:
    settings = get_settings()
    return CommandDispatcher(
        target=DeploymentTarget(
            cluster=settings.cluster,
            zone=settings.zone,
            project_id=settings.project_id,
            namespace=settings.namespace,
            name=settings.deployment_name,
        ),
        credential_resolver=GkeCredentialResolver(),
        messenger=get_telegram_client(),
        allowed_requester_ids=settings.allowed_requester_ids,
        report_node_ips=settings.report_node_ips,
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_dispatcher.cache_clear()
    get_telegram_client.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()

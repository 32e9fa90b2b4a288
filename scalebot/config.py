from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

BOT_MODES: dict[str, str] = {
    "production": "production",
    "prod": "production",
    "development": "development",
    "dev": "development",
}
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "report_node_ips",
    "telemetry_enabled",
)
_REQUESTER_ID_SEPARATORS = re.compile(r"[,\s]+")


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Runtime configuration for the bot.

    Every option is read from `SCALEBOT_*`; the variable names used by the
    Cloud Functions deployment (`BOT_TOKEN`, `NODE_ENV`,
    `FUNCTION_TARGET`, `PORT`) are accepted as aliases.
    """

    model_config = SettingsConfigDict(
        env_prefix="SCALEBOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Chat platform and transport mode.
    bot_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SCALEBOT_BOT_TOKEN", "BOT_TOKEN"),
        description="Telegram bot token used for every Bot API call.",
    )
    mode: Literal["production", "development"] = Field(
        default="development",
        validation_alias=AliasChoices("SCALEBOT_MODE", "NODE_ENV"),
        description=(
            "`production` registers a webhook and serves HTTP; "
            "`development` runs a local long-poll loop."
        ),
    )
    function_name: str = Field(
        default="scalebot",
        validation_alias=AliasChoices("SCALEBOT_FUNCTION_NAME", "FUNCTION_TARGET"),
        description="Public function name; used as the webhook path and in the webhook URL.",
    )
    webhook_base_url: str | None = Field(
        default=None,
        description=(
            "Explicit public base URL for the webhook. Defaults to the Cloud Functions "
            "URL derived from zone and project."
        ),
    )
    webhook_secret_token: str | None = Field(
        default=None,
        description="Secret echoed by Telegram in X-Telegram-Bot-Api-Secret-Token.",
    )
    allowed_requester_ids: Annotated[tuple[int, ...], NoDecode] = Field(
        default=(),
        description=(
            "Telegram user or chat ids allowed to run commands (comma separated). "
            "Empty denies everyone."
        ),
    )
    telegram_api_base_url: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API base URL.",
    )
    telegram_http_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP timeout for Bot API calls other than long polls.",
    )
    polling_timeout_seconds: int = Field(
        default=30,
        ge=0,
        le=50,
        description="Long-poll timeout passed to getUpdates in development mode.",
    )
    polling_error_backoff_seconds: float = Field(
        default=5.0,
        description="Pause before the next poll after a failed getUpdates call.",
    )

    # Cluster identity.
    zone: str = Field(
        default="europe-west3",
        description="GKE cluster location (zone or region).",
    )
    project_id: str | None = Field(
        default="alice-larp",
        description="GCP project id. When unset, the application default project is used.",
    )
    cluster: str = Field(
        default="cost-cutting-autopilot",
        description="GKE cluster name.",
    )
    namespace: str = Field(
        default="default",
        description="Namespace of the managed Deployment.",
    )
    deployment_name: str = Field(
        default="factorio",
        description="Name of the managed Deployment.",
    )
    report_node_ips: bool = Field(
        default=True,
        description="Reply to `up` with the external IP addresses of the cluster nodes.",
    )

    # HTTP server.
    host: str = Field(default="0.0.0.0", description="Bind address for webhook mode.")
    port: int = Field(
        default=8080,
        validation_alias=AliasChoices("SCALEBOT_PORT", "PORT"),
        description="Bind port for webhook mode.",
    )

    # Logging.
    log_dir: Path | None = Field(
        default=None,
        description="Directory for the JSON log file. Console only when unset.",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @property
    def webhook_url(self) -> str | None:
        if self.webhook_base_url is not None:
            return f"{self.webhook_base_url}/{self.function_name}"
        if self.project_id is None:
            return None
        return f"https://{self.zone}-{self.project_id}.cloudfunctions.net/{self.function_name}"

    @property
    def is_production(self) -> bool:
        return self.mode == "production"

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("SCALEBOT_MODE must be a string.")
        normalized = value.strip().lower()
        if normalized in BOT_MODES:
            return BOT_MODES[normalized]
        raise ValueError("SCALEBOT_MODE must be set to: production, development.")

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("SCALEBOT_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("SCALEBOT_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("function_name", mode="before")
    @classmethod
    def _normalize_function_name(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("SCALEBOT_FUNCTION_NAME must be a string.")
        normalized = value.strip().strip("/")
        if not normalized:
            raise ValueError("SCALEBOT_FUNCTION_NAME must not be empty.")
        return normalized

    @field_validator("webhook_base_url", "telegram_api_base_url", mode="before")
    @classmethod
    def _normalize_base_urls(cls, value: Any) -> str | None:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            return None
        return normalized.rstrip("/")

    @field_validator("allowed_requester_ids", mode="before")
    @classmethod
    def _parse_requester_ids(cls, value: Any) -> tuple[int, ...]:
        if value is None:
            return ()
        if isinstance(value, int):
            return (value,)
        if isinstance(value, str):
            parts = [part for part in _REQUESTER_ID_SEPARATORS.split(value.strip()) if part]
        else:
            parts = list(value)
        try:
            return tuple(int(part) for part in parts)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                "SCALEBOT_ALLOWED_REQUESTER_IDS must be a comma separated list of integers."
            ) from exc

    @field_validator("log_dir", mode="before")
    @classmethod
    def _normalize_log_dir(cls, value: Any) -> Path | None:
        if value is None:
            return None
        if isinstance(value, str) and not value.strip():
            return None
        return Path(value).expanduser().resolve()

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("bot_token", "webhook_secret_token", "project_id", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_runtime_configuration(settings: AppSettings) -> None:
    errors: list[str] = []

    if settings.bot_token is None:
        errors.append("SCALEBOT_BOT_TOKEN (or BOT_TOKEN) is required.")
    if settings.is_production and settings.webhook_url is None:
        errors.append(
            "Production mode needs SCALEBOT_PROJECT_ID or SCALEBOT_WEBHOOK_BASE_URL "
            "to build the webhook URL."
        )

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid scalebot configuration:\n{bullets}")


def load_settings(*, validate: bool = True) -> AppSettings:
    settings = AppSettings()
    if validate:
        _validate_runtime_configuration(settings)
    return settings

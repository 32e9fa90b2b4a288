from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from time import perf_counter
from typing import Literal, Protocol

from structlog.contextvars import bind_contextvars, reset_contextvars

from scalebot.errors import ScalebotError
from scalebot.models.telegram_contracts import TelegramUpdate
from scalebot.services.cluster_client import (
    ClusterClients,
    build_cluster_clients,
    context_name_for,
)
from scalebot.services.deployment_scaler import (
    read_replicas,
    scale_deployment,
    toggle_deployment,
)
from scalebot.services.gke_credentials import ClusterCredentials
from scalebot.services.node_lister import list_external_ips
from scalebot.telemetry import TelemetryClient

LOGGER = logging.getLogger("scalebot.commands")

BotCommand = Literal["up", "down", "toggle", "status", "help"]

COMMAND_ALIASES: dict[str, BotCommand] = {
    "up": "up",
    "down": "down",
    "toggle": "toggle",
    "status": "status",
    "help": "help",
    "start": "help",
}
COMMAND_VERBS: dict[BotCommand, str] = {
    "up": "start",
    "down": "stop",
    "toggle": "toggle",
    "status": "read",
    "help": "describe",
}
_COMMAND_PATTERN = re.compile(r"^/(?P<name>[A-Za-z_]+)(?:@\S+)?(?:\s|$)")

DONE_REPLY = "Done!"
NOT_AUTHORIZED_REPLY = "Not authorized."
IP_LISTING_FAILED_NOTE = "Could not list node IP addresses."
NO_EXTERNAL_IPS_NOTE = "No external IP addresses found."


class CredentialResolver(Protocol):
    def resolve(
        self,
        *,
        cluster: str,
        zone: str,
        project_id: str | None = None,
    ) -> ClusterCredentials:
        ...


class MessageSender(Protocol):
    def send_message(self, chat_id: int, text: str) -> object:
        ...


ClusterClientFactory = Callable[..., ClusterClients]


@dataclass(frozen=True)
class DeploymentTarget:
    cluster: str
    zone: str
    project_id: str | None
    namespace: str
    name: str


def parse_command(text: str | None) -> BotCommand | None:
    if not text:
        return None
    match = _COMMAND_PATTERN.match(text.strip())
    if match is None:
        return None
    return COMMAND_ALIASES.get(match.group("name").lower())


def build_help_reply(target: DeploymentTarget) -> str:
    return "\n".join(
        [
            f"Controls deployment {target.namespace}/{target.name}.",
            "/up - start the server",
            "/down - stop the server",
            "/toggle - switch between started and stopped",
            "/status - show the current replica count",
        ]
    )


class CommandDispatcher:
    """Routes chat commands to cluster operations and always produces a reply.

    Credentials and cluster clients are rebuilt for every command; nothing about
    the cluster is kept between calls.
    """

    def __init__(
        self,
        *,
        target: DeploymentTarget,
        credential_resolver: CredentialResolver,
        messenger: MessageSender,
        allowed_requester_ids: Iterable[int],
        report_node_ips: bool = True,
        client_factory: ClusterClientFactory = build_cluster_clients,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._target = target
        self._credential_resolver = credential_resolver
        self._messenger = messenger
        self._allowed_requester_ids = frozenset(allowed_requester_ids)
        self._report_node_ips = report_node_ips
        self._client_factory = client_factory
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def target(self) -> DeploymentTarget:
        return self._target

    def handle_update(self, update: TelegramUpdate) -> str | None:
        """Run the command carried by `update` and send the reply.

        Returns the reply text, or None when the update carries no known command.
        A failure to send the reply propagates as `TelegramApiError`.
        """
        message = update.message
        if message is None:
            return None
        command = parse_command(message.text)
        if command is None:
            return None

        user_id = message.from_user.id if message.from_user is not None else None
        reply = self.execute(command, chat_id=message.chat.id, user_id=user_id)
        self._messenger.send_message(message.chat.id, reply)
        return reply

    def execute(self, command: BotCommand, *, chat_id: int, user_id: int | None) -> str:
        context_tokens = bind_contextvars(command_name=command, chat_id=chat_id)
        started_at = perf_counter()
        try:
            if not self._is_authorized(chat_id=chat_id, user_id=user_id):
                LOGGER.warning(
                    "command denied; requester not in allow-list command=%s chat_id=%s user_id=%s",
                    command,
                    chat_id,
                    user_id,
                )
                self._telemetry.emit(
                    "command.execute.denied",
                    command_name=command,
                    chat_id=chat_id,
                    user_id=user_id,
                )
                return NOT_AUTHORIZED_REPLY

            self._telemetry.emit("command.execute.start", command_name=command, chat_id=chat_id)
            try:
                reply = self._run(command)
            except Exception as exc:
                LOGGER.warning("command failed command=%s", command, exc_info=True)
                self._telemetry.emit(
                    "command.execute.error",
                    command_name=command,
                    chat_id=chat_id,
                    duration_ms=int((perf_counter() - started_at) * 1000),
                    error_type=type(exc).__name__,
                )
                return self._failure_reply(command, exc)

            self._telemetry.emit(
                "command.execute.finish",
                command_name=command,
                chat_id=chat_id,
                duration_ms=int((perf_counter() - started_at) * 1000),
                outcome="ok",
            )
            return reply
        finally:
            reset_contextvars(**context_tokens)

    def _is_authorized(self, *, chat_id: int, user_id: int | None) -> bool:
        if chat_id in self._allowed_requester_ids:
            return True
        return user_id is not None and user_id in self._allowed_requester_ids

    def _run(self, command: BotCommand) -> str:
        target = self._target
        if command == "help":
            return build_help_reply(target)

        clients = self._connect()
        if command == "up":
            scale_deployment(clients.apps, namespace=target.namespace, name=target.name, replicas=1)
            return self._up_reply(clients)
        if command == "down":
            scale_deployment(clients.apps, namespace=target.namespace, name=target.name, replicas=0)
            return DONE_REPLY
        if command == "toggle":
            result = toggle_deployment(clients.apps, namespace=target.namespace, name=target.name)
            previous = "unset" if result.previous_replicas is None else result.previous_replicas
            return f"{DONE_REPLY} Replicas: {previous} -> {result.replicas}"
        if command == "status":
            replicas = read_replicas(clients.apps, namespace=target.namespace, name=target.name)
            shown = "unset" if replicas is None else replicas
            return f"{target.name} replicas: {shown}"

        raise RuntimeError(f"Unhandled command: {command}")

    def _connect(self) -> ClusterClients:
        target = self._target
        credentials = self._credential_resolver.resolve(
            cluster=target.cluster,
            zone=target.zone,
            project_id=target.project_id,
        )
        return self._client_factory(credentials, context_name=context_name_for(target.cluster))

    def _up_reply(self, clients: ClusterClients) -> str:
        if not self._report_node_ips:
            return DONE_REPLY
        try:
            ips = list_external_ips(clients.core)
        except Exception:
            # The deployment is already scaled; report success with a note.
            LOGGER.warning("node IP listing failed after scale-up", exc_info=True)
            return f"{DONE_REPLY}\n{IP_LISTING_FAILED_NOTE}"
        if not ips:
            return f"{DONE_REPLY}\n{NO_EXTERNAL_IPS_NOTE}"
        return "\n".join([DONE_REPLY, "IP addresses:", *ips])

    def _failure_reply(self, command: BotCommand, exc: Exception) -> str:
        if isinstance(exc, ScalebotError | ValueError):
            reason = str(exc)
        else:
            reason = f"unexpected error ({type(exc).__name__})"
        return f"Failed to {COMMAND_VERBS[command]} {self._target.name}: {reason}"

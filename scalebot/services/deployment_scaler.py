from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from kubernetes.client.exceptions import ApiException

from scalebot.errors import ScalebotError

LOGGER = logging.getLogger("scalebot.deployments")


class ScaleOperationError(ScalebotError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DeploymentNotFoundError(ScaleOperationError):
    pass


@dataclass(frozen=True)
class ScaleResult:
    namespace: str
    name: str
    previous_replicas: int | None
    replicas: int


def read_replicas(apps_api: Any, *, namespace: str, name: str) -> int | None:
    deployment = _read_deployment(apps_api, namespace=namespace, name=name)
    return _spec_replicas(deployment)


def scale_deployment(apps_api: Any, *, namespace: str, name: str, replicas: int) -> ScaleResult:
    """Set `spec.replicas` on a Deployment with a read-modify-write.

    The object that was read is written back whole, without a resourceVersion
    precondition: a concurrent change between the read and the replace is
    overwritten (last write wins).
    """
    if replicas < 0:
        raise ValueError(f"replicas must be >= 0, got {replicas}")

    deployment = _read_deployment(apps_api, namespace=namespace, name=name)
    LOGGER.info("read deployment namespace=%s name=%s", namespace, name)
    previous = _spec_replicas(deployment)

    deployment.spec.replicas = replicas
    # An empty resourceVersion makes the replace unconditional.
    if deployment.metadata is not None:
        deployment.metadata.resource_version = None

    try:
        apps_api.replace_namespaced_deployment(name=name, namespace=namespace, body=deployment)
    except ApiException as exc:
        raise ScaleOperationError(
            f"Could not update deployment {namespace}/{name}: {_describe(exc)}",
            status_code=exc.status,
        ) from exc

    LOGGER.info(
        "replaced deployment namespace=%s name=%s replicas=%s previous=%s",
        namespace,
        name,
        replicas,
        previous,
    )
    return ScaleResult(
        namespace=namespace,
        name=name,
        previous_replicas=previous,
        replicas=replicas,
    )


def toggle_deployment(apps_api: Any, *, namespace: str, name: str) -> ScaleResult:
    """Flip a stopped Deployment to 1 replica and a running one to 0."""
    current = read_replicas(apps_api, namespace=namespace, name=name)
    target = 0 if current is not None and current >= 1 else 1
    return scale_deployment(apps_api, namespace=namespace, name=name, replicas=target)


def _read_deployment(apps_api: Any, *, namespace: str, name: str) -> Any:
    try:
        deployment = apps_api.read_namespaced_deployment(name=name, namespace=namespace)
    except ApiException as exc:
        if exc.status == 404:
            raise DeploymentNotFoundError(
                f"Deployment {namespace}/{name} not found.",
                status_code=404,
            ) from exc
        raise ScaleOperationError(
            f"Could not read deployment {namespace}/{name}: {_describe(exc)}",
            status_code=exc.status,
        ) from exc
    if deployment.spec is None:
        raise ScaleOperationError(f"Deployment {namespace}/{name} has no spec.")
    return deployment


def _spec_replicas(deployment: Any) -> int | None:
    replicas = deployment.spec.replicas
    return int(replicas) if replicas is not None else None


def _describe(exc: ApiException) -> str:
    if exc.status is None:
        return str(exc.reason or exc)
    return f"{exc.status} {exc.reason or ''}".strip()

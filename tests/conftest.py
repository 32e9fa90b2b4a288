from __future__ import annotations

import copy
from collections.abc import Iterator
from typing import Any

import pytest
from kubernetes import client as k8s_client
from kubernetes.client.exceptions import ApiException

from scalebot.dependencies import reset_cached_dependencies
from scalebot.services.cluster_client import ClusterClients
from scalebot.services.gke_credentials import ClusterCredentials

_SCALEBOT_ENV_NAMES: tuple[str, ...] = (
    "BOT_TOKEN",
    "NODE_ENV",
    "FUNCTION_TARGET",
    "PORT",
)


def make_deployment(
    *,
    name: str = "factorio",
    namespace: str = "default",
    replicas: int | None = 1,
    image: str = "factoriotools/factorio:stable",
) -> k8s_client.V1Deployment:
    labels = {"app": name}
    return k8s_client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=k8s_client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels,
            resource_version="100",
        ),
        spec=k8s_client.V1DeploymentSpec(
            replicas=replicas,
            selector=k8s_client.V1LabelSelector(match_labels=labels),
            template=k8s_client.V1PodTemplateSpec(
                metadata=k8s_client.V1ObjectMeta(labels=labels),
                spec=k8s_client.V1PodSpec(
                    containers=[k8s_client.V1Container(name=name, image=image)],
                ),
            ),
        ),
    )


def make_node(name: str, addresses: list[tuple[str, str]]) -> k8s_client.V1Node:
    return k8s_client.V1Node(
        metadata=k8s_client.V1ObjectMeta(name=name),
        status=k8s_client.V1NodeStatus(
            addresses=[
                k8s_client.V1NodeAddress(type=address_type, address=address)
                for address_type, address in addresses
            ],
        ),
    )


class FakeAppsApi:
    """In-memory stand-in for AppsV1Api read/replace of Deployments."""

    def __init__(self, *deployments: k8s_client.V1Deployment) -> None:
        self.store: dict[tuple[str, str], k8s_client.V1Deployment] = {}
        self.reads = 0
        self.replaced_bodies: list[k8s_client.V1Deployment] = []
        self.read_error: ApiException | None = None
        self.replace_error: ApiException | None = None
        for deployment in deployments:
            self.store[(deployment.metadata.namespace, deployment.metadata.name)] = deployment

    def read_namespaced_deployment(self, name: str, namespace: str) -> k8s_client.V1Deployment:
        self.reads += 1
        if self.read_error is not None:
            raise self.read_error
        stored = self.store.get((namespace, name))
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(stored)

    def replace_namespaced_deployment(
        self,
        name: str,
        namespace: str,
        body: k8s_client.V1Deployment,
    ) -> k8s_client.V1Deployment:
        if self.replace_error is not None:
            raise self.replace_error
        if (namespace, name) not in self.store:
            raise ApiException(status=404, reason="Not Found")
        self.replaced_bodies.append(copy.deepcopy(body))
        stored = copy.deepcopy(body)
        previous_version = int(self.store[(namespace, name)].metadata.resource_version or "0")
        stored.metadata.resource_version = str(previous_version + 1)
        self.store[(namespace, name)] = stored
        return copy.deepcopy(stored)


class FakeCoreApi:
    def __init__(self, nodes: list[k8s_client.V1Node] | None = None) -> None:
        self.nodes = nodes or []
        self.error: ApiException | None = None

    def list_node(self) -> k8s_client.V1NodeList:
        if self.error is not None:
            raise self.error
        return k8s_client.V1NodeList(items=list(self.nodes))


class FakeCredentialResolver:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self.error = error

    def resolve(
        self,
        *,
        cluster: str,
        zone: str,
        project_id: str | None = None,
    ) -> ClusterCredentials:
        self.calls.append({"cluster": cluster, "zone": zone, "project_id": project_id})
        if self.error is not None:
            raise self.error
        return ClusterCredentials(
            endpoint="203.0.113.10",
            ca_certificate="Q0EtREFUQQ==",
            token="test-access-token",
        )


class FakeMessenger:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.sent: list[tuple[int, str]] = []
        self.error = error

    def send_message(self, chat_id: int, text: str) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        self.sent.append((chat_id, text))
        return {"message_id": len(self.sent)}


class FakeClusterClientFactory:
    def __init__(self, apps: FakeAppsApi, core: FakeCoreApi) -> None:
        self.apps = apps
        self.core = core
        self.calls: list[tuple[ClusterCredentials, str]] = []

    def __call__(self, credentials: ClusterCredentials, *, context_name: str) -> ClusterClients:
        self.calls.append((credentials, context_name))
        return ClusterClients(
            apps=self.apps,  # pyright: ignore[reportArgumentType]
            core=self.core,  # pyright: ignore[reportArgumentType]
            context_name=context_name,
        )


@pytest.fixture(autouse=True)
def _isolated_scalebot_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:  # pyright: ignore[reportUnusedFunction]
    for name in _SCALEBOT_ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SCALEBOT_LOG_DIR", "")
    reset_cached_dependencies()
    yield
    reset_cached_dependencies()


@pytest.fixture
def apps_api() -> FakeAppsApi:
    return FakeAppsApi(make_deployment(replicas=1))


@pytest.fixture
def core_api() -> FakeCoreApi:
    return FakeCoreApi(
        [
            make_node("gk3-pool-1", [("InternalIP", "10.0.0.2"), ("ExternalIP", "34.89.1.10")]),
            make_node("gk3-pool-2", [("InternalIP", "10.0.0.3"), ("ExternalIP", "34.89.1.11")]),
        ]
    )

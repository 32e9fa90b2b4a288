from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from scalebot.services.gke_credentials import ClusterCredentials


@dataclass(frozen=True)
class ClusterClients:
    apps: k8s_client.AppsV1Api
    core: k8s_client.CoreV1Api
    context_name: str


def context_name_for(cluster: str) -> str:
    return f"gke_{cluster}"


def build_kubeconfig(credentials: ClusterCredentials, *, context_name: str) -> dict[str, Any]:
    """Single-context kubeconfig authenticated only by the bearer token."""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": context_name,
                "cluster": {
                    "server": f"https://{credentials.endpoint}",
                    "certificate-authority-data": credentials.ca_certificate,
                },
            }
        ],
        "users": [{"name": context_name, "user": {"token": credentials.token}}],
        "contexts": [
            {
                "name": context_name,
                "context": {"cluster": context_name, "user": context_name},
            }
        ],
        "current-context": context_name,
        "preferences": {},
    }


def build_cluster_clients(credentials: ClusterCredentials, *, context_name: str) -> ClusterClients:
    # persist_config=False keeps the process-wide default configuration untouched.
    api_client = k8s_config.new_client_from_config_dict(
        build_kubeconfig(credentials, context_name=context_name),
        context=context_name,
        persist_config=False,
    )
    return ClusterClients(
        apps=k8s_client.AppsV1Api(api_client),
        core=k8s_client.CoreV1Api(api_client),
        context_name=context_name,
    )

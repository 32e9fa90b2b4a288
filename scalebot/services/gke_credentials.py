"""Resolve connection parameters for a GKE cluster.

This is the programmatic equivalent of `gcloud container clusters
get-credentials`: application default credentials provide a short-lived
access token, and the cluster manager API provides the endpoint and CA
certificate that would normally be written into `~/.kube/config`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import google.auth
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.auth.transport.requests import Request as AuthRequest
from google.cloud import container_v1

from scalebot.errors import ScalebotError

LOGGER = logging.getLogger("scalebot.gke")
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

CredentialsLoader = Callable[..., tuple[Any, str | None]]
ClusterManagerFactory = Callable[..., Any]


class CredentialResolutionError(ScalebotError):
    pass


@dataclass(frozen=True)
class ClusterCredentials:
    endpoint: str
    ca_certificate: str
    token: str = field(repr=False)


def cluster_resource_name(*, project_id: str, zone: str, cluster: str) -> str:
    return f"projects/{project_id}/locations/{zone}/clusters/{cluster}"


class GkeCredentialResolver:
    def __init__(
        self,
        *,
        credentials_loader: CredentialsLoader = google.auth.default,
        cluster_manager_factory: ClusterManagerFactory = container_v1.ClusterManagerClient,
    ) -> None:
        self._credentials_loader = credentials_loader
        self._cluster_manager_factory = cluster_manager_factory

    def resolve(
        self,
        *,
        cluster: str,
        zone: str,
        project_id: str | None = None,
    ) -> ClusterCredentials:
        try:
            credentials, default_project = self._credentials_loader(scopes=[CLOUD_PLATFORM_SCOPE])
        except auth_exceptions.GoogleAuthError as exc:
            raise CredentialResolutionError(
                f"Could not load Google application default credentials: {exc}"
            ) from exc

        project = project_id or default_project
        if not project:
            raise CredentialResolutionError(
                "No GCP project configured and none found in the application default credentials."
            )

        try:
            credentials.refresh(AuthRequest())
        except auth_exceptions.GoogleAuthError as exc:
            raise CredentialResolutionError(f"Could not obtain an access token: {exc}") from exc

        token = getattr(credentials, "token", None)
        if not token:
            raise CredentialResolutionError("Credential refresh returned no access token.")

        name = cluster_resource_name(project_id=project, zone=zone, cluster=cluster)
        try:
            cluster_manager = self._cluster_manager_factory(credentials=credentials)
            response = cluster_manager.get_cluster(name=name)
        except google_exceptions.GoogleAPIError as exc:
            raise CredentialResolutionError(f"Could not read cluster {name}: {exc}") from exc

        endpoint = response.endpoint
        ca_certificate = response.master_auth.cluster_ca_certificate
        if not endpoint or not ca_certificate:
            raise CredentialResolutionError(f"Cluster {name} has no endpoint or CA certificate.")

        LOGGER.info("resolved cluster credentials name=%s endpoint=%s", name, endpoint)
        return ClusterCredentials(endpoint=endpoint, ca_certificate=ca_certificate, token=token)

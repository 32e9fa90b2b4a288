from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from kubernetes.client.exceptions import ApiException

from scalebot.errors import ScalebotError

LOGGER = logging.getLogger("scalebot.nodes")
EXTERNAL_IP_ADDRESS_TYPE = "ExternalIP"


class NodeListingError(ScalebotError):
    pass


@dataclass(frozen=True)
class NodeAddress:
    node_name: str | None
    external_ip: str | None


def list_node_addresses(core_api: Any) -> list[NodeAddress]:
    try:
        nodes = core_api.list_node()
    except ApiException as exc:
        raise NodeListingError(f"Could not list cluster nodes: {exc.status} {exc.reason}") from exc

    return [
        NodeAddress(
            node_name=node.metadata.name if node.metadata is not None else None,
            external_ip=_first_external_ip(node),
        )
        for node in nodes.items or []
    ]


def list_external_ips(core_api: Any) -> list[str]:
    ips: list[str] = []
    for address in list_node_addresses(core_api):
        if address.external_ip is None:
            LOGGER.warning("node has no external IP; skipping node=%s", address.node_name)
            continue
        ips.append(address.external_ip)
    return ips


def _first_external_ip(node: Any) -> str | None:
    status = node.status
    if status is None:
        return None
    for address in status.addresses or []:
        if address.type == EXTERNAL_IP_ADDRESS_TYPE and address.address:
            return address.address
    return None

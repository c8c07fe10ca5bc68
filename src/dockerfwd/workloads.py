"""Docker side of the forwarder: container addresses and lifecycle events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional

from docker import DockerClient, from_env
from docker.errors import DockerException
from requests.exceptions import RequestException

from dockerfwd.errors import WorkloadQueryError
from dockerfwd.rules import IPVersion

STARTED_ACTIONS = ("start", "restart")
STOPPED_ACTIONS = ("die", "destroy")


@dataclass
class WorkloadAddresses:
    ipv4: List[str] = field(default_factory=list)
    ipv6: List[str] = field(default_factory=list)

    def for_version(self, ip_version: IPVersion) -> List[str]:
        return self.ipv6 if ip_version is IPVersion.IPV6 else self.ipv4


class DockerWorkloads:
    def __init__(self, client: Optional[DockerClient] = None):
        self.client = client if client is not None else from_env()

    def reconnect(self):
        self.client = from_env()

    def get_addresses(self, container: str) -> WorkloadAddresses:
        """Addresses currently assigned to the container on all its networks."""
        try:
            attrs = self.client.containers.get(container).attrs
        except (DockerException, RequestException) as e:
            raise WorkloadQueryError(container, e) from e

        addresses = WorkloadAddresses()
        networks = attrs.get("NetworkSettings", {}).get("Networks", {}) or {}
        for network in networks.values():
            ip4 = network.get("IPAddress")
            ip6 = network.get("GlobalIPv6Address")
            if ip4 and ip4 not in addresses.ipv4:
                addresses.ipv4.append(ip4)
            if ip6 and ip6 not in addresses.ipv6:
                addresses.ipv6.append(ip6)
        return addresses

    def events(self, containers: Iterable[str] = ()) -> Iterator[dict]:
        filters = {"type": ["container"], "event": [*STARTED_ACTIONS, *STOPPED_ACTIONS]}
        names = list(containers)
        if names:
            filters["container"] = names
        return self.client.events(decode=True, filters=filters)

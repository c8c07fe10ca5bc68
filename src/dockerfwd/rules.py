"""Translation of port mappings into iptables nat rules.

Every container owns one chain per direction and IP family:

  dst  hooked from PREROUTING (and OUTPUT when loopback forwarding is on) with
       ``-m addrtype --dst-type LOCAL``; holds one DNAT rule per host port.
  src  hooked from POSTROUTING for traffic leaving loopback; holds MASQUERADE
       rules so replies to host-local clients come back through the host.

Nothing here touches the system, the functions only build argument lists.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Sequence, Tuple

from dockerfwd.config import PortMapping

CHAIN_PREFIX = "DFWD"
# xtables keeps chain names in 29 bytes including the terminating NUL
MAX_CHAIN_NAME = 28


class IPVersion(Enum):
    IPV4 = 4
    IPV6 = 6

    def __str__(self) -> str:
        return f"ipv{self.value}"


class Direction(Enum):
    DST = "dst"
    SRC = "src"

    def __str__(self) -> str:
        return self.value


LOOPBACK_NETS: Dict[IPVersion, str] = {
    IPVersion.IPV4: "127.0.0.0/8",
    IPVersion.IPV6: "::1",
}

ENTRY_CHAINS: Dict[Direction, Tuple[str, ...]] = {
    Direction.DST: ("PREROUTING", "OUTPUT"),
    Direction.SRC: ("POSTROUTING",),
}


def directions(loopback: bool) -> Tuple[Direction, ...]:
    return (Direction.DST, Direction.SRC) if loopback else (Direction.DST,)


def entry_chains(direction: Direction, loopback: bool) -> Tuple[str, ...]:
    """Built-in chains the container chain is hooked into."""
    if direction is Direction.DST and not loopback:
        return ("PREROUTING",)
    return ENTRY_CHAINS[direction]


def chain_name(container: str, direction: Direction) -> str:
    """Name of the custom chain for a container.

    Long container names are replaced by a digest. The digest form uses a
    different separator after the prefix so it can never equal a readable name.
    """
    name = f"{CHAIN_PREFIX}-{container}-{direction.value}"
    if len(name) <= MAX_CHAIN_NAME:
        return name
    digest = hashlib.sha256(container.encode("utf-8")).hexdigest()[:16]
    return f"{CHAIN_PREFIX}_{digest}-{direction.value}"


def chain_hook_rule(container: str, ip_version: IPVersion, direction: Direction) -> List[str]:
    chain = chain_name(container, direction)
    if direction is Direction.DST:
        return ["-m", "addrtype", "--dst-type", "LOCAL", "-j", chain]
    loopback = LOOPBACK_NETS[ip_version]
    return ["-s", loopback, "!", "-d", loopback, "-j", chain]


def format_address(address: str, port: int, ip_version: IPVersion) -> str:
    if ip_version is IPVersion.IPV6:
        return f"[{address}]:{port}"
    return f"{address}:{port}"


def port_rule(protocol: str, address: str, container_port: int, host_port: str,
              ip_version: IPVersion, direction: Direction) -> List[str]:
    if direction is Direction.DST:
        return [
            "-p", protocol,
            "--dport", str(host_port),
            "-j", "DNAT",
            "--to-destination", format_address(address, container_port, ip_version),
        ]
    return [
        "-p", protocol,
        "-s", LOOPBACK_NETS[ip_version],
        "-d", address,
        "--dport", str(container_port),
        "-j", "MASQUERADE",
    ]


@dataclass
class ChainPlan:
    chain: str
    direction: Direction
    # (entry chain, hook rule)
    hooks: List[Tuple[str, List[str]]] = field(default_factory=list)
    rules: List[List[str]] = field(default_factory=list)


def build_chain_plans(container: str, mappings: Sequence[PortMapping], addresses: Sequence[str],
                      ip_version: IPVersion, loopback: bool = True) -> List[ChainPlan]:
    """Ordered rule set for one container and one IP family.

    Rules follow config order, then address order. Returns an empty list
    when the container has no address in this family.
    """
    if not addresses:
        return []

    plans = []
    for direction in directions(loopback):
        plan = ChainPlan(chain=chain_name(container, direction), direction=direction)
        hook = chain_hook_rule(container, ip_version, direction)
        plan.hooks = [(entry, hook) for entry in entry_chains(direction, loopback)]
        for mapping in mappings:
            for host_port, container_port in mapping.ports.items():
                for address in addresses:
                    rule = port_rule(mapping.protocol, address, container_port, host_port, ip_version, direction)
                    # src rules ignore the host port, so two host ports on one container port repeat
                    if rule not in plan.rules:
                        plan.rules.append(rule)
        plans.append(plan)
    return plans

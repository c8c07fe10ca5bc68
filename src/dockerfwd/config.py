"""Forwarding policy: which host ports go to which container ports.

The YAML file maps container names to a list of records. Each record holds a
protocol and inlined ``host port: container port`` pairs::

    web:
    - protocol: tcp
      "80": 8080
      "443": 8443
    - protocol: udp
      "53": 53
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from dockerfwd.errors import InvalidConfigError

PROTOCOLS = {"tcp", "udp", "sctp"}
MAX_PORT = 65535


def _is_port_string(value: Any) -> bool:
    return isinstance(value, str) and value.isascii() and value.isdigit() and int(value) <= MAX_PORT


def _is_port_number(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= MAX_PORT


@dataclass
class PortMapping:
    protocol: str
    ports: Dict[str, int] = field(default_factory=dict)
    # Empty when the mapping came from --ports rather than the config file
    name: str = ""


@dataclass
class ForwardingConfig:
    forwards: Dict[str, List[PortMapping]] = field(default_factory=dict)

    def __contains__(self, container: object) -> bool:
        return container in self.forwards

    @property
    def containers(self) -> List[str]:
        return list(self.forwards)

    def mappings(self, container: str) -> List[PortMapping]:
        return self.forwards[container]

    def validate(self) -> None:
        """Check the config for consistency, raising on the first problem.

        Every record needs a known protocol and at least one port pair, every
        port must be a valid port number, and a host port can be forwarded to
        only one container per protocol.
        """
        seen: Dict[Tuple[str, int], str] = {}
        for container, mappings in self.forwards.items():
            for mapping in mappings:
                if mapping.protocol not in PROTOCOLS:
                    raise InvalidConfigError(
                        f"Invalid protocol {mapping.protocol!r} provided for container {container}")
                if not mapping.ports:
                    raise InvalidConfigError(f"No ports provided for container {container}")
                for host_port, container_port in mapping.ports.items():
                    if not _is_port_string(host_port):
                        raise InvalidConfigError(f"Invalid port {host_port} provided for container {container}")
                    if not _is_port_number(container_port):
                        raise InvalidConfigError(
                            f"Invalid container port {container_port} provided for container {container}")
                    key = (mapping.protocol, int(host_port))
                    if key in seen:
                        raise InvalidConfigError(
                            f"Port {mapping.protocol}:{host_port} of container {container} "
                            f"has already been mapped to container {seen[key]}")
                    seen[key] = container

    def is_valid(self) -> Tuple[bool, Optional[InvalidConfigError]]:
        try:
            self.validate()
        except InvalidConfigError as e:
            return False, e
        return True, None


def config_from_dict(data: Any) -> ForwardingConfig:
    """Build a config from the structure produced by loading the YAML file."""
    if not isinstance(data, dict):
        raise InvalidConfigError("Config must map container names to lists of port mappings")

    config = ForwardingConfig()
    for container, records in data.items():
        container = str(container)
        if not isinstance(records, list):
            raise InvalidConfigError(f"Port mappings for container {container} must be a list")
        mappings = []
        for record in records:
            if not isinstance(record, dict):
                raise InvalidConfigError(f"Port mapping for container {container} must be a mapping")
            protocol = record.get("protocol")
            if not isinstance(protocol, str):
                raise InvalidConfigError(f"No protocol provided for container {container}")
            mapping = PortMapping(protocol=protocol.strip().lower(), name=str(record.get("name") or container))
            for key, value in record.items():
                if key in ("protocol", "name"):
                    continue
                if not _is_port_number(value):
                    raise InvalidConfigError(f"Invalid container port {value!r} provided for container {container}")
                mapping.ports[str(key)] = value
            mappings.append(mapping)
        config.forwards[container] = mappings
    return config


def load_yaml_config(path: str) -> ForwardingConfig:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise InvalidConfigError(f"Unable to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"Config file {path} is not valid YAML: {e}") from e
    return config_from_dict(data or {})


def parse_port_list(container: str, port_list: str) -> ForwardingConfig:
    """Build a single-container config from ``protocol://host:container,...``."""
    protocol, sep, pairs = port_list.partition("://")
    if not sep or not protocol:
        raise InvalidConfigError("Ports must be given as protocol://HostPort:ContainerPort,...")
    if not pairs:
        raise InvalidConfigError("No ports provided")

    mapping = PortMapping(protocol=protocol.strip().lower())
    for pair in pairs.split(","):
        split = pair.split(":")
        if len(split) != 2:
            raise InvalidConfigError(f"Invalid port map {pair!r}")
        host_port, container_port = (p.strip() for p in split)
        for port in (host_port, container_port):
            if not _is_port_string(port):
                raise InvalidConfigError(f"Port provided is not a valid number {port!r}")
        mapping.ports[host_port] = int(container_port)
    return ForwardingConfig(forwards={container: [mapping]})

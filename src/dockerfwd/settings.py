"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass


def env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    log_level: str = "INFO"
    enable_ipv4: bool = True
    enable_ipv6: bool = True
    # SRC chains + OUTPUT hooks, so host-local clients reach forwarded ports
    enable_loopback: bool = True
    dry_run: bool = False
    clean_on_exit: bool = False
    event_backoff: float = 2.0
    config_file: str = "config.yaml"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            enable_ipv4=env_bool("ENABLE_IPV4", True),
            enable_ipv6=env_bool("ENABLE_IPV6", True),
            enable_loopback=env_bool("ENABLE_LOOPBACK", True),
            dry_run=env_bool("DRY_RUN", False),
            clean_on_exit=env_bool("CLEAN_ON_EXIT", False),
            event_backoff=float(os.getenv("EVENT_BACKOFF_SECS", "2")),
            config_file=os.getenv("CONFIG_FILE", "config.yaml"),
        )

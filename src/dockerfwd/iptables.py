"""iptables / ip6tables wrapper for the nat table.

Mutations report whether they changed anything through :class:`Outcome`, so
callers can tell "already there" and "already gone" apart from real failures.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from enum import Enum
from typing import Dict, List, Optional

from dockerfwd.errors import BackendUnavailableError, RuleApplyError
from dockerfwd.rules import IPVersion
from dockerfwd.settings import Settings

NAT_TABLE = "nat"

MISSING_MARKERS = ("No chain/target/match", "Couldn't load target")


class Outcome(Enum):
    APPLIED = "applied"
    EXISTS = "exists"
    MISSING = "missing"


class Iptables:
    def __init__(self, ip_version: IPVersion = IPVersion.IPV4, table: str = NAT_TABLE, dry_run: bool = False):
        self.ip_version = ip_version
        self.binary = "ip6tables" if ip_version is IPVersion.IPV6 else "iptables"
        self.table = table
        self.dry_run = dry_run
        if shutil.which(self.binary) is None:
            raise BackendUnavailableError(f"{self.binary} not found in PATH")

    def _command(self, args: List[str]) -> List[str]:
        # -w waits for the xtables lock instead of failing when another process holds it
        return [self.binary, "-w", "-t", self.table, *args]

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(self._command(args), stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise BackendUnavailableError(f"Unable to run {self.binary}: {e}") from e

    def _query(self, args: List[str]) -> bool:
        result = self._run(args)
        if result.returncode == 0:
            return True
        # 1: no such rule/chain; 2 is also used for usage errors, so only a missing target counts
        stderr = result.stderr.decode(errors="ignore").strip()
        if result.returncode == 1:
            return False
        if result.returncode == 2 and any(marker in stderr for marker in MISSING_MARKERS):
            return False
        raise BackendUnavailableError(
            f"{' '.join(self._command(args))} exited with {result.returncode}: "
            f"{stderr}")

    def _mutate(self, operation: str, chain: str, args: List[str], rule: Optional[List[str]] = None) -> Outcome:
        command = " ".join(self._command(args))
        if self.dry_run:
            logging.info(f"[DRY-RUN] {command}")
            return Outcome.APPLIED
        logging.info(f"Running command: {command}")
        result = self._run(args)
        if result.returncode != 0:
            raise RuleApplyError(operation, chain, rule, result.stderr.decode(errors="ignore").strip())
        return Outcome.APPLIED

    def chain_exists(self, chain: str) -> bool:
        return self._query(["-S", chain])

    def rule_exists(self, chain: str, rule: List[str]) -> bool:
        return self._query(["-C", chain, *rule])

    def new_chain(self, chain: str) -> Outcome:
        if self.chain_exists(chain):
            return Outcome.EXISTS
        return self._mutate("new chain", chain, ["-N", chain])

    def insert(self, chain: str, position: int, rule: List[str]) -> Outcome:
        if self.rule_exists(chain, rule):
            return Outcome.EXISTS
        return self._mutate("insert", chain, ["-I", chain, str(position), *rule], rule)

    def append(self, chain: str, rule: List[str]) -> Outcome:
        return self._mutate("append", chain, ["-A", chain, *rule], rule)

    def delete(self, chain: str, rule: List[str]) -> Outcome:
        if not self.rule_exists(chain, rule):
            return Outcome.MISSING
        return self._mutate("delete", chain, ["-D", chain, *rule], rule)

    def clear_chain(self, chain: str) -> Outcome:
        if not self.chain_exists(chain):
            return Outcome.MISSING
        return self._mutate("clear chain", chain, ["-F", chain])

    def delete_chain(self, chain: str) -> Outcome:
        if not self.chain_exists(chain):
            return Outcome.MISSING
        return self._mutate("delete chain", chain, ["-X", chain])


def open_backends(settings: Settings) -> Dict[IPVersion, Iptables]:
    """One backend per enabled IP family."""
    backends: Dict[IPVersion, Iptables] = {}
    if settings.enable_ipv4:
        backends[IPVersion.IPV4] = Iptables(IPVersion.IPV4, dry_run=settings.dry_run)
    if settings.enable_ipv6:
        backends[IPVersion.IPV6] = Iptables(IPVersion.IPV6, dry_run=settings.dry_run)
    if not backends:
        raise BackendUnavailableError("Both ENABLE_IPV4 and ENABLE_IPV6 are disabled")
    return backends

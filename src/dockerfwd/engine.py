"""Applies and removes the forwarding rules of configured containers."""

from __future__ import annotations

import logging
from typing import Callable, Dict

from dockerfwd.config import ForwardingConfig
from dockerfwd.errors import ForwardingError, PartialFailureError, UnknownWorkloadError
from dockerfwd.iptables import Iptables, Outcome
from dockerfwd.rules import ENTRY_CHAINS, ChainPlan, Direction, IPVersion, build_chain_plans, chain_hook_rule, chain_name
from dockerfwd.workloads import DockerWorkloads


class ForwardingEngine:
    """Installs or tears down the nat chains of one or all configured containers.

    Rule state lives only in the kernel tables. Forwarding an already
    forwarded container and reversing an absent one are both safe, so the
    engine can be driven repeatedly by lifecycle events without bookkeeping.
    """

    def __init__(self, config: ForwardingConfig, workloads: DockerWorkloads,
                 backends: Dict[IPVersion, Iptables], loopback: bool = True):
        self.config = config
        self.workloads = workloads
        self.backends = backends
        self.loopback = loopback

    def forward_all(self):
        self._for_each("forward ports", self.forward_workload)

    def reverse_all(self):
        self._for_each("remove forwarding of ports", self.reverse_workload)

    def _for_each(self, action: str, operation: Callable[[str], None]):
        failures: Dict[str, Exception] = {}
        for container in self.config.containers:
            try:
                operation(container)
            except ForwardingError as e:
                logging.error(f"Unable to {action} for container {container}: {e}")
                failures[container] = e
        if failures:
            raise PartialFailureError(action, failures)

    def _check_configured(self, container: str):
        if container not in self.config:
            raise UnknownWorkloadError(container)

    def forward_workload(self, container: str):
        self._check_configured(container)
        addresses = self.workloads.get_addresses(container)
        mappings = self.config.mappings(container)

        forwarded = []
        for ip_version, backend in self.backends.items():
            plans = build_chain_plans(container, mappings, addresses.for_version(ip_version),
                                      ip_version, self.loopback)
            if not plans:
                # The family may still hold chains from an earlier address of the container
                logging.debug(f"Container {container} has no {ip_version} address, removing its {ip_version} rules")
                self._remove_family(container, ip_version, backend)
                continue
            for plan in plans:
                self._apply_plan(backend, plan)
            forwarded.append(str(ip_version))

        if forwarded:
            logging.info(f"Forwarded ports for container {container} ({', '.join(forwarded)})")
        else:
            logging.warning(f"Container {container} has no network address, nothing forwarded")

    def _apply_plan(self, backend: Iptables, plan: ChainPlan):
        if backend.new_chain(plan.chain) is Outcome.EXISTS:
            # Drop rules pointing at addresses from a previous run of the container
            logging.debug(f"Chain {plan.chain} already exists, flushing it")
            backend.clear_chain(plan.chain)

        for entry, hook in plan.hooks:
            if backend.insert(entry, 1, hook) is Outcome.EXISTS:
                logging.debug(f"Hook from {entry} to {plan.chain} already exists")

        for rule in plan.rules:
            backend.append(plan.chain, rule)

    def reverse_workload(self, container: str):
        self._check_configured(container)
        for ip_version, backend in self.backends.items():
            self._remove_family(container, ip_version, backend)
        logging.info(f"Removed port forwarding for container {container}")

    def _remove_family(self, container: str, ip_version: IPVersion, backend: Iptables):
        # Every direction and entry chain, whatever the loopback setting was when forwarding
        for direction in Direction:
            chain = chain_name(container, direction)
            hook = chain_hook_rule(container, ip_version, direction)
            for entry in ENTRY_CHAINS[direction]:
                if backend.delete(entry, hook) is Outcome.MISSING:
                    logging.debug(f"No hook from {entry} to {chain} for {ip_version}")
            # A chain can only be deleted once it is empty and unreferenced
            backend.clear_chain(chain)
            if backend.delete_chain(chain) is Outcome.MISSING:
                logging.debug(f"Chain {chain} does not exist for {ip_version}")

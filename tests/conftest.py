"""In-memory stand-ins for iptables and the Docker API."""

import copy

import pytest
from docker.errors import DockerException

from dockerfwd.config import ForwardingConfig, PortMapping
from dockerfwd.errors import RuleApplyError, WorkloadQueryError
from dockerfwd.iptables import Outcome
from dockerfwd.rules import IPVersion
from dockerfwd.workloads import WorkloadAddresses

BUILTIN_CHAINS = ("PREROUTING", "INPUT", "OUTPUT", "POSTROUTING")


def jump_target(rule):
    if "-j" not in rule:
        return None
    return rule[rule.index("-j") + 1]


class MemoryIptables:
    """nat table kept in a dict, with the same Outcome semantics as Iptables.

    ``fail_on(operation, chain, rule)`` returning True makes that mutation fail.
    """

    def __init__(self, ip_version=IPVersion.IPV4, fail_on=None):
        self.ip_version = ip_version
        self.chains = {name: [] for name in BUILTIN_CHAINS}
        self.calls = []
        self.fail_on = fail_on

    def _record(self, operation, chain, rule=None):
        if self.fail_on is not None and self.fail_on(operation, chain, rule):
            raise RuleApplyError(operation, chain, rule, "simulated failure")
        self.calls.append((operation, chain, list(rule or [])))

    def _require_chain(self, operation, chain, rule=None):
        if chain not in self.chains:
            raise RuleApplyError(operation, chain, rule, "No chain/target/match by that name.")

    def chain_exists(self, chain):
        return chain in self.chains

    def rule_exists(self, chain, rule):
        return chain in self.chains and list(rule) in self.chains[chain]

    def new_chain(self, chain):
        if self.chain_exists(chain):
            return Outcome.EXISTS
        self._record("new chain", chain)
        self.chains[chain] = []
        return Outcome.APPLIED

    def insert(self, chain, position, rule):
        self._require_chain("insert", chain, rule)
        if self.rule_exists(chain, rule):
            return Outcome.EXISTS
        target = jump_target(rule)
        if target not in (None, "DNAT", "MASQUERADE") and target not in self.chains:
            raise RuleApplyError("insert", chain, rule, "Couldn't load target")
        self._record("insert", chain, rule)
        self.chains[chain].insert(position - 1, list(rule))
        return Outcome.APPLIED

    def append(self, chain, rule):
        self._require_chain("append", chain, rule)
        self._record("append", chain, rule)
        self.chains[chain].append(list(rule))
        return Outcome.APPLIED

    def delete(self, chain, rule):
        if not self.rule_exists(chain, rule):
            return Outcome.MISSING
        self._record("delete", chain, rule)
        self.chains[chain].remove(list(rule))
        return Outcome.APPLIED

    def clear_chain(self, chain):
        if not self.chain_exists(chain):
            return Outcome.MISSING
        self._record("clear chain", chain)
        self.chains[chain] = []
        return Outcome.APPLIED

    def delete_chain(self, chain):
        if not self.chain_exists(chain):
            return Outcome.MISSING
        for rules in self.chains.values():
            if any(jump_target(rule) == chain for rule in rules):
                raise RuleApplyError("delete chain", chain, detail="Too many links")
        if self.chains[chain]:
            raise RuleApplyError("delete chain", chain, detail="Directory not empty")
        self._record("delete chain", chain)
        del self.chains[chain]
        return Outcome.APPLIED

    def custom_chains(self):
        return [name for name in self.chains if name not in BUILTIN_CHAINS]

    def snapshot(self):
        return copy.deepcopy(self.chains)


class FakeWorkloads:
    """Docker stand-in; ``batches`` feeds successive event subscriptions."""

    def __init__(self, addresses=None, failing=()):
        self.addresses = dict(addresses or {})
        self.failing = set(failing)
        self.queries = []
        self.batches = []
        self.subscriptions = []
        self.reconnects = 0
        self.on_exhausted = None

    def get_addresses(self, container):
        self.queries.append(container)
        if container in self.failing:
            raise WorkloadQueryError(container, DockerException("connection refused"))
        return self.addresses.get(container, WorkloadAddresses())

    def events(self, containers=()):
        self.subscriptions.append(list(containers))
        if not self.batches:
            if self.on_exhausted is not None:
                self.on_exhausted()
            return iter([])
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return iter(batch)

    def reconnect(self):
        self.reconnects += 1


def container_event(name, action):
    return {
        "Type": "container",
        "Action": action,
        "status": action,
        "id": "3f2a9c1d7e4b",
        "Actor": {"ID": "3f2a9c1d7e4b", "Attributes": {"name": name, "image": "nginx:latest"}},
    }


@pytest.fixture
def backends():
    return {
        IPVersion.IPV4: MemoryIptables(IPVersion.IPV4),
        IPVersion.IPV6: MemoryIptables(IPVersion.IPV6),
    }


@pytest.fixture
def web_config():
    return ForwardingConfig(forwards={"web": [PortMapping(protocol="tcp", ports={"8080": 80}, name="web")]})


@pytest.fixture
def workloads():
    return FakeWorkloads(addresses={"web": WorkloadAddresses(ipv4=["10.0.3.5"])})

"""Exception types raised while validating, applying or removing forwarding rules."""

from __future__ import annotations

from typing import Dict, List, Optional


class ForwardingError(Exception):
    """Base class for every error raised by dockerfwd."""


class InvalidConfigError(ForwardingError):
    """The forwarding config is inconsistent or could not be read."""


class UnknownWorkloadError(ForwardingError):
    def __init__(self, container: str):
        super().__init__(f"No port rules provided for container {container}")
        self.container = container


class WorkloadQueryError(ForwardingError):
    def __init__(self, container: str, cause: Exception):
        super().__init__(f"Unable to get network state for container {container}: {cause}")
        self.container = container
        self.cause = cause


class BackendUnavailableError(ForwardingError):
    """The iptables/ip6tables binary cannot be found or executed."""


class RuleApplyError(ForwardingError):
    def __init__(self, operation: str, chain: str, rule: Optional[List[str]] = None, detail: str = ""):
        rule_text = " ".join(rule) if rule else ""
        message = f"{operation} failed on chain {chain}"
        if rule_text:
            message += f" for rule '{rule_text}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.operation = operation
        self.chain = chain
        self.rule = list(rule or [])
        self.detail = detail


class PartialFailureError(ForwardingError):
    """Raised by the *_all operations; the containers not listed were handled."""

    def __init__(self, action: str, failures: Dict[str, Exception]):
        self.action = action
        self.failures = dict(failures)
        super().__init__(f"Unable to {action} for containers {', '.join(self.failures)}")

    @property
    def failed(self) -> List[str]:
        return list(self.failures)

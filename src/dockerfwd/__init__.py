"""Docker port forwarding: host port DNAT rules kept in sync with container lifecycle."""

__version__ = "0.3.0"

"""Keeps forwarding in line with Docker container start/stop events."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from dockerfwd.engine import ForwardingEngine
from dockerfwd.errors import ForwardingError
from dockerfwd.workloads import STARTED_ACTIONS, STOPPED_ACTIONS, DockerWorkloads


class EventKind(Enum):
    STARTED = "started"
    STOPPED = "stopped"


@dataclass(frozen=True)
class LifecycleEvent:
    kind: EventKind
    container: str


def decode_event(raw: Any) -> Optional[LifecycleEvent]:
    """Turn a decoded Docker event into a LifecycleEvent, or None if it is not one.

    The stream also carries events for other objects and actions, and old
    daemons omit fields; none of that is an error.
    """
    if not isinstance(raw, dict) or raw.get("Type") != "container":
        return None

    action = raw.get("Action") or raw.get("status")
    if action in STARTED_ACTIONS:
        kind = EventKind.STARTED
    elif action in STOPPED_ACTIONS:
        kind = EventKind.STOPPED
    else:
        return None

    actor = raw.get("Actor")
    attributes = actor.get("Attributes") if isinstance(actor, dict) else None
    name = attributes.get("name") if isinstance(attributes, dict) else None
    if not isinstance(name, str) or not name:
        return None
    return LifecycleEvent(kind=kind, container=name)


class LifecycleWatcher:
    def __init__(self, engine: ForwardingEngine, workloads: DockerWorkloads, backoff: float = 2.0):
        self.engine = engine
        self.workloads = workloads
        self.backoff = backoff
        self.running = True
        self._events = None

    def handle(self, raw: Any):
        event = decode_event(raw)
        if event is None:
            logging.debug(f"Ignoring event: {raw!r}")
            return
        if event.container not in self.engine.config:
            logging.debug(f"Ignoring {event.kind.value} event for unconfigured container {event.container}")
            return

        try:
            if event.kind is EventKind.STARTED:
                logging.info(f"Container {event.container} started, forwarding ports")
                self.engine.forward_workload(event.container)
            else:
                logging.info(f"Container {event.container} stopped, removing forwarding")
                self.engine.reverse_workload(event.container)
        except ForwardingError as e:
            logging.error(f"Error handling {event.kind.value} event for container {event.container}: {e}")

    def run(self):
        """Handle events until stop() is called, resubscribing when the stream breaks."""
        logging.info("Listening for Docker events...")
        while self.running:
            try:
                self._events = self.workloads.events(self.engine.config.containers)
                for raw in self._events:
                    self.handle(raw)
                    if not self.running:
                        break
                else:
                    if self.running:
                        logging.warning("Docker event stream ended, resubscribing")
                        time.sleep(self.backoff)
            except Exception as e:
                if not self.running:
                    break
                logging.error(f"Docker connection error: {e}. Reconnecting...")
                time.sleep(self.backoff)
                try:
                    self.workloads.reconnect()
                except Exception as e:
                    logging.error(f"Unable to reconnect to Docker: {e}")

    def stop(self):
        self.running = False
        close = getattr(self._events, "close", None)
        if close is not None:
            close()

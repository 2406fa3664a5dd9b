"""Daemon discovery.

A small state machine decides whether a daemon is worth talking to::

    UNKNOWN -> PROBING_FILE -> PROBING_CONNECT -> REACHABLE
                    |                |
                    +----------------+-------------> UNREACHABLE

The file check is free, so when no socket file exists no connection is
attempted and callers pay nothing. The connect probe is a GetState bounded
by ``timeout``; its answer is kept in ``last_info`` so callers do not need
a second round trip.
"""

import logging
from enum import Enum
from typing import List, Optional

from ..core.exceptions import DaemonTimeoutError, IPCError
from .client import DaemonClient, Transport
from .protocol import StateInfoResponse

logger = logging.getLogger(__name__)


class ProbeState(str, Enum):
    UNKNOWN = "unknown"
    PROBING_FILE = "probing_file"
    PROBING_CONNECT = "probing_connect"
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class DaemonDiscovery:

    def __init__(self, transport: Transport, timeout: float):
        self.transport = transport
        self.timeout = timeout
        self.last_state = ProbeState.UNKNOWN
        self.transitions: List[ProbeState] = []
        # StateInfo from the last successful connect probe
        self.last_info: Optional[StateInfoResponse] = None

    def _enter(self, state: ProbeState) -> None:
        self.transitions.append(state)
        self.last_state = state

    def probe(self) -> ProbeState:
        """Run the state machine once and return its final state."""
        self.transitions = []
        self.last_info = None
        self._enter(ProbeState.UNKNOWN)

        self._enter(ProbeState.PROBING_FILE)
        if not self.transport.socket_exists():
            self._enter(ProbeState.UNREACHABLE)
            return self.last_state

        self._enter(ProbeState.PROBING_CONNECT)
        client = DaemonClient(self.transport, default_timeout=self.timeout)
        try:
            self.last_info = client.get_state(self.timeout)
        except DaemonTimeoutError:
            logger.debug("Daemon probe timed out after %.0fms", self.timeout * 1000)
            self._enter(ProbeState.UNREACHABLE)
            return self.last_state
        except IPCError as e:
            logger.debug("Daemon probe failed: %s", e)
            self._enter(ProbeState.UNREACHABLE)
            return self.last_state

        self._enter(ProbeState.REACHABLE)
        return self.last_state

    def is_reachable(self) -> bool:
        return self.probe() is ProbeState.REACHABLE

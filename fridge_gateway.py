"""Connection gateway between observers and the fridge state machine.

Tracks one Connection record per observer and applies a per-connection
cooldown before relaying requestToggle / requestOpen / requestClose into the
FridgeStateMachine. The cooldown is shared by all request types.

Everything runs on the event loop thread, so the cooldown check and the
timestamp update cannot interleave between requests.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from constants import (
    DEFAULT_COOLDOWN_MS,
    REASON_COOLDOWN,
    REQUEST_CLOSE,
    REQUEST_OPEN,
    REQUEST_TOGGLE,
)
from fridge_state import FridgeStateMachine, TransitionResult

log = logging.getLogger("fridge.gateway")


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class UnknownRequestError(ValueError):
    """Raised for a request type the gateway does not handle."""


@dataclass
class Connection:
    """Per-observer bookkeeping. Holds nothing but rate-limit state."""
    connection_id: str
    last_request_at: Optional[float] = None    # Monotonic ms of last accepted request


class FridgeGateway:
    """Rate-limits observer requests and dispatches them to the state machine."""

    def __init__(self, machine: FridgeStateMachine,
                 cooldown_ms: int = DEFAULT_COOLDOWN_MS,
                 clock: Callable[[], float] = monotonic_ms):
        self.machine = machine
        self.cooldown_ms = cooldown_ms
        self._clock = clock
        self.connections: dict[str, Connection] = {}
        self._dispatch: dict[str, Callable[[], TransitionResult]] = {
            REQUEST_TOGGLE: machine.toggle,
            REQUEST_OPEN: machine.open,
            REQUEST_CLOSE: machine.close,
        }

    # ---- Connection lifecycle ----

    def connect(self, connection_id: str) -> Connection:
        conn = Connection(connection_id)
        self.connections[connection_id] = conn
        log.info("Client connected: %s (%d online)", connection_id, len(self.connections))
        return conn

    def disconnect(self, connection_id: str):
        if self.connections.pop(connection_id, None) is not None:
            log.info("Client disconnected: %s (%d online)",
                     connection_id, len(self.connections))

    # ---- Requests ----

    def handle_request(self, connection_id: str, request: str) -> Optional[dict]:
        """Process one observer request.

        Returns None when the transition was accepted (the state machine's
        listeners take care of broadcasting), or a rejection payload meant for
        the requesting connection only:
          {"reason": "cooldown", "retryAfter": <ms>}
          {"reason": "already-open" | "already-closed"}
        """
        action = self._dispatch.get(request)
        if action is None:
            raise UnknownRequestError(request)

        conn = self.connections.get(connection_id)
        if conn is None:
            conn = self.connect(connection_id)

        remaining = self._cooldown_remaining(conn)
        if remaining > 0:
            log.debug("%s from %s rejected: cooldown %dms", request, connection_id, remaining)
            return {"reason": REASON_COOLDOWN, "retryAfter": remaining}

        result = action()
        if not result.accepted:
            log.debug("%s from %s rejected: %s", request, connection_id, result.reason)
            return {"reason": result.reason}
        return None

    def _cooldown_remaining(self, conn: Connection) -> int:
        """Milliseconds left in the cooldown, or 0 after stamping the request."""
        now = self._clock()
        if conn.last_request_at is not None:
            remaining = self.cooldown_ms - (now - conn.last_request_at)
            if remaining > 0:
                return max(1, math.ceil(remaining))
        conn.last_request_at = now
        return 0

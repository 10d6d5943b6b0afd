"""Fridge door state machine.

Holds the single authoritative FridgeState and is the only code allowed to
mutate it. Everything else reads immutable FridgeSnapshot copies or asks for
a transition through open() / close() / toggle().

Two states, no terminal state:
  - Closed --open()--> Open    (clicks += 1, opened_at = now)
  - Open  --close()--> Closed  (clicks += 1, total_open_ms += now - opened_at)
Same-state requests are rejected and leave the state untouched.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Annotated, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from constants import REASON_ALREADY_CLOSED, REASON_ALREADY_OPEN

log = logging.getLogger("fridge.state")

NonNegativeInt = Annotated[int, Field(strict=True, ge=0)]


def epoch_ms() -> int:
    """Wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


class FridgeSnapshot(BaseModel):
    """Immutable copy of the fridge state, as sent to observers and disk."""

    model_config = ConfigDict(
        frozen=True,
        strict=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    is_open: bool = False
    clicks: NonNegativeInt = 0
    total_open_ms: NonNegativeInt = 0
    opened_at: Optional[NonNegativeInt] = None

    def to_wire(self) -> dict:
        """camelCase dict for JSON payloads."""
        return self.model_dump(by_alias=True)


@dataclass
class FridgeState:
    """Mutable process-wide fridge record (owned by FridgeStateMachine)."""
    is_open: bool = False
    clicks: int = 0
    total_open_ms: int = 0
    opened_at: Optional[int] = None    # Epoch ms, set iff is_open


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition request."""
    accepted: bool
    snapshot: FridgeSnapshot
    reason: Optional[str] = None       # Set when rejected


ChangeListener = Callable[[FridgeSnapshot], None]


class FridgeStateMachine:
    """Server-authoritative open/closed state with click and open-time metrics."""

    def __init__(self, state: Optional[FridgeState] = None,
                 clock: Callable[[], int] = epoch_ms):
        self._state = state if state is not None else FridgeState()
        self._clock = clock
        self._listeners: list[ChangeListener] = []
        self.rejections = 0    # Rejected transitions since start (not persisted)

    @classmethod
    def from_snapshot(cls, snapshot: FridgeSnapshot,
                      clock: Callable[[], int] = epoch_ms) -> "FridgeStateMachine":
        """Restore from a persisted snapshot, repairing an inconsistent opened_at."""
        opened_at = snapshot.opened_at
        if snapshot.is_open and opened_at is None:
            opened_at = clock()
            log.warning("Restored open fridge without openedAt; counting from now (%d)",
                        opened_at)
        elif not snapshot.is_open and opened_at is not None:
            log.warning("Restored closed fridge with openedAt=%d; discarding it", opened_at)
            opened_at = None

        state = FridgeState(
            is_open=snapshot.is_open,
            clicks=snapshot.clicks,
            total_open_ms=snapshot.total_open_ms,
            opened_at=opened_at,
        )
        return cls(state, clock=clock)

    # ---- Observers ----

    def add_listener(self, listener: ChangeListener):
        """Call ``listener(snapshot)`` after every accepted transition."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ---- Queries ----

    @property
    def is_open(self) -> bool:
        return self._state.is_open

    def snapshot(self) -> FridgeSnapshot:
        s = self._state
        return FridgeSnapshot(
            is_open=s.is_open,
            clicks=s.clicks,
            total_open_ms=s.total_open_ms,
            opened_at=s.opened_at,
        )

    # ---- Transitions ----

    def open(self) -> TransitionResult:
        """Closed -> Open. Rejected with 'already-open' if already open."""
        if self._state.is_open:
            return self._reject(REASON_ALREADY_OPEN)

        self._state.is_open = True
        self._state.opened_at = self._clock()
        self._state.clicks += 1
        return self._accept()

    def close(self) -> TransitionResult:
        """Open -> Closed, adding the elapsed open time to total_open_ms."""
        if not self._state.is_open:
            return self._reject(REASON_ALREADY_CLOSED)

        if self._state.opened_at is not None:
            # Clock may have stepped backwards while open
            self._state.total_open_ms += max(0, self._clock() - self._state.opened_at)
        self._state.is_open = False
        self._state.opened_at = None
        self._state.clicks += 1
        return self._accept()

    def toggle(self) -> TransitionResult:
        """Close if open, otherwise open."""
        return self.close() if self._state.is_open else self.open()

    # ---- Internal ----

    def _reject(self, reason: str) -> TransitionResult:
        self.rejections += 1
        log.debug("Transition rejected: %s", reason)
        return TransitionResult(accepted=False, snapshot=self.snapshot(), reason=reason)

    def _accept(self) -> TransitionResult:
        snap = self.snapshot()
        log.info("Fridge %s (clicks=%d, totalOpenMs=%d)",
                 "opened" if snap.is_open else "closed", snap.clicks, snap.total_open_ms)
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                log.exception("State change listener %r failed", listener)
        return TransitionResult(accepted=True, snapshot=snap)

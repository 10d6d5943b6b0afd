"""JSON snapshot file for the fridge state.

One flat file, rewritten atomically (temp file + os.replace) on every save.
Saves are triggered three ways:
  - save_soon(): debounced after each accepted transition
  - run_periodic(): unconditional hourly save
  - flush(): final synchronous save on shutdown

Nothing here is fatal: read/write errors are logged and the in-memory state
stays the source of truth.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from constants import PERIODIC_SAVE_S, SAVE_DEBOUNCE_S
from fridge_state import FridgeSnapshot

log = logging.getLogger("fridge.store")


class SnapshotStore:
    """Loads and saves FridgeSnapshot to a single JSON file."""

    def __init__(self, path, snapshot_provider: Optional[Callable[[], FridgeSnapshot]] = None,
                 debounce_s: float = SAVE_DEBOUNCE_S):
        self.path = Path(path)
        self.debounce_s = debounce_s
        self._provider = snapshot_provider
        self._pending: Optional[asyncio.TimerHandle] = None

    def bind(self, snapshot_provider: Callable[[], FridgeSnapshot]):
        """Set where save() reads the current state from."""
        self._provider = snapshot_provider

    @property
    def save_pending(self) -> bool:
        return self._pending is not None

    # ---- Load ----

    def load(self) -> FridgeSnapshot:
        """Read the snapshot file, falling back to defaults field by field."""
        if not self.path.exists():
            log.info("No snapshot at %s, starting from defaults", self.path)
            return FridgeSnapshot()

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            log.warning("Failed to read snapshot %s: %s", self.path, e)
            return FridgeSnapshot()

        if not isinstance(raw, dict):
            log.warning("Snapshot %s is not a JSON object, using defaults", self.path)
            return FridgeSnapshot()

        snapshot = self._validate_fields(raw)
        log.info("Loaded state from %s: %s", self.path, snapshot.to_wire())
        return snapshot

    @staticmethod
    def _validate_fields(raw: dict[str, Any]) -> FridgeSnapshot:
        """Validate, dropping only the fields that fail so they take defaults."""
        try:
            return FridgeSnapshot.model_validate(raw)
        except ValidationError as e:
            bad = {err["loc"][0] for err in e.errors() if err["loc"]}
            log.warning("Invalid snapshot fields %s reset to defaults", sorted(map(str, bad)))
            cleaned = {k: v for k, v in raw.items() if k not in bad}
            return FridgeSnapshot.model_validate(cleaned)

    # ---- Save ----

    def save(self, snapshot: Optional[FridgeSnapshot] = None) -> bool:
        """Write the snapshot (or the current state) to disk. Never raises on I/O errors."""
        if snapshot is None:
            if self._provider is None:
                log.warning("save() called with no snapshot and no provider bound")
                return False
            snapshot = self._provider()

        data = json.dumps(snapshot.to_wire(), indent=2)
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            log.warning("Failed to save state to %s: %s", self.path, e)
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            return False

        log.debug("State saved to %s", self.path)
        return True

    def save_soon(self, _snapshot: Optional[FridgeSnapshot] = None):
        """Debounced save: each call restarts the quiet-period timer.

        Accepts (and ignores) a snapshot so it can be registered directly as a
        state change listener; the write always uses the state current at
        write time. Without a running event loop the save happens immediately.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.save()
            return

        if self._pending is not None:
            self._pending.cancel()
        self._pending = loop.call_later(self.debounce_s, self._debounced_save)

    def _debounced_save(self):
        self._pending = None
        self.save()

    def cancel_pending(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def flush(self) -> bool:
        """Drop any pending debounced save and write now."""
        self.cancel_pending()
        return self.save()

    async def run_periodic(self, interval_s: float = PERIODIC_SAVE_S):
        """Save unconditionally every ``interval_s`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval_s)
            log.debug("Periodic save")
            self.save()

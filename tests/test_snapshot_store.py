import asyncio
import json
from pathlib import Path

import pytest

from fridge_state import FridgeSnapshot
from snapshot_store import SnapshotStore


def _write(path: Path, data) -> None:
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")


def test_missing_file_loads_defaults(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "data.json")

    assert store.load() == FridgeSnapshot()


def test_round_trip(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "data.json")
    snap = FridgeSnapshot(is_open=True, clicks=7, total_open_ms=12345, opened_at=1_700_000_000_000)

    assert store.save(snap)

    assert store.load() == snap
    on_disk = json.loads((tmp_path / "data.json").read_text())
    assert on_disk == {"isOpen": True, "clicks": 7, "totalOpenMs": 12345,
                       "openedAt": 1_700_000_000_000}


def test_all_invalid_fields_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "data.json"
    _write(path, {"isOpen": "yes", "clicks": "NaN"})

    assert SnapshotStore(path).load().to_wire() == {
        "isOpen": False, "clicks": 0, "totalOpenMs": 0, "openedAt": None}


def test_invalid_fields_reset_individually(tmp_path: Path) -> None:
    path = tmp_path / "data.json"
    _write(path, {"isOpen": True, "clicks": 9, "totalOpenMs": -5, "openedAt": "later",
                  "extra": "ignored"})

    snap = SnapshotStore(path).load()

    assert snap.is_open is True
    assert snap.clicks == 9
    assert snap.total_open_ms == 0
    assert snap.opened_at is None


@pytest.mark.parametrize("raw", [
    '{"isOpen": false, "clicks": NaN, "totalOpenMs": Infinity, "openedAt": null}',
    '{"isOpen": false, "clicks": 1.5, "totalOpenMs": true, "openedAt": null}',
])
def test_non_finite_and_non_integer_numbers_rejected(tmp_path: Path, raw: str) -> None:
    path = tmp_path / "data.json"
    _write(path, raw)

    snap = SnapshotStore(path).load()

    assert snap.clicks == 0
    assert snap.total_open_ms == 0


@pytest.mark.parametrize("raw", ["{not json", "[1, 2, 3]", "null", ""])
def test_unparseable_file_loads_defaults(tmp_path: Path, raw: str) -> None:
    path = tmp_path / "data.json"
    _write(path, raw)

    assert SnapshotStore(path).load() == FridgeSnapshot()


def test_save_failure_is_swallowed(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    store = SnapshotStore(blocker / "data.json")

    assert store.save(FridgeSnapshot(clicks=1)) is False


def test_save_uses_provider_for_current_state(tmp_path: Path) -> None:
    current = {"snap": FridgeSnapshot(clicks=1)}
    store = SnapshotStore(tmp_path / "data.json", snapshot_provider=lambda: current["snap"])

    current["snap"] = FridgeSnapshot(clicks=2)
    store.save()

    assert store.load().clicks == 2


def test_save_without_provider_or_snapshot(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "data.json")

    assert store.save() is False
    assert not (tmp_path / "data.json").exists()


def test_save_soon_without_loop_saves_immediately(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "data.json", snapshot_provider=lambda: FridgeSnapshot(clicks=4))

    store.save_soon()

    assert store.load().clicks == 4


@pytest.mark.asyncio
async def test_save_soon_debounces_to_single_write(tmp_path: Path) -> None:
    current = {"snap": FridgeSnapshot()}
    store = SnapshotStore(tmp_path / "data.json", snapshot_provider=lambda: current["snap"],
                          debounce_s=0.3)
    writes = []
    real_save = store.save

    def counting_save(snapshot=None):
        writes.append(current["snap"].clicks)
        return real_save(snapshot)

    store.save = counting_save

    for clicks in range(1, 6):
        current["snap"] = FridgeSnapshot(clicks=clicks)
        store.save_soon()
        await asyncio.sleep(0.01)

    assert writes == []
    assert store.save_pending

    await asyncio.sleep(0.6)

    assert writes == [5]
    assert not store.save_pending
    assert store.load().clicks == 5


@pytest.mark.asyncio
async def test_flush_cancels_pending_and_writes_now(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "data.json",
                          snapshot_provider=lambda: FridgeSnapshot(clicks=8), debounce_s=10)

    store.save_soon()
    assert store.save_pending

    assert store.flush()
    assert not store.save_pending
    assert store.load().clicks == 8


@pytest.mark.asyncio
async def test_run_periodic_saves_on_interval(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "data.json",
                          snapshot_provider=lambda: FridgeSnapshot(clicks=3))

    task = asyncio.create_task(store.run_periodic(0.02))
    await asyncio.sleep(0.07)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert store.load().clicks == 3

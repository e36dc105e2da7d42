"""Tests for JSON key/value persistence."""

from __future__ import annotations

import asyncio
import json

import pytest

from custom_components.adaptive_heat_pump.storage import ExecutorKeyValueStore, JsonKeyValueStorage


def test_set_persists_atomically(tmp_path) -> None:
    path = tmp_path / "store.json"
    storage = JsonKeyValueStorage(path)

    storage.set("adaptive_accumulated_adjustment", 0.4)
    storage.set("adaptive_pi_history", [1.0, 0.5])

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload == {
        "version": 1,
        "data": {"adaptive_accumulated_adjustment": 0.4, "adaptive_pi_history": [1.0, 0.5]},
    }
    assert not (tmp_path / "store.json.tmp").exists()


def test_values_survive_reload(tmp_path) -> None:
    path = tmp_path / "nested" / "store.json"
    JsonKeyValueStorage(path).set("adaptive_control_enabled", True)

    assert JsonKeyValueStorage(path).get("adaptive_control_enabled") is True
    assert JsonKeyValueStorage(path).get("missing") is None


def test_corrupt_file_starts_fresh(tmp_path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    storage = JsonKeyValueStorage(path)

    assert storage.load() == {}
    storage.set("key", 1)
    assert JsonKeyValueStorage(path).get("key") == 1


@pytest.mark.asyncio
async def test_executor_store_delegates(tmp_path) -> None:
    calls = []

    async def _run(func, *args):
        calls.append(func.__name__)
        return func(*args)

    store = ExecutorKeyValueStore(JsonKeyValueStorage(tmp_path / "store.json"), _run)

    await store.async_set("wind_learned_alpha", 0.007)

    assert await store.async_get("wind_learned_alpha") == pytest.approx(0.007)
    assert calls == ["set", "get"]


@pytest.mark.asyncio
async def test_concurrent_writes_are_serialised(tmp_path) -> None:
    event_loop = asyncio.get_running_loop()

    async def _run(func, *args):
        return await event_loop.run_in_executor(None, func, *args)

    path = tmp_path / "store.json"
    store = ExecutorKeyValueStore(JsonKeyValueStorage(path), _run)

    await asyncio.gather(*(store.async_set(f"key_{index}", index) for index in range(100)))

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["data"] == {f"key_{index}": index for index in range(100)}
    assert JsonKeyValueStorage(path).get("key_99") == 99

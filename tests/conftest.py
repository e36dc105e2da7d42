"""Shared fakes for the adaptive heat pump tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from custom_components.adaptive_heat_pump.const import (
    CHANNEL_INDOOR_TEMP,
    CHANNEL_SETPOINT,
    CHANNEL_TARGET_INDOOR_TEMP,
)

START = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeSetpointIO:
    """In-memory channel values with optional per-channel update times."""

    def __init__(self, values: dict[str, float | None] | None = None) -> None:
        self.values: dict[str, float | None] = dict(values or {})
        self.updated: dict[str, datetime] = {}
        self.writes: list[tuple[str, float]] = []
        self.fail_writes = False

    async def async_get_value(self, channel: str) -> float | None:
        return self.values.get(channel)

    async def async_set_value(self, channel: str, value: float) -> None:
        if self.fail_writes:
            raise OSError("device unreachable")
        self.writes.append((channel, value))
        self.values[channel] = value

    def last_updated(self, channel: str) -> datetime | None:
        return self.updated.get(channel)


class FakeStore:
    """Dict-backed key/value store that can be told to fail."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(data or {})
        self.fail = False

    async def async_get(self, key: str) -> Any:
        if self.fail:
            raise OSError("disk gone")
        return self.data.get(key)

    async def async_set(self, key: str, value: Any) -> None:
        if self.fail:
            raise OSError("disk gone")
        self.data[key] = value


class FakeScheduler:
    """Records interval registrations the way async_track_time_interval would."""

    def __init__(self) -> None:
        self.callbacks: list[tuple[Callable[..., Any], timedelta]] = []
        self.cancelled = 0

    def __call__(self, callback: Callable[..., Any], interval: timedelta) -> Callable[[], None]:
        self.callbacks.append((callback, interval))

        def _unsub() -> None:
            self.cancelled += 1

        return _unsub


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def setpoint_io() -> FakeSetpointIO:
    return FakeSetpointIO(
        {
            CHANNEL_INDOOR_TEMP: 20.0,
            CHANNEL_TARGET_INDOOR_TEMP: 21.0,
            CHANNEL_SETPOINT: 40.0,
        }
    )


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()

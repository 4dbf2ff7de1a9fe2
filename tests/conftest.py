"""Shared fixtures: fake clock, recording sleep, scripted transport."""

from __future__ import annotations

from typing import Any

import orjson
import pytest

from contentguard.core.config.models import AppConfig, RetryConfig, RetryPolicy
from contentguard.core.transport.base import RawResponse, Transport


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class SleepRecorder:
    """Records requested suspensions and optionally advances a FakeClock."""

    def __init__(self, clock: FakeClock | None = None):
        self.calls: list[float] = []
        self.clock = clock

    async def sleep(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds * 1000)


class ScriptedTransport(Transport):
    """Replays a fixed sequence of responses or exceptions.

    Once the script is exhausted the last item repeats.
    """

    def __init__(self, script: list[RawResponse | BaseException]):
        self.script = list(script)
        self.calls: list[tuple[str, str, dict[str, Any] | None, str]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "scripted"

    async def send(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None,
        credential_id: str,
    ) -> RawResponse:
        self.calls.append((method, path, body, credential_id))
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


def json_response(
    status: int,
    payload: Any = None,
    headers: dict[str, str] | None = None,
) -> RawResponse:
    """Build a RawResponse with a JSON body."""
    body = b"" if payload is None else orjson.dumps(payload)
    return RawResponse(status_code=status, headers=headers or {}, body=body)


def envelope(response: Any, status: int = 200, msg: str = "OK") -> dict[str, Any]:
    """Remote API success envelope."""
    return {"meta": {"status": status, "msg": msg}, "response": response}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper(clock: FakeClock) -> SleepRecorder:
    """Sleep that advances the fake clock."""
    return SleepRecorder(clock)


@pytest.fixture
def frozen_sleeper() -> SleepRecorder:
    """Sleep that leaves time standing still."""
    return SleepRecorder()


@pytest.fixture
def make_response():
    return json_response


@pytest.fixture
def make_envelope():
    return envelope


@pytest.fixture
def scripted_transport():
    """Factory for ScriptedTransport instances."""
    return ScriptedTransport


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Policy with exact, jitter-free delays."""
    return RetryPolicy(
        max_attempts=3,
        base_delay_ms=1000,
        multiplier=2.0,
        max_delay_ms=8000,
        jitter_ratio=0.0,
        rate_limit_delay_ms=60_000,
    )


@pytest.fixture
def app_config() -> AppConfig:
    """Config with jitter disabled so router delays are predictable."""
    return AppConfig(
        retry=RetryConfig(
            read=RetryPolicy(max_attempts=4, jitter_ratio=0.0),
            write=RetryPolicy(max_attempts=2, jitter_ratio=0.0),
        )
    )

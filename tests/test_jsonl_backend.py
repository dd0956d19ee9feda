from __future__ import annotations

import asyncio
import sys
import textwrap
from pathlib import Path

import allure
import pytest
from conftest import FakeClock

from layer_bridge.backend.jsonl_backend import JsonLinesProcessPool, JsonLinesSession
from layer_bridge.errors import BackendFailure, TransientBackendError

pytestmark = [
    allure.epic("Layer Runtime"),
    allure.feature("JSON-lines Sessions"),
]

_SERVER = textwrap.dedent(
    """
    import json
    import sys

    for line in sys.stdin:
        message = json.loads(line)
        if "id" not in message:
            continue
        print("warming up")
        print(json.dumps({"id": message["id"] + 1000, "result": "stray"}))
        method = message["method"]
        if method == "hang":
            continue
        if method == "fail":
            reply = {"jsonrpc": "2.0", "id": message["id"], "error": {"message": "boom"}}
        else:
            reply = {"jsonrpc": "2.0", "id": message["id"], "result": message["params"]}
        print(json.dumps(reply))
    """,
)


@pytest.fixture()
def server_argv(tmp_path: Path) -> list[str]:
    script = tmp_path / "server.py"
    script.write_text(_SERVER, "utf-8")
    return [sys.executable, "-u", str(script)]


@pytest.mark.asyncio
async def test_session_matches_replies_by_id(server_argv: list[str]) -> None:
    session = await JsonLinesSession.spawn(server_argv)
    try:
        first = await session.call("echo", {"value": 1}, timeout_seconds=10)
        second = await session.call("echo", {"value": 2}, timeout_seconds=10)
        failed = await session.call("fail", timeout_seconds=10)
    finally:
        await session.close()

    assert first.ok
    assert first.result == {"value": 1}
    assert second.result == {"value": 2}
    assert second.request_id == first.request_id + 1
    assert not failed.ok
    assert failed.error_message == "boom"
    assert session.alive is False


@pytest.mark.asyncio
async def test_session_timeout_closes_process(server_argv: list[str]) -> None:
    session = await JsonLinesSession.spawn(server_argv)

    with pytest.raises(TransientBackendError) as error:
        await session.call("hang", timeout_seconds=0.3)

    assert error.value.timed_out is True
    assert session.alive is False
    with pytest.raises(TransientBackendError, match="not running"):
        await session.call("echo", timeout_seconds=1)


@pytest.mark.asyncio
async def test_session_reports_closed_output_stream() -> None:
    session = await JsonLinesSession.spawn([sys.executable, "-c", "pass"])
    try:
        with pytest.raises(TransientBackendError):
            await session.call("echo", timeout_seconds=10)
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_spawn_reports_missing_command() -> None:
    with pytest.raises(BackendFailure, match="not found"):
        await JsonLinesSession.spawn(["layer-bridge-missing-server-xyz"])


class FakeSession:
    def __init__(self, created_at: float) -> None:
        self.created_at = created_at
        self.closed = False

    @property
    def alive(self) -> bool:
        return not self.closed

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at >= ttl_seconds

    async def close(self) -> None:
        self.closed = True


class FakeSpawner:
    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self.spawned: list[FakeSession] = []

    async def __call__(self) -> FakeSession:
        session = FakeSession(self._clock())
        self.spawned.append(session)
        return session


@pytest.mark.asyncio
async def test_pool_reuses_idle_sessions(clock: FakeClock) -> None:
    spawner = FakeSpawner(clock)
    pool = JsonLinesProcessPool(spawner, ttl_seconds=100, clock=clock)  # type: ignore[arg-type]

    async with pool.session() as first:
        pass
    async with pool.session() as second:
        pass

    assert first is second
    assert len(spawner.spawned) == 1
    assert pool.idle_count == 1


@pytest.mark.asyncio
async def test_pool_retires_expired_and_broken_sessions(clock: FakeClock) -> None:
    spawner = FakeSpawner(clock)
    pool = JsonLinesProcessPool(spawner, ttl_seconds=100, clock=clock)  # type: ignore[arg-type]

    async with pool.session() as aged:
        clock.advance(100)
    assert aged.closed is True
    assert pool.idle_count == 0

    with pytest.raises(TransientBackendError):
        async with pool.session() as broken:
            raise TransientBackendError("pipe closed")
    assert broken.closed is True

    with pytest.raises(RuntimeError):
        async with pool.session() as kept:
            raise RuntimeError("caller bug")
    assert kept.closed is False
    assert pool.idle_count == 1

    await pool.close()
    assert kept.closed is True
    assert pool.idle_count == 0


@pytest.mark.asyncio
async def test_pool_bounds_concurrent_sessions(clock: FakeClock) -> None:
    spawner = FakeSpawner(clock)
    pool = JsonLinesProcessPool(spawner, max_size=1, clock=clock)  # type: ignore[arg-type]

    first = await pool.acquire()
    waiter = asyncio.create_task(pool.acquire())
    await asyncio.sleep(0.05)
    assert not waiter.done()

    await pool.release(first)
    second = await asyncio.wait_for(waiter, timeout=1)

    assert second is first
    await pool.release(second)
    assert len(spawner.spawned) == 1


def test_pool_rejects_empty_size() -> None:
    with pytest.raises(ValueError, match="max_size"):
        JsonLinesProcessPool(FakeSpawner(FakeClock()), max_size=0)  # type: ignore[arg-type]

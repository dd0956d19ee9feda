"""JSON-lines request/response transport over a persistent subprocess."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from layer_bridge.backend.cli_backend import terminate_process
from layer_bridge.errors import BackendFailure, TransientBackendError
from layer_bridge.models import LayerType

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
DEFAULT_POOL_TTL_SECONDS = 600.0
_STREAM_LIMIT = 16 * 1024 * 1024


@dataclass(slots=True)
class JsonLinesReply:
    """One response record: either `result` or `error` is populated."""

    request_id: int
    result: Any = None
    error: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_message(self) -> str:
        if self.error is None:
            return ""
        message = self.error.get("message")
        return str(message) if message else json.dumps(self.error)


class JsonLinesSession:
    """A live backend process answering one JSON record per line."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        layer: LayerType | None = None,
        created_at: float,
    ) -> None:
        self._process = process
        self._layer = layer
        self._lock = asyncio.Lock()
        self._next_id = 0
        self.created_at = created_at
        self.initialized = False
        self.closed = False
        self._broken = False

    @classmethod
    async def spawn(
        cls,
        argv: Sequence[str],
        *,
        layer: LayerType | None = None,
        env: dict[str, str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> JsonLinesSession:
        merged_env = None
        if env is not None:
            merged_env = os.environ.copy()
            merged_env.update(env)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=merged_env,
                limit=_STREAM_LIMIT,
            )
        except FileNotFoundError as error:
            raise BackendFailure(
                f"Backend server command not found: {argv[0]}",
                layer=layer,
                remediation=f"Install {argv[0]} or fix the configured command.",
            ) from error
        except OSError as error:
            raise TransientBackendError(
                f"Backend server failed to start: {error}",
                layer=layer,
            ) from error
        logger.debug("Spawned JSON-lines backend %s (pid %s)", argv[0], process.pid)
        return cls(process, layer=layer, created_at=clock())

    @property
    def alive(self) -> bool:
        return not (self.closed or self._broken) and self._process.returncode is None

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at >= ttl_seconds

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout_seconds: float,
    ) -> JsonLinesReply:
        """Send one request and wait for the response carrying the same id."""

        async with self._lock:
            if not self.alive:
                raise TransientBackendError("Backend process is not running.", layer=self._layer)
            self._next_id += 1
            request_id = self._next_id
            record = {
                "jsonrpc": JSONRPC_VERSION,
                "id": request_id,
                "method": method,
                "params": params or {},
            }
            try:
                return await asyncio.wait_for(
                    self._exchange(request_id, record),
                    timeout=timeout_seconds,
                )
            except TimeoutError as error:
                await self.close()
                raise TransientBackendError(
                    f"Backend call {method} timed out after {timeout_seconds:.1f}s",
                    timed_out=True,
                    layer=self._layer,
                ) from error
            except asyncio.CancelledError:
                await self.close()
                raise

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a record that expects no response."""

        async with self._lock:
            await self._write(
                {"jsonrpc": JSONRPC_VERSION, "method": method, "params": params or {}},
            )

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._process.stdin is not None and not self._process.stdin.is_closing():
            self._process.stdin.close()
        await terminate_process(self._process)

    async def _exchange(self, request_id: int, record: dict[str, Any]) -> JsonLinesReply:
        await self._write(record)
        stdout = self._process.stdout
        if stdout is None:
            raise TransientBackendError("Backend process has no stdout.", layer=self._layer)
        while True:
            line = await stdout.readline()
            if not line:
                self._broken = True
                raise TransientBackendError(
                    "Backend process closed its output stream.",
                    layer=self._layer,
                )
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON backend line: %r", line[:200])
                continue
            if not isinstance(message, dict) or message.get("id") != request_id:
                continue
            error = message.get("error")
            if error is not None:
                if not isinstance(error, dict):
                    error = {"message": str(error)}
                return JsonLinesReply(request_id=request_id, error=error)
            return JsonLinesReply(request_id=request_id, result=message.get("result"))

    async def _write(self, record: dict[str, Any]) -> None:
        stdin = self._process.stdin
        if stdin is None:
            raise TransientBackendError("Backend process has no stdin.", layer=self._layer)
        try:
            stdin.write((json.dumps(record, ensure_ascii=False) + "\n").encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as error:
            self._broken = True
            raise TransientBackendError(
                f"Backend process pipe closed: {error}",
                layer=self._layer,
            ) from error


SessionFactory = Callable[[], Awaitable[JsonLinesSession]]


class JsonLinesProcessPool:
    """Bounded pool of persistent sessions torn down after a lifetime TTL."""

    def __init__(
        self,
        spawn: SessionFactory,
        *,
        max_size: int = 2,
        ttl_seconds: float = DEFAULT_POOL_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("Pool max_size must be at least 1.")
        self._spawn = spawn
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._idle: list[JsonLinesSession] = []
        self._slots = asyncio.Semaphore(max_size)

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[JsonLinesSession]:
        """Borrow a session; it is discarded instead of reused if the call broke it."""

        session = await self.acquire()
        broken = False
        try:
            yield session
        except TransientBackendError:
            broken = True
            raise
        finally:
            await self.release(session, discard=broken)

    async def acquire(self) -> JsonLinesSession:
        await self._slots.acquire()
        try:
            while self._idle:
                candidate = self._idle.pop()
                if candidate.alive and not candidate.is_expired(self._clock(), self._ttl_seconds):
                    return candidate
                await candidate.close()
            return await self._spawn()
        except BaseException:
            self._slots.release()
            raise

    async def release(self, session: JsonLinesSession, *, discard: bool = False) -> None:
        try:
            expired = session.is_expired(self._clock(), self._ttl_seconds)
            if discard or expired or not session.alive:
                if expired:
                    logger.debug("Retiring backend session after TTL")
                await session.close()
            else:
                self._idle.append(session)
        finally:
            self._slots.release()

    async def close(self) -> None:
        idle, self._idle = self._idle, []
        for session in idle:
            await session.close()

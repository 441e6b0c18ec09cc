"""Shared fakes for bridge and runner tests.

FakeProcess mimics asyncio.subprocess.Process closely enough for the
bridge: real StreamReaders for stdout/stderr, a recording stdin and a
wait() that resolves when the test finishes the process.
"""
from __future__ import annotations

import asyncio

import pytest

from cursor_chat.engine.auth import AuthResult, AuthSource
from cursor_chat.engine.config import AgentSettings


class FakeStdin:
    def __init__(self) -> None:
        self.writes: list[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise BrokenPipeError("stdin closed")
        self.writes.append(data)

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed


class FakeProcess:
    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.stdin = FakeStdin()
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: int | None = None
        self.killed = False
        self._exited = asyncio.Event()

    def emit_stdout(self, data: bytes | str) -> None:
        self.stdout.feed_data(data.encode() if isinstance(data, str) else data)

    def emit_stderr(self, data: bytes | str) -> None:
        self.stderr.feed_data(data.encode() if isinstance(data, str) else data)

    def finish(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self.returncode = code
        self._exited.set()

    def kill(self) -> None:
        self.killed = True
        self.finish(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Stands in for spawn_agent; records every call."""

    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error
        self.calls: list[list[str]] = []
        self.procs: list[FakeProcess] = []

    async def __call__(self, args, *, cwd, settings):
        self.calls.append(list(args))
        if self.error is not None:
            raise self.error
        proc = FakeProcess(pid=1000 + len(self.procs))
        self.procs.append(proc)
        return proc

    @property
    def last(self) -> FakeProcess:
        return self.procs[-1]


async def logged_in(settings, cwd):
    return AuthResult(True, AuthSource.CLI_LOGIN)


async def logged_out(settings, cwd):
    return AuthResult(False, AuthSource.NONE)


async def settle(rounds: int = 10) -> None:
    """Let the pump task drain what has been fed so far."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def settings() -> AgentSettings:
    return AgentSettings()

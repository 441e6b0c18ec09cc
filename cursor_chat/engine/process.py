"""Process runner and one-shot executor for cursor-agent.

spawn_agent() starts the first runnable candidate command with all three
streams piped. exec_agent() runs auxiliary commands (status, login, ls,
--version) to completion under a deadline and never raises on timeout.
"""
from __future__ import annotations

import asyncio
import logging
import signal as signal_module
from dataclasses import dataclass

from .command import build_agent_env, get_command_candidates
from .config import AgentSettings
from .errors import AgentNotRunnableError, AgentSpawnError

logger = logging.getLogger(__name__)

DEFAULT_EXEC_TIMEOUT = 10.0
# How long to wait for the OS to confirm a killed process is gone.
KILL_GRACE_SECONDS = 5.0
READ_CHUNK_SIZE = 64 * 1024


@dataclass
class ExecResult:
    """Outcome of a one-shot agent command."""
    code: int | None
    signal: str | None
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.code == 0


async def spawn_agent(
    args: list[str],
    *,
    cwd: str | None,
    settings: AgentSettings,
) -> asyncio.subprocess.Process:
    """Start cursor-agent, trying each candidate command in order.

    A missing executable moves on to the next candidate; any other OS
    error is fatal. Uses asyncio.create_subprocess_exec (array-based, no
    shell), which returns once the process is actually running.
    """
    env = build_agent_env(settings)
    candidates = get_command_candidates(settings)
    for command in candidates:
        logger.debug("Spawning %s (cwd=%s)", command, cwd)
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError:
            logger.debug("%s not found; trying next candidate", command)
            continue
        except OSError as exc:
            raise AgentSpawnError(command, str(exc)) from exc
        logger.info("Started %s (pid=%d)", command, proc.pid)
        return proc

    raise AgentNotRunnableError(candidates)


async def exec_agent(
    args: list[str],
    *,
    cwd: str | None,
    settings: AgentSettings,
    timeout: float = DEFAULT_EXEC_TIMEOUT,
) -> ExecResult:
    """Run a cursor-agent command to completion, buffering its output.

    On timeout the process is killed and the result carries a null exit
    code, a synthetic signal and whatever output was captured.
    """
    logger.debug("exec_agent: %s (timeout=%.1fs)", args, timeout)
    proc = await spawn_agent(args, cwd=cwd, settings=settings)
    if proc.stdin is not None:
        proc.stdin.close()

    stdout_parts: list[bytes] = []
    stderr_parts: list[bytes] = []

    async def _drain(
        stream: asyncio.StreamReader | None,
        sink: list[bytes],
    ) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            sink.append(chunk)

    async def _collect() -> int:
        await asyncio.gather(
            _drain(proc.stdout, stdout_parts),
            _drain(proc.stderr, stderr_parts),
        )
        return await proc.wait()

    try:
        returncode = await asyncio.wait_for(_collect(), timeout=timeout)
    except asyncio.TimeoutError:
        stdout = _decode(stdout_parts)
        stderr = _decode(stderr_parts)
        logger.warning(
            "exec_agent %s timed out after %.1fs; stdout: %.200s",
            args, timeout, stdout,
        )
        await terminate(proc)
        return ExecResult(
            code=None,
            signal="SIGKILL",
            stdout=stdout,
            stderr=stderr or f"Timed out after {timeout:g}s",
        )

    code, sig = split_returncode(returncode)
    logger.debug("exec_agent %s exited code=%s signal=%s", args, code, sig)
    return ExecResult(
        code=code,
        signal=sig,
        stdout=_decode(stdout_parts),
        stderr=_decode(stderr_parts),
    )


async def terminate(
    proc: asyncio.subprocess.Process,
    grace: float = KILL_GRACE_SECONDS,
) -> None:
    """Kill a process and wait for the OS to confirm it is gone."""
    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace)
    except asyncio.TimeoutError:
        logger.warning(
            "Process pid=%s did not exit within %.1fs of kill",
            getattr(proc, "pid", "?"), grace,
        )


def split_returncode(returncode: int | None) -> tuple[int | None, str | None]:
    """Map asyncio's negative return codes to (None, signal name)."""
    if returncode is None or returncode >= 0:
        return returncode, None
    try:
        return None, signal_module.Signals(-returncode).name
    except ValueError:
        return None, f"SIG{-returncode}"


def _decode(parts: list[bytes]) -> str:
    return b"".join(parts).decode("utf-8", errors="replace")

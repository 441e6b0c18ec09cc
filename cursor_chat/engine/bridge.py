"""AgentBridge: one conversation's cursor-agent process as an event stream.

Each ``send`` is one invocation: resolve auth, spawn
``cursor-agent -p ... --output-format stream-json``, then pump stdout
through the protocol decoder and stderr through the approval detector
until the process exits. Results reach subscribers as named events:

    init, user, assistant, tool_call, result   decoded agent output
    approval_required                           MCP approval prompt seen
    error                                       any failure (never raised)
    ready                                       process spawned
    close                                       process exited (exit code)

Only one invocation may be live per bridge. The remembered session id is
updated by every init event so the next send resumes the conversation.
"""
from __future__ import annotations

import asyncio
import codecs
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .approval import ApprovalChoice, ApprovalPromptDetector
from .auth import AuthResult, resolve_auth
from .config import AgentSettings
from .emitter import EventEmitter, Listener
from .errors import (
    AgentRuntimeError,
    BridgeBusyError,
    BridgeError,
    UnauthenticatedError,
)
from .events import (
    AgentEvent,
    AssistantEvent,
    InitEvent,
    ResultEvent,
    ToolCallCompletedEvent,
    ToolCallStartedEvent,
    UserEchoEvent,
)
from .process import READ_CHUNK_SIZE, spawn_agent, split_returncode
from .protocol import ProtocolDecoder

logger = logging.getLogger(__name__)

SpawnFn = Callable[..., Awaitable[asyncio.subprocess.Process]]
AuthResolver = Callable[..., Awaitable[AuthResult]]

# Decoded event class -> emitted channel name
_CHANNELS: dict[type[AgentEvent], str] = {
    InitEvent: "init",
    UserEchoEvent: "user",
    AssistantEvent: "assistant",
    ToolCallStartedEvent: "tool_call",
    ToolCallCompletedEvent: "tool_call",
    ResultEvent: "result",
}


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class BridgeState(Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclass
class BridgeOptions:
    settings: AgentSettings
    working_directory: str | None = None
    model: str = ""


def build_agent_args(
    prompt: str,
    *,
    settings: AgentSettings,
    auth: AuthResult,
    resume_session_id: str | None,
    model: str = "",
) -> list[str]:
    """Compose the argument list for one chat invocation."""
    instructions = (settings.custom_instructions or "").strip()
    prompt_text = f"{instructions}\n\n{prompt}" if instructions else prompt

    args = ["-p", prompt_text, "--output-format", "stream-json"]
    args.extend(auth.extra_args)

    if resume_session_id:
        # The remote session owns its model.
        args.append(f"--resume={resume_session_id}")
    else:
        chosen = model or settings.default_model
        if chosen:
            args.extend(["--model", chosen])

    if settings.unattended:
        args.extend(["--force", "--approve-mcps"])
    return args


class AgentBridge:
    """Owns at most one live cursor-agent process for a conversation."""

    def __init__(
        self,
        options: BridgeOptions,
        *,
        emitter: EventEmitter | None = None,
        spawn: SpawnFn = spawn_agent,
        auth_resolver: AuthResolver = resolve_auth,
    ) -> None:
        self._options = options
        self._emitter = emitter or EventEmitter()
        self._spawn = spawn
        self._auth_resolver = auth_resolver

        self._state = BridgeState.IDLE
        self._proc: asyncio.subprocess.Process | None = None
        self._session_id: str | None = None
        self._decoder = ProtocolDecoder()
        self._detector = ApprovalPromptDetector()
        self._pump_task: asyncio.Task[None] | None = None
        self._cancel_requested = False

    # ── Subscription ──

    @property
    def emitter(self) -> EventEmitter:
        return self._emitter

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        return self._emitter.on(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self._emitter.off(event, listener)

    # ── Accessors ──

    @property
    def options(self) -> BridgeOptions:
        return self._options

    @property
    def state(self) -> BridgeState:
        return self._state

    def update_options(self, **partial: Any) -> None:
        """Replace settings, working directory or model between sends."""
        self._options = dataclasses.replace(self._options, **partial)

    def get_session_id(self) -> str | None:
        return self._session_id

    def set_session_id(self, session_id: str | None) -> None:
        """Force the next send to resume ``session_id`` (None = fresh)."""
        self._session_id = session_id or None

    def is_running(self) -> bool:
        return self._proc is not None

    @property
    def approval_pending(self) -> bool:
        return self._proc is not None and self._detector.pending

    # ── Operations ──

    async def send(
        self,
        prompt: str,
        *,
        resume_session_id: str | None = UNSET,
    ) -> None:
        """Start one invocation for ``prompt``.

        ``resume_session_id`` overrides the remembered session; pass None
        explicitly to start a fresh conversation.
        """
        if self._proc is not None or self._state in (
            BridgeState.SPAWNING, BridgeState.STREAMING,
        ):
            logger.warning("send() rejected: an invocation is already live")
            self._emit_error(BridgeBusyError())
            return

        self._state = BridgeState.SPAWNING
        self._cancel_requested = False
        settings = self._options.settings
        cwd = self._options.working_directory

        try:
            auth = await self._auth_resolver(settings, cwd)
        except (BridgeError, OSError) as exc:
            logger.warning("Auth resolution failed: %s", exc)
            self._fail_spawn(exc)
            return
        if self._cancel_requested:
            self._abandon_spawn()
            return
        if not auth.is_authenticated:
            self._fail_spawn(UnauthenticatedError())
            return

        resume = (
            self._session_id if resume_session_id is UNSET
            else resume_session_id
        )
        args = build_agent_args(
            prompt,
            settings=settings,
            auth=auth,
            resume_session_id=resume,
            model=self._options.model,
        )
        logger.info(
            "Sending prompt (%d chars, auth=%s, resume=%s)",
            len(prompt), auth.source.value, (resume or "none")[:8],
        )

        try:
            proc = await self._spawn(args, cwd=cwd, settings=settings)
        except (BridgeError, OSError) as exc:
            logger.error("Failed to spawn cursor-agent: %s", exc)
            self._fail_spawn(exc)
            return
        if self._cancel_requested:
            # Cancelled mid-spawn; the pump still reports the exit.
            self._kill(proc)

        self._proc = proc
        self._decoder = ProtocolDecoder()
        self._detector = ApprovalPromptDetector()
        if settings.unattended and proc.stdin is not None:
            # Nothing will be asked, so nothing needs to be answered.
            proc.stdin.close()

        self._state = BridgeState.STREAMING
        self._pump_task = asyncio.create_task(
            self._pump(proc, self._decoder, self._detector),
            name=f"cursor-agent-pump-{proc.pid}",
        )
        self._emitter.emit("ready")

    def cancel(self) -> None:
        """Kill the live process, if any. ``close`` still follows.

        Called while ``send`` is still resolving auth, the pending spawn
        is abandoned instead.
        """
        proc = self._proc
        if proc is None:
            if self._state is BridgeState.SPAWNING:
                logger.info("Cancelling cursor-agent before spawn")
                self._cancel_requested = True
            return
        logger.info("Cancelling cursor-agent (pid=%s)", proc.pid)
        self._kill(proc)
        self._proc = None
        self._detector.mark_answered()
        self._state = BridgeState.CLOSED

    def submit_approval(self, choice: ApprovalChoice | str) -> bool:
        """Answer a pending approval prompt with a single keystroke.

        Returns False when nothing is live or no prompt is pending.
        """
        proc = self._proc
        if proc is None or not self._detector.pending:
            return False
        stdin = proc.stdin
        try:
            choice = ApprovalChoice(choice)
            if stdin is None or stdin.is_closing():
                raise BridgeError("cursor-agent stdin is closed")
            stdin.write(choice.value.encode("ascii"))
        except (BridgeError, OSError, RuntimeError, ValueError) as exc:
            logger.warning("Failed to write approval answer: %s", exc)
            self._emit_error(exc)
            return False
        self._detector.mark_answered()
        logger.info("Answered MCP approval prompt with %s", choice.name)
        return True

    async def wait_closed(self) -> None:
        """Wait until the current pump (if any) has emitted ``close``."""
        task = self._pump_task
        if task is not None:
            await task

    # ── Internals ──

    async def _pump(
        self,
        proc: asyncio.subprocess.Process,
        decoder: ProtocolDecoder,
        detector: ApprovalPromptDetector,
    ) -> None:
        stderr_parts: list[str] = []
        stderr_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        async def _read_stdout() -> None:
            if proc.stdout is None:
                return
            while True:
                chunk = await proc.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for event in decoder.feed(chunk):
                    self._dispatch(event)

        async def _read_stderr() -> None:
            if proc.stderr is None:
                return
            while True:
                chunk = await proc.stderr.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                text = stderr_decoder.decode(chunk)
                stderr_parts.append(text)
                request = detector.feed(text)
                if request is not None:
                    self._emitter.emit("approval_required", request)

        try:
            try:
                await asyncio.gather(_read_stdout(), _read_stderr())
                for event in decoder.flush():
                    self._dispatch(event)
            except OSError as exc:
                logger.warning("Error reading cursor-agent output: %s", exc)
                self._emit_error(exc)
            except Exception as exc:
                logger.exception("cursor-agent output pump failed")
                self._emit_error(exc)
                self._kill(proc)
            returncode = await proc.wait()
        finally:
            if self._proc is proc:
                self._proc = None
                self._state = BridgeState.CLOSED
            detector.mark_answered()

        code, sig = split_returncode(returncode)
        logger.info(
            "cursor-agent exited (pid=%s, code=%s, signal=%s)",
            proc.pid, code, sig,
        )

        err_text = "".join(stderr_parts).strip()
        if code != 0 and err_text:
            self._emit_error(AgentRuntimeError(code, err_text))
        self._emitter.emit("close", code)

    def _dispatch(self, event: AgentEvent) -> None:
        if isinstance(event, InitEvent):
            self._session_id = event.session_id or None
            logger.info(
                "Session %s initialised (model=%s)",
                event.session_id[:8], event.model or "default",
            )
        channel = _CHANNELS.get(type(event))
        if channel is None:
            logger.debug("No channel for %s", type(event).__name__)
            return
        self._emitter.emit(channel, event)

    def _kill(self, proc: asyncio.subprocess.Process) -> None:
        try:
            proc.kill()
        except (ProcessLookupError, OSError) as exc:
            logger.debug("kill() failed for pid=%s: %s", proc.pid, exc)

    def _abandon_spawn(self) -> None:
        self._state = BridgeState.CLOSED
        self._emitter.emit("close", None)

    def _fail_spawn(self, exc: BaseException) -> None:
        self._state = BridgeState.IDLE
        self._emit_error(exc)

    def _emit_error(self, exc: BaseException) -> None:
        self._emitter.emit("error", exc)

"""ChatController: host-side glue between an AgentBridge and its ledger.

Subscribes to bridge events and keeps the conversation state in sync:
user prompts and tool call notices go to the session ledger (queued as
pending until the agent reports its session id), streamed assistant
fragments are accumulated and committed as one message when the turn
ends, and the persistent state is saved after every change that matters
for resuming.
"""
from __future__ import annotations

import logging
from pathlib import Path

from cursor_chat.engine.bridge import AgentBridge
from cursor_chat.engine.config import AgentSettings
from cursor_chat.engine.errors import BridgeBusyError
from cursor_chat.engine.events import (
    AssistantEvent,
    InitEvent,
    ReadToolCall,
    ResultEvent,
    ToolCallCompletedEvent,
    ToolCallEvent,
    WriteToolCall,
)
from cursor_chat.engine.session import SessionLedger
from cursor_chat.shared.formatters.tool_call import describe_tool_call
from cursor_chat.shared.models.message import ChatMessage, MessageRole, ToolCallInfo
from cursor_chat.shared.services.chat_notes import load_chat_note, save_chat_as_note
from cursor_chat.shared.services.persistence import PersistedState, StateStore
from cursor_chat.shared.services.prompt_builder import PromptContext, build_prompt

logger = logging.getLogger(__name__)


class ChatController:
    """Drives one conversation through a bridge and records it."""

    def __init__(
        self,
        bridge: AgentBridge,
        ledger: SessionLedger,
        settings: AgentSettings,
        *,
        store: StateStore | None = None,
        last_session_id: str | None = None,
        saved_settings: AgentSettings | None = None,
    ) -> None:
        self._bridge = bridge
        self._ledger = ledger
        self._settings = settings
        self._store = store
        # Settings written to the store; flags and env overrides stay out.
        self._saved_settings = saved_settings
        self.last_session_id = last_session_id
        self.last_error: BaseException | None = None
        self.is_generating = False
        self._stream_parts: list[str] = []
        self._unsubscribe = [
            bridge.on("init", self._on_init),
            bridge.on("assistant", self._on_assistant),
            bridge.on("tool_call", self._on_tool_call),
            bridge.on("result", self._on_result),
            bridge.on("error", self._on_error),
            bridge.on("close", self._on_close),
        ]

    @property
    def bridge(self) -> AgentBridge:
        return self._bridge

    @property
    def ledger(self) -> SessionLedger:
        return self._ledger

    @property
    def settings(self) -> AgentSettings:
        return self._settings

    @property
    def streaming_text(self) -> str:
        return "".join(self._stream_parts)

    @property
    def messages(self) -> list[ChatMessage]:
        """Confirmed history for the current session plus pending messages."""
        return self._ledger.get_messages() + self._ledger.pending_messages

    def update_settings(self, settings: AgentSettings) -> None:
        self._settings = settings
        self._bridge.update_options(settings=settings)
        self._ledger.update_options(settings=settings)

    # ── Commands ──

    async def send_prompt(
        self,
        text: str,
        context: PromptContext | None = None,
    ) -> bool:
        """Record ``text`` as a user message and send it to the agent.

        Returns False when the text is blank or a turn is already running.
        """
        text = text.strip()
        if not text:
            return False
        if self._bridge.is_running():
            logger.info("send_prompt ignored: cursor-agent is running")
            return False

        resume_id = self._bridge.get_session_id()
        if resume_id and self._ledger.get_current_session() is None:
            self._ledger.set_current_session(
                resume_id, self._bridge.options.model or self._settings.default_model,
            )

        self._ledger.add_message(ChatMessage(role=MessageRole.USER, content=text))
        self._stream_parts = []
        self.last_error = None
        self.is_generating = True
        self.persist()

        await self._bridge.send(build_prompt(text, context))
        return True

    def new_conversation(self) -> bool:
        if self._bridge.is_running():
            logger.info("new_conversation ignored: cursor-agent is running")
            return False
        self._bridge.set_session_id(None)
        self._ledger.clear_current_session()
        self._stream_parts = []
        self.persist()
        return True

    def stop(self) -> None:
        """Cancel the running turn, keeping whatever text has streamed."""
        self._bridge.cancel()
        self._finalize_streaming()
        self.is_generating = False

    def resume_last(self) -> bool:
        if not self.last_session_id:
            logger.info("No previous session to resume")
            return False
        if self._bridge.is_running():
            return False
        self._bridge.set_session_id(self.last_session_id)
        if self._ledger.get_current_session() is None:
            self._ledger.set_current_session(
                self.last_session_id, self._settings.default_model,
            )
        return True

    def detach(self) -> None:
        """Unsubscribe from the bridge."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    # ── Chat documents ──

    def save_chat_document(self, root: Path, title: str | None = None) -> Path | None:
        current = self._ledger.get_current_session()
        messages = self.messages
        if not messages:
            return None
        path, _ = save_chat_as_note(
            root,
            self._settings.chat_history_folder,
            session_id=current.remote_session_id if current else None,
            model=(current.model if current else "") or None,
            messages=messages,
            title=title,
        )
        return path

    def open_chat_document(self, path: Path) -> bool:
        """Attach to the session recorded in a chat document."""
        if self._bridge.is_running():
            return False
        meta, messages = load_chat_note(path)
        if not meta.session_id:
            logger.warning("Chat document %s has no session id", path)
            return False
        self._bridge.set_session_id(meta.session_id)
        self._ledger.clear_current_session()
        known = self._ledger.get_messages(meta.session_id)
        self._ledger.set_current_session(meta.session_id, meta.model or "")
        if not known:
            for msg in messages:
                self._ledger.add_message(msg)
        self.last_session_id = meta.session_id
        self.persist()
        logger.info("Opened chat document %s (session %s)", path, meta.session_id[:8])
        return True

    # ── Persistence ──

    def persist(self) -> None:
        if self._store is None:
            return
        state = PersistedState(
            settings=self._saved_settings or self._settings,
            sessions=self._ledger.export_data(),
            last_session_id=self.last_session_id,
        )
        try:
            self._store.save(state)
        except OSError as exc:
            logger.warning("Failed to save state to %s: %s", self._store.path, exc)

    # ── Bridge events ──

    def _on_init(self, event: InitEvent) -> None:
        self._ledger.set_current_session(event.session_id, event.model)
        self.last_session_id = event.session_id or self.last_session_id
        self.persist()

    def _on_assistant(self, event: AssistantEvent) -> None:
        self._stream_parts.append(event.text)

    def _on_tool_call(self, event: ToolCallEvent) -> None:
        if not self._settings.show_tool_calls:
            return
        tool = event.tool
        completed = isinstance(event, ToolCallCompletedEvent)
        result = None
        if isinstance(tool, ReadToolCall) and tool.result is not None:
            result = tool.result.content
        elif isinstance(tool, WriteToolCall) and tool.result is not None:
            result = f"{tool.result.lines_created} lines, {tool.result.file_size} bytes"
        self._ledger.add_message(ChatMessage(
            role=MessageRole.SYSTEM,
            content=describe_tool_call(event),
            tool_calls=[ToolCallInfo(
                id=event.call_id,
                kind=tool.kind,
                path=tool.path,
                status="completed" if completed else "started",
                result=tool.error or result,
            )],
        ))

    def _on_result(self, event: ResultEvent) -> None:
        self._finalize_streaming()
        self.is_generating = False
        self.persist()

    def _on_error(self, error: BaseException) -> None:
        self.last_error = error
        if isinstance(error, BridgeBusyError):
            # The running turn is unaffected.
            return
        logger.warning("cursor-agent error: %s", error)
        self._finalize_streaming()
        self.is_generating = False

    def _on_close(self, code: int | None) -> None:
        self._finalize_streaming()
        self.is_generating = False

    def _finalize_streaming(self) -> None:
        content = "".join(self._stream_parts).strip()
        self._stream_parts = []
        if not content:
            return
        self._ledger.add_message(ChatMessage(role=MessageRole.ASSISTANT, content=content))
        self.persist()

"""Session ledger: conversation history keyed by remote session id.

The ledger outlives any single agent process. Messages created before
the agent has reported its session id (the prompt is sent, the process
is running, init has not arrived) wait in a pending queue and are moved
into that session's history, in order and exactly once, when
``set_current_session`` is called from the init event.
"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cursor_chat.shared.models.message import (
    ChatMessage,
    MessageRole,
    message_from_dict,
    message_to_dict,
)

from .config import AgentSettings
from .errors import AgentSpawnError
from .process import ExecResult, exec_agent

logger = logging.getLogger(__name__)

LIST_TIMEOUT = 10.0
PREVIEW_CHARS = 100

ExecFn = Callable[..., Awaitable[ExecResult]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LedgerOptions:
    settings: AgentSettings
    working_directory: str | None = None


@dataclass
class ConversationSummary:
    session_id: str
    timestamp: datetime = field(default_factory=_utcnow)
    preview: str = ""
    message_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "preview": self.preview,
            "message_count": self.message_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationSummary:
        raw_ts = data.get("timestamp")
        if isinstance(raw_ts, (int, float)):
            timestamp = datetime.fromtimestamp(raw_ts / 1000, tz=timezone.utc)
        elif raw_ts:
            timestamp = datetime.fromisoformat(raw_ts)
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
        else:
            timestamp = _utcnow()
        return cls(
            session_id=data.get("session_id") or data.get("sessionId") or "",
            timestamp=timestamp,
            preview=data.get("preview", ""),
            message_count=int(
                data.get("message_count", data.get("messageCount", 0)) or 0
            ),
        )


@dataclass
class SessionState:
    """The conversation the host is currently attached to."""
    remote_session_id: str | None = None
    model: str = ""
    messages: list[ChatMessage] = field(default_factory=list)
    pending_messages: list[ChatMessage] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)


class SessionLedger:
    """Maps remote session ids to ordered message history."""

    def __init__(
        self,
        options: LedgerOptions,
        *,
        exec_fn: ExecFn = exec_agent,
    ) -> None:
        self._options = options
        self._exec = exec_fn
        self._state = SessionState()
        self._conversations: dict[str, ConversationSummary] = {}
        self._history: dict[str, list[ChatMessage]] = {}

    @property
    def options(self) -> LedgerOptions:
        return self._options

    def update_options(self, **partial: Any) -> None:
        self._options = dataclasses.replace(self._options, **partial)

    # ── Current session ──

    def set_current_session(self, session_id: str, model: str = "") -> None:
        """Attach to ``session_id`` and flush pending messages into it."""
        if not session_id:
            logger.warning("set_current_session called without a session id")
            return

        pending = self._state.pending_messages
        if self._state.remote_session_id != session_id:
            self._state = SessionState(
                remote_session_id=session_id,
                model=model,
                messages=self._history.setdefault(session_id, []),
                pending_messages=pending,
            )
            logger.info("Current session: %s", session_id[:8])
        elif model:
            self._state.model = model

        if session_id not in self._conversations:
            self._conversations[session_id] = ConversationSummary(session_id)

        if pending:
            logger.debug(
                "Flushing %d pending message(s) into %s",
                len(pending), session_id[:8],
            )
            flushed = list(pending)
            pending.clear()
            for msg in flushed:
                self._append(session_id, msg)

    def add_message(self, message: ChatMessage) -> None:
        """Append to the current session, or queue until one exists."""
        session_id = self._state.remote_session_id
        if session_id is None:
            self._state.pending_messages.append(message)
            return
        self._append(session_id, message)

    def get_messages(self, session_id: str | None = None) -> list[ChatMessage]:
        sid = session_id or self._state.remote_session_id
        if not sid:
            return []
        return list(self._history.get(sid, []))

    def get_current_session(self) -> SessionState | None:
        if self._state.remote_session_id is None:
            return None
        return self._state

    def clear_current_session(self) -> None:
        """Detach from the current session; pending messages are dropped."""
        dropped = len(self._state.pending_messages)
        if dropped:
            logger.debug("Dropping %d pending message(s)", dropped)
        self._state = SessionState()

    @property
    def pending_messages(self) -> list[ChatMessage]:
        return list(self._state.pending_messages)

    # ── History ──

    def get_local_conversations(self) -> list[ConversationSummary]:
        """All known conversations, newest first."""
        return sorted(
            self._conversations.values(),
            key=lambda c: c.timestamp,
            reverse=True,
        )

    async def list_cli_conversations(self) -> list[str]:
        """Session lines reported by ``cursor-agent ls``."""
        try:
            res = await self._exec(
                ["ls"],
                cwd=self._options.working_directory,
                settings=self._options.settings,
                timeout=LIST_TIMEOUT,
            )
        except AgentSpawnError as exc:
            logger.warning("cursor-agent ls failed: %s", exc)
            return []
        if res.code != 0:
            logger.debug("cursor-agent ls exited %s", res.code)
            return []
        return [line.strip() for line in res.stdout.strip().splitlines()
                if line.strip()]

    def export_data(self) -> dict[str, Any]:
        return {
            "conversations": [
                c.to_dict() for c in self._conversations.values()
            ],
            "messages": {
                sid: [message_to_dict(m) for m in msgs]
                for sid, msgs in self._history.items()
            },
        }

    def import_data(self, data: dict[str, Any] | None) -> None:
        """Merge previously exported data; existing ids are replaced."""
        if not data:
            return
        for raw in data.get("conversations") or []:
            try:
                conv = ConversationSummary.from_dict(raw)
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping invalid conversation entry: %s", exc)
                continue
            if conv.session_id:
                self._conversations[conv.session_id] = conv

        for sid, raw_msgs in (data.get("messages") or {}).items():
            msgs: list[ChatMessage] = []
            for raw in raw_msgs or []:
                try:
                    msgs.append(message_from_dict(raw))
                except (KeyError, TypeError, ValueError, AttributeError) as exc:
                    logger.warning("Skipping invalid message in %s: %s", sid, exc)
            history = self._history.setdefault(sid, [])
            history[:] = msgs

        logger.debug(
            "Imported %d conversation(s), %d history list(s)",
            len(self._conversations), len(self._history),
        )

    def delete_conversation(self, session_id: str) -> None:
        self._conversations.pop(session_id, None)
        self._history.pop(session_id, None)
        if self._state.remote_session_id == session_id:
            self._state = SessionState()

    def clear_all_history(self) -> None:
        self._conversations.clear()
        self._history.clear()
        self._state = SessionState()

    # ── Internals ──

    def _append(self, session_id: str, message: ChatMessage) -> None:
        messages = self._history.setdefault(session_id, [])
        messages.append(message)

        conv = self._conversations.get(session_id)
        if conv is None:
            conv = self._conversations[session_id] = ConversationSummary(
                session_id
            )
        conv.message_count = len(messages)
        if message.role is MessageRole.USER:
            conv.preview = message.content[:PREVIEW_CHARS]
        conv.timestamp = _utcnow()

"""Tests for the session ledger: pending queue, history and persistence."""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from cursor_chat.engine.config import AgentSettings
from cursor_chat.engine.errors import AgentNotRunnableError
from cursor_chat.engine.process import ExecResult
from cursor_chat.engine.session import (
    ConversationSummary,
    LedgerOptions,
    SessionLedger,
)
from cursor_chat.shared.models.message import ChatMessage, MessageRole


def _user(text: str) -> ChatMessage:
    return ChatMessage(role=MessageRole.USER, content=text)


def _assistant(text: str) -> ChatMessage:
    return ChatMessage(role=MessageRole.ASSISTANT, content=text)


@pytest.fixture
def ledger() -> SessionLedger:
    return SessionLedger(LedgerOptions(settings=AgentSettings(), working_directory="/w"))


class TestPendingQueue:
    def test_messages_wait_until_session_known(self, ledger):
        ledger.add_message(_user("hello"))
        assert ledger.get_current_session() is None
        assert [m.content for m in ledger.pending_messages] == ["hello"]
        assert ledger.get_messages() == []

    def test_flush_in_order_exactly_once(self, ledger):
        ledger.add_message(_user("one"))
        ledger.add_message(_user("two"))
        ledger.set_current_session("sess-1", "gpt-5")
        ledger.set_current_session("sess-1")

        assert [m.content for m in ledger.get_messages()] == ["one", "two"]
        assert ledger.pending_messages == []
        assert ledger.get_current_session().model == "gpt-5"

    def test_later_messages_go_straight_to_history(self, ledger):
        ledger.set_current_session("sess-1")
        ledger.add_message(_user("q"))
        ledger.add_message(_assistant("a"))
        assert [m.content for m in ledger.get_messages("sess-1")] == ["q", "a"]

    def test_empty_session_id_is_ignored(self, ledger):
        ledger.add_message(_user("kept"))
        ledger.set_current_session("")
        assert ledger.get_current_session() is None
        assert len(ledger.pending_messages) == 1

    def test_clear_drops_pending(self, ledger):
        ledger.add_message(_user("lost"))
        ledger.clear_current_session()
        assert ledger.pending_messages == []
        ledger.set_current_session("sess-2")
        assert ledger.get_messages() == []

    def test_switching_sessions_keeps_history_separate(self, ledger):
        ledger.set_current_session("a")
        ledger.add_message(_user("for a"))
        ledger.set_current_session("b")
        ledger.add_message(_user("for b"))
        ledger.set_current_session("a")
        ledger.add_message(_user("again a"))

        assert [m.content for m in ledger.get_messages("a")] == ["for a", "again a"]
        assert [m.content for m in ledger.get_messages("b")] == ["for b"]

    def test_get_messages_returns_copy(self, ledger):
        ledger.set_current_session("a")
        ledger.add_message(_user("x"))
        ledger.get_messages().clear()
        assert len(ledger.get_messages()) == 1


class TestConversations:
    def test_summary_tracks_count_and_user_preview(self, ledger):
        ledger.set_current_session("a")
        ledger.add_message(_user("x" * 150))
        ledger.add_message(_assistant("reply"))

        (conv,) = ledger.get_local_conversations()
        assert conv.session_id == "a"
        assert conv.message_count == 2
        assert conv.preview == "x" * 100

    def test_newest_first(self, ledger):
        ledger.import_data({"conversations": [
            {"session_id": "old", "timestamp": "2024-01-01T00:00:00+00:00"},
            {"session_id": "new", "timestamp": "2024-06-01T00:00:00+00:00"},
        ]})
        ids = [c.session_id for c in ledger.get_local_conversations()]
        assert ids == ["new", "old"]

    def test_delete_and_clear(self, ledger):
        ledger.set_current_session("a")
        ledger.add_message(_user("x"))
        ledger.set_current_session("b")
        ledger.delete_conversation("b")
        assert ledger.get_current_session() is None
        assert [c.session_id for c in ledger.get_local_conversations()] == ["a"]

        ledger.clear_all_history()
        assert ledger.get_local_conversations() == []
        assert ledger.get_messages("a") == []


class TestExportImport:
    def test_round_trip_preserves_history(self, ledger):
        ledger.set_current_session("a")
        ledger.add_message(_user("q"))
        ledger.add_message(_assistant("a"))
        data = ledger.export_data()

        restored = SessionLedger(ledger.options)
        restored.import_data(data)
        assert [m.content for m in restored.get_messages("a")] == ["q", "a"]
        assert restored.get_local_conversations()[0].message_count == 2

    def test_import_is_visible_to_attached_session(self, ledger):
        ledger.set_current_session("a")
        ledger.import_data({"messages": {"a": [{"role": "user", "content": "old"}]}})
        assert [m.content for m in ledger.get_messages()] == ["old"]
        ledger.add_message(_user("new"))
        assert [m.content for m in ledger.get_messages()] == ["old", "new"]

    def test_import_accepts_camel_case_and_epoch(self, ledger):
        ledger.import_data({
            "conversations": [
                {"sessionId": "s", "timestamp": 1_700_000_000_000, "messageCount": 3},
            ],
            "messages": {"s": [{"role": "assistant", "content": "x", "timestamp": 1_700_000_000_000}]},
        })
        (conv,) = ledger.get_local_conversations()
        assert conv.message_count == 3
        assert conv.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_invalid_entries_are_skipped(self, ledger):
        ledger.import_data({
            "conversations": ["nonsense", {"session_id": "ok"}],
            "messages": {"ok": [{"role": "robot"}, {"role": "user", "content": "fine"}]},
        })
        assert [c.session_id for c in ledger.get_local_conversations()] == ["ok"]
        assert [m.content for m in ledger.get_messages("ok")] == ["fine"]

    def test_import_nothing(self, ledger):
        ledger.import_data(None)
        ledger.import_data({})
        assert ledger.export_data() == {"conversations": [], "messages": {}}

    def test_summary_iso_round_trip(self):
        conv = ConversationSummary("s", preview="p", message_count=1)
        again = ConversationSummary.from_dict(conv.to_dict())
        assert again == conv


class TestCliConversations:
    @pytest.mark.asyncio
    async def test_lists_non_blank_lines(self):
        exec_fn = AsyncMock(return_value=ExecResult(0, None, "abc  first\n\n def second \n", ""))
        ledger = SessionLedger(
            LedgerOptions(settings=AgentSettings(), working_directory="/w"),
            exec_fn=exec_fn,
        )
        assert await ledger.list_cli_conversations() == ["abc  first", "def second"]
        assert exec_fn.await_args.args[0] == ["ls"]
        assert exec_fn.await_args.kwargs["cwd"] == "/w"

    @pytest.mark.asyncio
    async def test_failure_returns_empty(self):
        ledger = SessionLedger(
            LedgerOptions(settings=AgentSettings()),
            exec_fn=AsyncMock(return_value=ExecResult(1, None, "", "boom")),
        )
        assert await ledger.list_cli_conversations() == []

    @pytest.mark.asyncio
    async def test_missing_agent_returns_empty(self):
        ledger = SessionLedger(
            LedgerOptions(settings=AgentSettings()),
            exec_fn=AsyncMock(side_effect=AgentNotRunnableError(["cursor-agent"])),
        )
        assert await ledger.list_cli_conversations() == []

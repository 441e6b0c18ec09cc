"""Tests for ChatController wiring a bridge to the session ledger."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import logged_in, settle

from cursor_chat.adapters.chat_controller import ChatController
from cursor_chat.engine.bridge import AgentBridge, BridgeOptions
from cursor_chat.engine.config import AgentSettings
from cursor_chat.engine.errors import BridgeBusyError
from cursor_chat.engine.session import LedgerOptions, SessionLedger
from cursor_chat.shared.models.message import MessageRole
from cursor_chat.shared.services.persistence import StateStore
from cursor_chat.shared.services.prompt_builder import PromptContext


def _line(obj: dict) -> str:
    return json.dumps(obj) + "\n"


def _init(session_id: str = "sess-1") -> str:
    return _line({"type": "system", "subtype": "init", "session_id": session_id, "model": "gpt-5"})


def _assistant(text: str) -> str:
    return _line({"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}})


def _result() -> str:
    return _line({"type": "result", "subtype": "success", "duration_ms": 10})


def _make_controller(spawner, settings=None, **kwargs) -> ChatController:
    settings = settings or AgentSettings()
    bridge = AgentBridge(
        BridgeOptions(settings=settings, working_directory="/tmp"),
        spawn=spawner,
        auth_resolver=logged_in,
    )
    ledger = SessionLedger(LedgerOptions(settings=settings, working_directory="/tmp"))
    return ChatController(bridge, ledger, settings, **kwargs)


async def _complete_turn(controller, spawner, *chunks: str) -> None:
    proc = spawner.last
    for chunk in chunks:
        proc.emit_stdout(chunk)
    proc.finish(0)
    await controller.bridge.wait_closed()


def _contents(controller) -> list[tuple[MessageRole, str]]:
    return [(m.role, m.content) for m in controller.messages]


class TestTurns:
    @pytest.mark.asyncio
    async def test_single_turn(self, spawner):
        controller = _make_controller(spawner)

        assert await controller.send_prompt("  What is 2+2?  ") is True
        assert controller.is_generating
        assert [m.content for m in controller.ledger.pending_messages] == ["What is 2+2?"]

        await _complete_turn(
            controller, spawner, _init(), _assistant("It is "), _assistant("4."), _result(),
        )

        assert _contents(controller) == [
            (MessageRole.USER, "What is 2+2?"),
            (MessageRole.ASSISTANT, "It is 4."),
        ]
        assert controller.ledger.pending_messages == []
        assert controller.last_session_id == "sess-1"
        assert not controller.is_generating
        assert controller.streaming_text == ""

    @pytest.mark.asyncio
    async def test_prompt_carries_system_block_and_context(self, spawner):
        controller = _make_controller(spawner)
        await controller.send_prompt(
            "summarise", PromptContext(active_path="a.md", active_content="body"),
        )
        prompt = spawner.calls[0][1]
        assert prompt.startswith("<system_instructions>")
        assert "<path>a.md</path>" in prompt
        assert prompt.endswith("\n\nsummarise")
        await _complete_turn(controller, spawner)

    @pytest.mark.asyncio
    async def test_history_across_multiple_turns(self, spawner):
        controller = _make_controller(spawner)

        await controller.send_prompt("first")
        await _complete_turn(controller, spawner, _init(), _assistant("one"), _result())
        await controller.send_prompt("second")
        assert "--resume=sess-1" in spawner.calls[1]
        await _complete_turn(controller, spawner, _init(), _assistant("two"), _result())
        await controller.send_prompt("third")
        await _complete_turn(controller, spawner, _init(), _assistant("three"), _result())

        assert [c for _, c in _contents(controller)] == [
            "first", "one", "second", "two", "third", "three",
        ]
        (conv,) = controller.ledger.get_local_conversations()
        assert conv.message_count == 6
        assert conv.preview == "third"

    @pytest.mark.asyncio
    async def test_pending_survives_turns_without_init(self, spawner):
        controller = _make_controller(spawner)

        await controller.send_prompt("one")
        await _complete_turn(controller, spawner)
        await controller.send_prompt("two")
        await _complete_turn(controller, spawner)
        assert [m.content for m in controller.ledger.pending_messages] == ["one", "two"]

        await controller.send_prompt("three")
        await _complete_turn(controller, spawner, _init("sess-late"), _result())

        assert controller.ledger.pending_messages == []
        assert [m.content for m in controller.ledger.get_messages("sess-late")] == [
            "one", "two", "three",
        ]

    @pytest.mark.asyncio
    async def test_blank_or_busy_prompt_rejected(self, spawner):
        controller = _make_controller(spawner)
        assert await controller.send_prompt("   ") is False

        await controller.send_prompt("go")
        assert await controller.send_prompt("again") is False
        assert len(spawner.calls) == 1
        assert len(controller.ledger.pending_messages) == 1
        await _complete_turn(controller, spawner)

    @pytest.mark.asyncio
    async def test_tool_calls_recorded_as_system_messages(self, spawner):
        controller = _make_controller(spawner)
        await controller.send_prompt("read it")
        await _complete_turn(
            controller, spawner, _init(),
            _line({"type": "tool_call", "subtype": "started", "call_id": "c1",
                   "tool_call": {"readToolCall": {"args": {"path": "a.md"}}}}),
            _line({"type": "tool_call", "subtype": "completed", "call_id": "c1",
                   "tool_call": {"readToolCall": {"args": {"path": "a.md"},
                                 "result": {"success": {"content": "hi", "totalLines": 1}}}}}),
            _assistant("done"), _result(),
        )

        system = [m for m in controller.messages if m.role is MessageRole.SYSTEM]
        assert [m.content for m in system] == ["Reading a.md…", "Read a.md"]
        info = system[1].tool_calls[0]
        assert (info.id, info.kind, info.path, info.status, info.result) == (
            "c1", "read", "a.md", "completed", "hi",
        )

    @pytest.mark.asyncio
    async def test_tool_calls_hidden_when_disabled(self, spawner):
        controller = _make_controller(spawner, AgentSettings(show_tool_calls=False))
        await controller.send_prompt("read it")
        await _complete_turn(
            controller, spawner, _init(),
            _line({"type": "tool_call", "subtype": "started", "call_id": "c1",
                   "tool_call": {"readToolCall": {"args": {"path": "a.md"}}}}),
            _result(),
        )
        assert all(m.role is not MessageRole.SYSTEM for m in controller.messages)

    @pytest.mark.asyncio
    async def test_runtime_error_keeps_partial_text(self, spawner):
        controller = _make_controller(spawner)
        await controller.send_prompt("go")
        proc = spawner.last
        proc.emit_stdout(_init() + _assistant("partial"))
        proc.emit_stderr("fatal: quota exceeded\n")
        proc.finish(1)
        await controller.bridge.wait_closed()

        assert "quota exceeded" in str(controller.last_error)
        assert _contents(controller)[-1] == (MessageRole.ASSISTANT, "partial")
        assert not controller.is_generating

    @pytest.mark.asyncio
    async def test_busy_error_does_not_end_turn(self, spawner):
        controller = _make_controller(spawner)
        await controller.send_prompt("go")
        await controller.bridge.send("direct")

        assert isinstance(controller.last_error, BridgeBusyError)
        assert controller.is_generating
        await _complete_turn(controller, spawner)


class TestSessionControl:
    @pytest.mark.asyncio
    async def test_stop_commits_streamed_text(self, spawner):
        controller = _make_controller(spawner)
        await controller.send_prompt("long answer please")
        proc = spawner.last
        proc.emit_stdout(_init() + _assistant("so far"))
        await settle()
        assert controller.streaming_text == "so far"

        controller.stop()

        assert proc.killed
        assert not controller.is_generating
        assert _contents(controller)[-1] == (MessageRole.ASSISTANT, "so far")
        await controller.bridge.wait_closed()
        assert [c for _, c in _contents(controller)].count("so far") == 1

    @pytest.mark.asyncio
    async def test_new_conversation_starts_fresh(self, spawner):
        controller = _make_controller(spawner)
        await controller.send_prompt("first")
        await _complete_turn(controller, spawner, _init(), _result())

        assert controller.new_conversation() is True
        assert controller.bridge.get_session_id() is None
        assert controller.messages == []

        await controller.send_prompt("fresh")
        assert not any(a.startswith("--resume") for a in spawner.calls[1])
        await _complete_turn(controller, spawner, _init("sess-2"), _result())
        assert [c for _, c in _contents(controller)] == ["fresh"]

    @pytest.mark.asyncio
    async def test_new_conversation_refused_while_running(self, spawner):
        controller = _make_controller(spawner)
        await controller.send_prompt("first")
        assert controller.new_conversation() is False
        await _complete_turn(controller, spawner)

    @pytest.mark.asyncio
    async def test_resume_last(self, spawner):
        controller = _make_controller(spawner, last_session_id="sess-old")
        assert controller.resume_last() is True
        assert controller.bridge.get_session_id() == "sess-old"

        await controller.send_prompt("continue")
        assert "--resume=sess-old" in spawner.calls[0]
        # Attached already, so the prompt is not pending
        assert controller.ledger.pending_messages == []
        await _complete_turn(controller, spawner, _init("sess-old"), _result())
        assert [c for _, c in _contents(controller)] == ["continue"]

    def test_resume_last_without_history(self, spawner):
        controller = _make_controller(spawner)
        assert controller.resume_last() is False

    def test_detach(self, spawner):
        controller = _make_controller(spawner)
        controller.detach()
        assert controller.bridge.emitter.listener_count("init") == 0


class TestPersistence:
    @pytest.mark.asyncio
    async def test_state_saved_after_turn(self, spawner, tmp_path: Path):
        store = StateStore(tmp_path / "state.json")
        controller = _make_controller(spawner, store=store)
        await controller.send_prompt("remember me")
        await _complete_turn(controller, spawner, _init("sess-9"), _assistant("ok"), _result())

        state = store.load()
        assert state.last_session_id == "sess-9"
        saved = state.sessions["messages"]["sess-9"]
        assert [m["content"] for m in saved] == ["remember me", "ok"]

    @pytest.mark.asyncio
    async def test_only_saved_settings_are_written(self, spawner, tmp_path: Path):
        store = StateStore(tmp_path / "state.json")
        controller = _make_controller(
            spawner,
            AgentSettings(api_key="from-flag", default_model="flag-model"),
            store=store,
            saved_settings=AgentSettings(default_model="saved-model"),
        )
        controller.persist()
        raw = json.loads((tmp_path / "state.json").read_text())
        assert raw["settings"]["api_key"] == ""
        assert raw["settings"]["default_model"] == "saved-model"


class TestChatDocuments:
    @pytest.mark.asyncio
    async def test_save_and_reopen(self, spawner, tmp_path: Path):
        controller = _make_controller(spawner)
        await controller.send_prompt("Plan the release")
        await _complete_turn(controller, spawner, _init("sess-doc"), _assistant("Step 1"), _result())

        path = controller.save_chat_document(tmp_path)
        assert path == tmp_path / "Cursor Agent Chats" / "cursor-agent-sess-doc.md"

        other = _make_controller(spawner)
        assert other.open_chat_document(path) is True
        assert other.bridge.get_session_id() == "sess-doc"
        assert other.last_session_id == "sess-doc"
        assert [c for _, c in _contents(other)] == ["Plan the release", "Step 1"]

    def test_save_empty_conversation(self, spawner, tmp_path: Path):
        controller = _make_controller(spawner)
        assert controller.save_chat_document(tmp_path) is None

    def test_open_document_without_session(self, spawner, tmp_path: Path):
        doc = tmp_path / "plain.md"
        doc.write_text("# Just notes\n")
        controller = _make_controller(spawner)
        assert controller.open_chat_document(doc) is False
        assert controller.bridge.get_session_id() is None

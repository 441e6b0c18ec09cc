"""Tests for MCP approval prompt detection."""
from __future__ import annotations

from cursor_chat.engine.approval import (
    ApprovalChoice,
    ApprovalPromptDetector,
    parse_approval_prompt,
    parse_server_list,
    strip_ansi,
)

PROMPT = (
    "\x1b[33mMCP Server Approval Required\x1b[0m\n"
    "The following MCP servers need to be approved:\n"
    "  • github (url: https://mcp.github.com)\n"
    "  • filesystem\n"
    "  • github (url: https://mcp.github.com)\n"
    "\n"
    "[a] Approve all servers\n"
    "[c] Continue without approval\n"
    "[q] Quit\n"
)


class TestParsing:
    def test_strip_ansi(self):
        assert strip_ansi("\x1b[1;32mok\x1b[0m") == "ok"

    def test_full_prompt(self):
        request = parse_approval_prompt(PROMPT)
        assert request is not None
        assert [(s.name, s.url) for s in request.servers] == [
            ("github", "https://mcp.github.com"),
            ("filesystem", None),
        ]
        assert request.raw_text.startswith("MCP Server Approval Required")

    def test_incomplete_prompt(self):
        assert parse_approval_prompt("MCP Server Approval Required\n[a] Approve all servers\n") is None
        assert parse_approval_prompt("random stderr output") is None

    def test_no_server_list(self):
        text = "MCP Server Approval Required\n[a] Approve all servers\n[c] Continue without approval\n"
        request = parse_approval_prompt(text)
        assert request is not None
        assert request.servers == []

    def test_server_list_stops_at_options(self):
        servers = parse_server_list(
            "need to be approved:\n- one\n* two (url: http://x)\n[a] Approve all servers\n- three\n"
        )
        assert [s.name for s in servers] == ["one", "two"]
        assert servers[1].url == "http://x"

    def test_choice_keystrokes(self):
        assert ApprovalChoice("a") is ApprovalChoice.APPROVE_ALL
        assert ApprovalChoice.CONTINUE_WITHOUT_APPROVAL.value == "c"
        assert ApprovalChoice.QUIT.value == "q"


class TestDetector:
    def test_detects_across_chunks(self):
        det = ApprovalPromptDetector()
        results = [det.feed(PROMPT[i:i + 7]) for i in range(0, len(PROMPT), 7)]
        found = [r for r in results if r is not None]
        assert len(found) == 1
        assert det.emitted
        assert det.pending

    def test_emits_once(self):
        det = ApprovalPromptDetector()
        assert det.feed(PROMPT) is not None
        assert det.feed(PROMPT) is None
        det.mark_answered()
        assert not det.pending
        assert det.feed(PROMPT) is None

    def test_crlf_output(self):
        det = ApprovalPromptDetector()
        assert det.feed(PROMPT.replace("\n", "\r\n")) is not None

    def test_probe_is_bounded(self):
        det = ApprovalPromptDetector(max_chars=100)
        det.feed("x" * 500)
        assert det.feed(PROMPT[:40]) is None
        assert det.feed(PROMPT[40:]) is None  # head was trimmed away
        assert not det.emitted

    def test_reset_rearms(self):
        det = ApprovalPromptDetector()
        det.feed(PROMPT)
        det.reset()
        assert not det.emitted
        assert det.feed(PROMPT) is not None

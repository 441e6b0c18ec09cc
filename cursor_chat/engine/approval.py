"""Detection of the interactive MCP server approval prompt.

Some agent configurations pause before any structured output and print
a menu on stderr asking whether to trust the declared MCP servers, then
block reading one keystroke from stdin. The prompt is plain terminal
text, so it is recognised by scraping; this module is the only place
that knows its wording.

Expected shape (after stripping colour codes):

    MCP Server Approval Required
    The following MCP servers need to be approved:
      • github (url: https://mcp.github.com)
      • filesystem
    [a] Approve all servers
    [c] Continue without approval
    [q] Quit
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

MAX_PROBE_CHARS = 50_000

PROMPT_MARKER = "MCP Server Approval Required"
APPROVE_ALL_MARKER = "Approve all servers"
CONTINUE_MARKER = "Continue without"
SERVER_LIST_MARKER = "need to be approved"

_ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_SERVER_LINE_RE = re.compile(
    r"^[•*-]\s*([^(]+?)(?:\s*\(url:\s*([^)]+)\))?\s*$",
    re.IGNORECASE,
)


class ApprovalChoice(Enum):
    """Answers to the prompt; the value is the keystroke written to stdin."""
    APPROVE_ALL = "a"
    CONTINUE_WITHOUT_APPROVAL = "c"
    QUIT = "q"


@dataclass
class ServerInfo:
    name: str
    url: str | None = None


@dataclass
class ApprovalRequest:
    servers: list[ServerInfo] = field(default_factory=list)
    raw_text: str = ""


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


class ApprovalPromptDetector:
    """Scans diagnostic text for the approval prompt, once per invocation.

    ``feed`` returns the request the first time a complete prompt is seen
    and None on every other call. After detection no more text is
    buffered. ``pending`` stays true until ``mark_answered`` is called.
    """

    def __init__(self, max_chars: int = MAX_PROBE_CHARS) -> None:
        self._max_chars = max_chars
        self._probe = ""
        self._emitted = False
        self._pending = False

    @property
    def emitted(self) -> bool:
        return self._emitted

    @property
    def pending(self) -> bool:
        return self._pending

    def feed(self, text: str) -> ApprovalRequest | None:
        if self._emitted or not text:
            return None
        self._probe += text
        if len(self._probe) > self._max_chars:
            self._probe = self._probe[-self._max_chars:]

        request = parse_approval_prompt(self._probe)
        if request is None:
            return None

        self._emitted = True
        self._pending = True
        self._probe = ""
        logger.info(
            "MCP approval prompt detected (%d server(s): %s)",
            len(request.servers),
            ", ".join(s.name for s in request.servers) or "none listed",
        )
        return request

    def mark_answered(self) -> None:
        self._pending = False

    def reset(self) -> None:
        """Re-arm for a new invocation."""
        self._probe = ""
        self._emitted = False
        self._pending = False


def parse_approval_prompt(text: str) -> ApprovalRequest | None:
    """Return the request if ``text`` holds a complete approval prompt."""
    cleaned = strip_ansi(text).replace("\r", "")
    idx = cleaned.rfind(PROMPT_MARKER)
    if idx == -1:
        return None
    tail = cleaned[idx:]
    if APPROVE_ALL_MARKER not in tail or CONTINUE_MARKER not in tail:
        return None
    return ApprovalRequest(
        servers=parse_server_list(tail),
        raw_text=tail.strip(),
    )


def parse_server_list(text: str) -> list[ServerInfo]:
    """Extract the bulleted server list between the two prompt markers."""
    lines = text.split("\n")
    start = next(
        (i for i, line in enumerate(lines)
         if SERVER_LIST_MARKER in line.lower()),
        -1,
    )
    if start == -1:
        return []

    servers: list[ServerInfo] = []
    seen: set[tuple[str, str]] = set()
    for raw_line in lines[start + 1:]:
        line = raw_line.strip()
        if not line:
            continue
        if APPROVE_ALL_MARKER in line or line.startswith("["):
            break
        match = _SERVER_LINE_RE.match(line)
        if not match:
            continue
        name = match.group(1).strip()
        url = (match.group(2) or "").strip()
        key = (name, url)
        if not name or key in seen:
            continue
        seen.add(key)
        servers.append(ServerInfo(name=name, url=url or None))
    return servers

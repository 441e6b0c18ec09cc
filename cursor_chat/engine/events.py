"""Event types decoded from the agent's stream-json output.

Each NDJSON line on the agent's stdout becomes one typed dataclass.
Tool calls carry a closed set of known kinds plus an opaque fallback so
new upstream tools never break decoding.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass
class AgentEvent:
    """Base event from the agent process."""
    event_type: str = ""
    session_id: str = ""


@dataclass
class InitEvent(AgentEvent):
    event_type: str = "init"
    model: str = ""
    permission_mode: str = ""
    cwd: str = ""
    api_key_source: str = ""


@dataclass
class UserEchoEvent(AgentEvent):
    event_type: str = "user"
    content: str = ""


@dataclass
class AssistantEvent(AgentEvent):
    """A streamed fragment of the assistant's reply."""
    event_type: str = "assistant"
    content_parts: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.content_parts)


# ── Tool calls ──


@dataclass
class ReadToolResult:
    content: str = ""
    is_empty: bool = False
    exceeded_limit: bool = False
    total_lines: int = 0
    total_chars: int = 0


@dataclass
class WriteToolResult:
    path: str = ""
    lines_created: int = 0
    file_size: int = 0


@dataclass
class ReadToolCall:
    kind: str = "read"
    path: str = ""
    result: ReadToolResult | None = None
    error: str | None = None


@dataclass
class WriteToolCall:
    kind: str = "write"
    path: str = ""
    file_text: str = ""
    result: WriteToolResult | None = None
    error: str | None = None


@dataclass
class UnknownToolCall:
    """Any tool kind we do not model; keeps the raw payload."""
    kind: str = "other"
    name: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def path(self) -> str:
        args = self.raw.get("args")
        if isinstance(args, dict):
            value = args.get("path") or args.get("file_path")
            if isinstance(value, str):
                return value
        return ""


ToolCall = Union[ReadToolCall, WriteToolCall, UnknownToolCall]


@dataclass
class ToolCallStartedEvent(AgentEvent):
    event_type: str = "tool_call_started"
    call_id: str = ""
    tool: ToolCall = field(default_factory=UnknownToolCall)


@dataclass
class ToolCallCompletedEvent(AgentEvent):
    event_type: str = "tool_call_completed"
    call_id: str = ""
    tool: ToolCall = field(default_factory=UnknownToolCall)


ToolCallEvent = Union[ToolCallStartedEvent, ToolCallCompletedEvent]


@dataclass
class ResultEvent(AgentEvent):
    """Terminal event of an invocation."""
    event_type: str = "result"
    duration_ms: int = 0
    duration_api_ms: int = 0
    is_error: bool = False
    result: str = ""
    request_id: str | None = None

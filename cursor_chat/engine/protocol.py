"""Incremental decoder for cursor-agent ``--output-format stream-json``.

stdout arrives in arbitrary byte chunks. Complete lines are parsed as
JSON objects and mapped to typed events; the trailing partial line is
held back until more data arrives. Lines that are not valid events
(non-JSON noise, unknown types) are dropped.

stream-json event types:
  system/init          session metadata, always first
  user                 echo of the prompt
  assistant            text fragment(s)
  tool_call/started    tool call began
  tool_call/completed  tool call finished, with result
  result               final stats, always last
"""
from __future__ import annotations

import codecs
import json
import logging
from typing import Any

from .events import (
    AgentEvent,
    AssistantEvent,
    InitEvent,
    ReadToolCall,
    ReadToolResult,
    ResultEvent,
    ToolCall,
    ToolCallCompletedEvent,
    ToolCallStartedEvent,
    UnknownToolCall,
    UserEchoEvent,
    WriteToolCall,
    WriteToolResult,
)

logger = logging.getLogger(__name__)


class ProtocolDecoder:
    """Turns stdout byte chunks into events in line-completion order."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """The incomplete trailing line not yet parsed."""
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[AgentEvent]:
        """Consume a chunk and return events for every completed line."""
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []

        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        events: list[AgentEvent] = []
        for line in lines:
            event = parse_event(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[AgentEvent]:
        """Parse whatever is left once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        event = parse_event(line)
        return [event] if event is not None else []

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""


def parse_event(line: str) -> AgentEvent | None:
    """Parse a single stream-json line, or return None to drop it."""
    stripped = line.strip()
    if not stripped:
        return None

    try:
        data = json.loads(stripped)
    except (ValueError, RecursionError):
        logger.debug("Dropping non-JSON agent output: %.120s", stripped)
        return None

    if not isinstance(data, dict):
        logger.debug("Dropping non-object agent output: %.120s", stripped)
        return None

    etype = data.get("type")
    subtype = data.get("subtype")
    session_id = _str(data.get("session_id"))

    if etype == "system":
        if subtype != "init":
            return None
        return InitEvent(
            session_id=session_id,
            model=_str(data.get("model")),
            permission_mode=_str(data.get("permissionMode")),
            cwd=_str(data.get("cwd")),
            api_key_source=_str(data.get("apiKeySource")),
        )

    if etype == "user":
        return UserEchoEvent(
            session_id=session_id,
            content="".join(_message_texts(data)),
        )

    if etype == "assistant":
        return AssistantEvent(
            session_id=session_id,
            content_parts=_message_texts(data),
        )

    if etype == "tool_call":
        call_id = _str(data.get("call_id"))
        tool = parse_tool_call(data.get("tool_call"))
        if subtype == "started":
            return ToolCallStartedEvent(
                session_id=session_id, call_id=call_id, tool=tool,
            )
        if subtype == "completed":
            return ToolCallCompletedEvent(
                session_id=session_id, call_id=call_id, tool=tool,
            )
        logger.debug("Dropping tool_call with subtype %r", subtype)
        return None

    if etype == "result":
        request_id = data.get("request_id")
        return ResultEvent(
            session_id=session_id,
            duration_ms=_int(data.get("duration_ms")),
            duration_api_ms=_int(data.get("duration_api_ms")),
            is_error=bool(data.get("is_error", False)),
            result=_str(data.get("result")),
            request_id=request_id if isinstance(request_id, str) else None,
        )

    logger.debug("Dropping agent event of unknown type %r", etype)
    return None


def parse_tool_call(payload: Any) -> ToolCall:
    """Map a ``tool_call`` object to a known kind or UnknownToolCall.

    The payload is keyed by tool kind, e.g.
    ``{"readToolCall": {"args": {...}, "result": {"success": {...}}}}``.
    Extra keys are tolerated.
    """
    if not isinstance(payload, dict) or not payload:
        return UnknownToolCall(raw={} if not isinstance(payload, dict) else payload)

    read = payload.get("readToolCall")
    if isinstance(read, dict):
        args = _dict(read.get("args"))
        success, error = _split_result(read.get("result"))
        return ReadToolCall(
            path=_str(args.get("path")),
            result=ReadToolResult(
                content=_str(success.get("content")),
                is_empty=bool(success.get("isEmpty", False)),
                exceeded_limit=bool(success.get("exceededLimit", False)),
                total_lines=_int(success.get("totalLines")),
                total_chars=_int(success.get("totalChars")),
            ) if success is not None else None,
            error=error,
        )

    write = payload.get("writeToolCall")
    if isinstance(write, dict):
        args = _dict(write.get("args"))
        success, error = _split_result(write.get("result"))
        return WriteToolCall(
            path=_str(args.get("path")),
            file_text=_str(args.get("fileText")),
            result=WriteToolResult(
                path=_str(success.get("path")) or _str(args.get("path")),
                lines_created=_int(success.get("linesCreated")),
                file_size=_int(success.get("fileSize")),
            ) if success is not None else None,
            error=error,
        )

    name = next(iter(payload))
    raw = payload[name]
    raw_dict = raw if isinstance(raw, dict) else {"value": raw}
    _, error = _split_result(raw_dict.get("result"))
    return UnknownToolCall(name=str(name), raw=raw_dict, error=error)


# ── Helpers ──


def _message_texts(data: dict[str, Any]) -> list[str]:
    message = _dict(data.get("message"))
    content = message.get("content")
    if isinstance(content, str):
        return [content]
    parts: list[str] = []
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and item.get("type", "text") == "text":
                text = item.get("text")
                if isinstance(text, str):
                    parts.append(text)
    return parts


def _split_result(result: Any) -> tuple[dict[str, Any] | None, str | None]:
    """Return (success payload, error text) from a tool result object."""
    if not isinstance(result, dict):
        return None, None
    success = result.get("success")
    if isinstance(success, dict):
        return success, None
    error = result.get("error")
    if error is None:
        return None, None
    if isinstance(error, dict):
        message = error.get("message") or error.get("error")
        return None, str(message) if message else json.dumps(error)
    return None, str(error)


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0

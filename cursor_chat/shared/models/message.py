"""Chat message and tool call models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return str(uuid.uuid4())[:8]


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class ToolCallInfo:
    id: str
    kind: str = "other"  # read | write | other
    path: str = ""
    status: str = "started"  # started | completed
    result: str | None = None


@dataclass
class ChatMessage:
    role: MessageRole
    content: str
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)
    tool_calls: list[ToolCallInfo] = field(default_factory=list)
    streaming: bool = False


def _ensure_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (assume UTC if naive)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def message_to_dict(msg: ChatMessage) -> dict[str, Any]:
    return {
        "id": msg.id,
        "role": msg.role.value,
        "content": msg.content,
        "timestamp": msg.timestamp.isoformat(),
        "streaming": msg.streaming,
        "tool_calls": [
            {
                "id": tc.id,
                "kind": tc.kind,
                "path": tc.path,
                "status": tc.status,
                "result": tc.result,
            }
            for tc in msg.tool_calls
        ],
    }


def message_from_dict(data: dict[str, Any]) -> ChatMessage:
    raw_ts = data.get("timestamp")
    if isinstance(raw_ts, (int, float)):
        # Epoch milliseconds
        timestamp = datetime.fromtimestamp(raw_ts / 1000, tz=timezone.utc)
    elif raw_ts:
        timestamp = _ensure_aware(datetime.fromisoformat(raw_ts))
    else:
        timestamp = _utcnow()
    return ChatMessage(
        role=MessageRole(data["role"]),
        content=data.get("content", ""),
        id=data.get("id") or _gen_id(),
        timestamp=timestamp,
        streaming=data.get("streaming", False),
        tool_calls=[
            ToolCallInfo(
                id=tc.get("id", ""),
                kind=tc.get("kind", "other"),
                path=tc.get("path", ""),
                status=tc.get("status", "completed"),
                result=tc.get("result"),
            )
            for tc in data.get("tool_calls", [])
        ],
    )

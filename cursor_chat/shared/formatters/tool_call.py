"""Tool call formatting with per-kind rendering.

A registry maps each tool kind reported by cursor-agent (``read``,
``write``, anything else) to a formatter producing a small intermediate
representation. Renderers turn the IR into a plain one-line description
(stored as a system message) or Rich markup for the console.

Adding a new tool kind requires only a single decorated function:

    @tool_formatter("edit")
    def _format_edit(tool, completed):
        return FormattedToolCall(icon="✏️", label="Edit", summary=...)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable

from rich.markup import escape

from cursor_chat.engine.events import (
    ReadToolCall,
    ToolCall,
    ToolCallCompletedEvent,
    ToolCallEvent,
    UnknownToolCall,
    WriteToolCall,
)

MAX_DISPLAY_CHARS = 5_000


# ── Intermediate Representation ──


@dataclass
class Section:
    """A typed content section in the expanded tool call view.

    Supported kinds:
        "path"  → content: str (file path)
        "code"  → content: {"language": str, "text": str}
        "kv"    → content: dict[str, str]
        "plain" → content: str
    """

    kind: str
    title: str = ""
    content: Any = None


@dataclass
class FormattedToolCall:
    """Structured representation of a formatted tool call."""

    icon: str = ""
    label: str = ""
    summary: str = ""
    status: str = "pending"  # pending | done | error
    file_path: str = ""
    description: str = ""
    sections: list[Section] = field(default_factory=list)


# ── Registry ──

_FORMATTERS: dict[str, Callable[[Any, bool], FormattedToolCall]] = {}


def tool_formatter(kind: str):
    """Decorator to register a formatter for a given tool kind."""

    def decorator(fn: Callable[[Any, bool], FormattedToolCall]):
        _FORMATTERS[kind] = fn
        return fn

    return decorator


def format_tool_call(event: ToolCallEvent) -> FormattedToolCall:
    """Main entry point: dispatch to a registered formatter or the default."""
    completed = isinstance(event, ToolCallCompletedEvent)
    tool: ToolCall = event.tool
    formatter = _FORMATTERS.get(tool.kind, _format_default)
    fmt = formatter(tool, completed)
    if tool.error:
        fmt.status = "error"
        fmt.sections.append(Section(kind="plain", title="Error", content=tool.error))
    elif completed:
        fmt.status = "done"
    return fmt


def describe_tool_call(event: ToolCallEvent) -> str:
    """One-line description, e.g. ``Reading notes/a.md…`` or ``Wrote b.md``."""
    return format_tool_call(event).description


# ── Helpers ──


def _basename(path: str) -> str:
    """Extract a short display path (last 2 components)."""
    if not path:
        return ""
    parts = path.replace("\\", "/").rstrip("/").split("/")
    return "/".join(parts[-2:]) if len(parts) >= 2 else parts[-1]


def _trunc(text: str, length: int = 60) -> str:
    """Truncate text with ellipsis."""
    if not text:
        return ""
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


def truncate_result(text: str | None, limit: int = MAX_DISPLAY_CHARS) -> str | None:
    if not text:
        return None
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n\n… (truncated {len(text) - limit:,} chars)"


# ── Formatters ──


@tool_formatter("read")
def _format_read(tool: ReadToolCall, completed: bool) -> FormattedToolCall:
    sections: list[Section] = []
    if tool.path:
        sections.append(Section(kind="path", content=tool.path))
    res = tool.result
    summary = _basename(tool.path)
    if res is not None:
        if res.total_lines:
            summary += f" ({res.total_lines} lines)"
        text = truncate_result(res.content)
        if text:
            sections.append(
                Section(kind="code", title="Content",
                        content={"language": "text", "text": text})
            )
        elif res.is_empty:
            sections.append(Section(kind="plain", content="(empty file)"))

    return FormattedToolCall(
        icon="\U0001f4c4",
        label="Read",
        summary=summary,
        file_path=tool.path,
        description=f"Read {tool.path}" if completed else f"Reading {tool.path}…",
        sections=sections,
    )


@tool_formatter("write")
def _format_write(tool: WriteToolCall, completed: bool) -> FormattedToolCall:
    sections: list[Section] = []
    if tool.path:
        sections.append(Section(kind="path", content=tool.path))
    res = tool.result
    summary = _basename(tool.path)
    if res is not None:
        summary += f" ({res.lines_created} lines, {res.file_size} bytes)"
        sections.append(
            Section(kind="kv", content={
                "path": res.path,
                "lines": str(res.lines_created),
                "bytes": str(res.file_size),
            })
        )

    return FormattedToolCall(
        icon="\U0001f4dd",
        label="Write",
        summary=summary,
        file_path=tool.path,
        description=f"Wrote {tool.path}" if completed else f"Writing {tool.path}…",
        sections=sections,
    )


def _format_default(tool: UnknownToolCall, completed: bool) -> FormattedToolCall:
    """Fallback formatter for unrecognised tool kinds."""
    args = tool.raw.get("args") if isinstance(tool.raw, dict) else None
    sections: list[Section] = []
    summary = ""
    if isinstance(args, dict) and args:
        display_args = {k: _trunc(str(v), 80) for k, v in args.items()}
        summary = _trunc(", ".join(f"{k}={v}" for k, v in display_args.items()), 50)
        sections.append(Section(kind="kv", content=display_args))
    result = tool.raw.get("result") if isinstance(tool.raw, dict) else None
    if result is not None:
        text = result if isinstance(result, str) else json.dumps(result, indent=2)
        sections.append(Section(kind="plain", title="Output",
                                content=truncate_result(text)))

    status = "completed" if completed else "started"
    return FormattedToolCall(
        icon="\U0001f527",
        label=tool.name or "Tool",
        summary=summary,
        file_path=tool.path,
        description=f"Tool call: {status}",
        sections=sections,
    )


# ── Rich Markup Renderer (console) ──


def render_tool_call_rich(fmt: FormattedToolCall, *, expanded: bool = False) -> str:
    """Render a tool call as Rich markup; collapsed unless ``expanded``."""
    status_markup = {
        "pending": "[yellow]\\[running][/yellow]",
        "done": "[green]done[/green]",
        "error": "[red]error[/red]",
    }.get(fmt.status, f"[dim]{escape(fmt.status)}[/dim]")

    parts = ["[dim]▶[/dim]"]
    if fmt.icon:
        parts.append(fmt.icon)
    parts.append(f"[cyan]{escape(fmt.label)}[/cyan]")
    if fmt.summary:
        parts.append(f"[dim]{escape(fmt.summary)}[/dim]")
    parts.append(status_markup)
    header = "  ".join(parts)
    if not expanded:
        return header

    lines = [header]
    for section in fmt.sections:
        if section.title:
            lines.append(f"  [bold]{escape(section.title)}[/bold]")
        if section.kind == "path":
            lines.append(f"  [underline]{escape(str(section.content))}[/underline]")
        elif section.kind == "code":
            text = section.content.get("text", "") if section.content else ""
            lines.extend(f"    {escape(line)}" for line in text.splitlines())
        elif section.kind == "kv":
            for key, value in (section.content or {}).items():
                lines.append(f"  [dim]{escape(key)}:[/dim] {escape(value)}")
        else:
            lines.extend(
                f"  {escape(line)}" for line in str(section.content or "").splitlines()
            )
    return "\n".join(lines)

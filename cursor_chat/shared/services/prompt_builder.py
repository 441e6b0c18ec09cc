"""Compose the full prompt text sent to cursor-agent.

Layout:
    <system_instructions> ... </system_instructions>
    <active_note> path + content </active_note>     (optional)
    <context_paths> <item type=...>path</item> </context_paths>  (optional)
    user message

Context paths are passed by path only so the agent decides what to read.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from cursor_chat.shared.file_utils import ContextPath

SYSTEM_INSTRUCTIONS = """\
You are an AI assistant running inside a terminal chat session. The \
user's project directory is your working directory.

Your capabilities:
- Search and read files in the project
- Create, edit, and organize files
- Answer questions about the project and its documents
- Help with writing, summarizing, and restructuring content

Guidelines:
- Use markdown formatting in your responses
- Refer to files by their path relative to the working directory
- Respect the user's existing structure
- Be concise and helpful
- If asked to modify files, confirm the changes before proceeding unless \
in unattended mode"""


@dataclass
class PromptContext:
    active_path: str | None = None
    active_content: str | None = None
    # Usually left blank: the bridge already prefixes custom instructions.
    custom_instructions: str = ""
    context_paths: list[ContextPath] = field(default_factory=list)


def build_prompt(user_message: str, context: PromptContext | None = None) -> str:
    context = context or PromptContext()
    parts = [f"<system_instructions>\n{SYSTEM_INSTRUCTIONS}"]
    if context.custom_instructions.strip():
        parts.append(f"\n\n{context.custom_instructions.strip()}")
    parts.append("\n</system_instructions>")

    if context.active_path and context.active_content is not None:
        parts.append(
            f"\n\n<active_note>\n<path>{context.active_path}</path>\n"
            f"<content>\n{context.active_content}\n</content>\n</active_note>"
        )

    if context.context_paths:
        items = "\n".join(
            f'<item type="{c.type}">{c.path}</item>' for c in context.context_paths
        )
        parts.append(f"\n\n<context_paths>\n{items}\n</context_paths>")

    parts.append(f"\n\n{user_message}")
    return "".join(parts)

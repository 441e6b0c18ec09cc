"""Chat documents: conversations saved as Markdown files.

A chat document is a Markdown file with YAML front matter identifying
the remote session so it can be reopened and resumed:

    ---
    cursor_agent_chat: true
    cursor_agent_session_id: 6f1c...
    cursor_agent_model: gpt-5
    cursor_agent_created_epoch: 1760000000000
    cursor_agent_title: Refactor the parser
    ---
    # Refactor the parser

    <!-- cursor-agent-chat-message role=user ts=1760000000000 -->
    **user**:
    Refactor the parser

Documents live under ``<root>/<chat history folder>/``; the marker
comment is what ``parse_chat_note_content`` keys on, the bold role line
is only for human readers.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from cursor_chat.engine.config import DEFAULT_HISTORY_FOLDER
from cursor_chat.shared.models.message import ChatMessage, MessageRole
from cursor_chat.shared.services.durable_write import atomic_write_text

logger = logging.getLogger(__name__)

KEY_IS_CHAT = "cursor_agent_chat"
KEY_SESSION_ID = "cursor_agent_session_id"
KEY_MODEL = "cursor_agent_model"
KEY_CREATED_EPOCH = "cursor_agent_created_epoch"
KEY_TITLE = "cursor_agent_title"

MAX_TITLE_CHARS = 120
DEFAULT_TITLE = "Chat"

_FRONT_MATTER_RE = re.compile(r"^---\n(.*?)\n---\n?", re.DOTALL)
_UNSAFE_CHARS_RE = re.compile(r'[\\/:*?"<>|]')
_MESSAGE_RE = re.compile(
    r"<!--\s*cursor-agent-chat-message\s+role=(user|assistant|system)"
    r"\s+ts=(\d+)\s*-->\n(.*?)"
    r"(?=\n<!--\s*cursor-agent-chat-message\s+role=|\Z)",
    re.DOTALL,
)


@dataclass
class ChatNoteMeta:
    session_id: str | None
    model: str | None
    created_epoch: int  # milliseconds
    title: str


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _now_ms() -> int:
    return _epoch_ms(datetime.now(timezone.utc))


def get_chat_history_folder(setting: str | None) -> str:
    """Normalise the configured folder to a relative path."""
    folder = (setting or "").strip().strip("/").strip()
    return folder or DEFAULT_HISTORY_FOLDER


def sanitize_for_filename(text: str) -> str:
    cleaned = _UNSAFE_CHARS_RE.sub("-", text.strip())
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned[:MAX_TITLE_CHARS].strip()


def default_title(messages: list[ChatMessage]) -> str:
    """Title from the first line of the first user message."""
    first_user = next(
        (m.content.strip() for m in messages if m.role is MessageRole.USER),
        "",
    )
    if not first_user:
        return DEFAULT_TITLE
    return sanitize_for_filename(first_user.split("\n", 1)[0]) or DEFAULT_TITLE


def build_chat_note_path(
    folder_setting: str | None,
    session_id: str | None,
    created_epoch: int,
) -> str:
    """Relative POSIX path of the document for a session."""
    folder = get_chat_history_folder(folder_setting)
    safe_id = re.sub(r"\s", "", sanitize_for_filename(session_id or ""))
    base = f"cursor-agent-{safe_id or created_epoch}"
    return f"{folder}/{base}.md"


def build_chat_note_content(meta: ChatNoteMeta, messages: list[ChatMessage]) -> str:
    front_matter = yaml.safe_dump(
        {
            KEY_IS_CHAT: True,
            KEY_SESSION_ID: meta.session_id or "",
            KEY_MODEL: meta.model or "",
            KEY_CREATED_EPOCH: meta.created_epoch,
            KEY_TITLE: meta.title,
        },
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    blocks = []
    for msg in messages:
        role = msg.role.value
        blocks.append("\n".join([
            f"<!-- cursor-agent-chat-message role={role} ts={_epoch_ms(msg.timestamp)} -->",
            f"**{role}**:",
            msg.content.rstrip(),
            "",
        ]))
    text = f"---\n{front_matter}---\n# {meta.title}\n\n" + "\n".join(blocks)
    return text.rstrip() + "\n"


def split_front_matter(markdown: str) -> tuple[dict[str, Any], str]:
    """Return (front matter mapping, body). Invalid YAML yields {}."""
    match = _FRONT_MATTER_RE.match(markdown)
    if not match:
        return {}, markdown
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        logger.warning("Invalid chat document front matter: %s", exc)
        data = None
    return (data if isinstance(data, dict) else {}), markdown[match.end():]


def parse_chat_note_content(markdown: str) -> list[ChatMessage]:
    """Messages recorded in a chat document, in file order."""
    _, body = split_front_matter(markdown)
    messages: list[ChatMessage] = []
    for match in _MESSAGE_RE.finditer(body):
        role = match.group(1)
        ts = int(match.group(2)) or _now_ms()
        content = match.group(3).strip()
        content = re.sub(
            rf"^\*\*{role}\*\*:\s*\n?", "", content, flags=re.IGNORECASE,
        ).strip()
        messages.append(ChatMessage(
            role=MessageRole(role),
            content=content,
            timestamp=datetime.fromtimestamp(ts / 1000, tz=timezone.utc),
        ))
    return messages


def read_chat_note_meta(path: Path, markdown: str | None = None) -> ChatNoteMeta:
    path = Path(path)
    if markdown is None:
        markdown = path.read_text(encoding="utf-8")
    fm, _ = split_front_matter(markdown)

    created = fm.get(KEY_CREATED_EPOCH)
    if not isinstance(created, int) or isinstance(created, bool):
        created = int(path.stat().st_ctime * 1000) if path.exists() else _now_ms()
    session_id = fm.get(KEY_SESSION_ID)
    model = fm.get(KEY_MODEL)
    title = fm.get(KEY_TITLE)
    return ChatNoteMeta(
        session_id=str(session_id) if session_id else None,
        model=str(model) if model else None,
        created_epoch=created,
        title=str(title) if title else path.stem,
    )


def is_chat_note(markdown: str) -> bool:
    fm, _ = split_front_matter(markdown)
    return fm.get(KEY_IS_CHAT) is True


def load_chat_note(path: Path) -> tuple[ChatNoteMeta, list[ChatMessage]]:
    markdown = Path(path).read_text(encoding="utf-8")
    return read_chat_note_meta(path, markdown), parse_chat_note_content(markdown)


def _ensure_folder(root: Path, folder: str) -> Path:
    target = (root / folder).resolve()
    root_resolved = root.resolve()
    if target != root_resolved and root_resolved not in target.parents:
        raise ValueError(f"Chat history folder escapes {root}: {folder}")
    if target.exists() and not target.is_dir():
        raise NotADirectoryError(f"Path exists and is not a folder: {target}")
    target.mkdir(parents=True, exist_ok=True)
    return target


def save_chat_as_note(
    root: Path,
    folder_setting: str | None,
    *,
    session_id: str | None,
    model: str | None,
    messages: list[ChatMessage],
    title: str | None = None,
    created_epoch: int | None = None,
) -> tuple[Path, ChatNoteMeta]:
    """Write (or overwrite) the document for a conversation."""
    root = Path(root)
    if created_epoch is None:
        created_epoch = _epoch_ms(messages[0].timestamp) if messages else _now_ms()
    meta = ChatNoteMeta(
        session_id=session_id,
        model=model,
        created_epoch=created_epoch,
        title=sanitize_for_filename(title) if title else default_title(messages),
    )
    if not meta.title:
        meta.title = DEFAULT_TITLE

    _ensure_folder(root, get_chat_history_folder(folder_setting))
    path = root / build_chat_note_path(folder_setting, session_id, created_epoch)
    atomic_write_text(path, build_chat_note_content(meta, messages))
    logger.info("Saved chat document %s (%d messages)", path, len(messages))
    return path, meta


def list_chat_history_files(root: Path, folder_setting: str | None) -> list[Path]:
    """Markdown files in the history folder, newest first."""
    folder = Path(root) / get_chat_history_folder(folder_setting)
    if not folder.is_dir():
        return []
    files = list(folder.rglob("*.md"))
    metas = {}
    for file in files:
        try:
            metas[file] = read_chat_note_meta(file).created_epoch
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Skipping unreadable chat document %s: %s", file, exc)
    return sorted(metas, key=lambda f: metas[f], reverse=True)

"""File utilities: working directory confinement and @ context references.

The agent's working directory and every path handed to it as context must
stay inside the host's base directory.

Provides:
- resolve_working_directory: base dir + setting -> absolute agent cwd
- ContextPath: a note or folder mentioned in a prompt
- extract_context_paths: parse @path tokens into ContextPath items
- read_active_file: load a file's text for the <active_note> block
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

MAX_FILE_SIZE: int = 100 * 1024  # 100KB


def resolve_working_directory(base: str | Path, setting: str | None) -> Path:
    """Resolve the configured working directory against ``base``.

    Blank means ``base`` itself. Raises ValueError if the result would
    fall outside ``base``.
    """
    base_path = Path(base).resolve()
    trimmed = (setting or "").strip()
    if not trimmed:
        return base_path

    resolved = (base_path / trimmed).resolve()
    try:
        resolved.relative_to(base_path)
    except ValueError:
        raise ValueError(
            f"Working directory must be within {base_path}: {trimmed}"
        ) from None
    return resolved


# ── Context references ──────────────────────────────────────


@dataclass
class ContextPath:
    """A note (file) or folder passed to the agent by path only."""

    type: str  # "note" | "folder"
    path: str  # Relative to the base directory


_REF_PATTERN = re.compile(r"(?:^|(?<=\s))@([\w./\-]+)", re.MULTILINE)
_BACKTICK_BLOCK = re.compile(r"```[\s\S]*?```")
_BACKTICK_INLINE = re.compile(r"`[^`]*`")


def extract_context_paths(text: str, base: Path) -> list[ContextPath]:
    """Parse @path references from ``text``.

    Parsing rules:
    - '@' inside backtick-delimited regions is ignored
    - Paths are resolved relative to ``base``; anything outside is skipped
    - Missing paths produce no entry
    """
    if "@" not in text:
        return []

    masked: set[int] = set()
    for m in _BACKTICK_BLOCK.finditer(text):
        masked.update(range(m.start(), m.end()))
    for m in _BACKTICK_INLINE.finditer(text):
        masked.update(range(m.start(), m.end()))

    base = Path(base).resolve()
    found: list[ContextPath] = []
    seen: set[str] = set()
    for m in _REF_PATTERN.finditer(text):
        if m.start() in masked:
            continue
        ref_path = m.group(1).rstrip(".")
        if not ref_path or ref_path in seen:
            continue
        seen.add(ref_path)

        resolved = (base / ref_path).resolve()
        try:
            rel = resolved.relative_to(base).as_posix()
        except ValueError:
            continue
        if resolved.is_file():
            found.append(ContextPath(type="note", path=rel))
        elif resolved.is_dir():
            found.append(ContextPath(type="folder", path=rel))
    return found


def read_active_file(path: Path) -> str | None:
    """Read a text file for prompt context, or None if binary/unreadable."""
    try:
        with open(path, "rb") as f:
            head = f.read(1024)
        if b"\x00" in head:
            return None
        content = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    if len(content) > MAX_FILE_SIZE:
        content = content[:MAX_FILE_SIZE]
    return content

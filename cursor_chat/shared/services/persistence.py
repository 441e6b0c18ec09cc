"""Persistent state: settings, conversation history and the last session.

Storage layout:
    ~/.cursor_chat/state.json

    {
      "settings": {...AgentSettings...},
      "sessions": {...SessionLedger.export_data()...},
      "last_session_id": "..." | null
    }

Older files that hold the settings object at the top level (no
``settings`` key) are still accepted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cursor_chat.engine.config import AgentSettings
from cursor_chat.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

_IMPORTED_BASE_DIR = Path.home() / ".cursor_chat"
BASE_DIR = _IMPORTED_BASE_DIR
STATE_FILENAME = "state.json"

# camelCase keys written by earlier releases
_LEGACY_SETTING_KEYS = {
    "apiKey": "api_key",
    "cursorAgentPath": "agent_path",
    "defaultModel": "default_model",
    "workingDirectory": "working_directory",
    "permissionMode": "permission_mode",
    "customInstructions": "custom_instructions",
    "showToolCalls": "show_tool_calls",
    "chatHistoryFolder": "chat_history_folder",
}


def _resolve_base_dir() -> Path:
    """Resolve the state dir at runtime.

    If tests monkeypatch BASE_DIR, respect it; otherwise re-evaluate
    from the current HOME.
    """
    base_dir = Path(BASE_DIR)
    if base_dir != _IMPORTED_BASE_DIR:
        return base_dir
    return Path.home() / ".cursor_chat"


def default_state_path() -> Path:
    return _resolve_base_dir() / STATE_FILENAME


@dataclass
class PersistedState:
    settings: AgentSettings = field(default_factory=AgentSettings)
    sessions: dict[str, Any] = field(default_factory=dict)
    last_session_id: str | None = None


class StateStore:
    """Load and save PersistedState as JSON with atomic writes."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else default_state_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> PersistedState:
        """Read state from disk, returning defaults if missing or corrupt."""
        if not self._path.exists():
            logger.debug("State file not found at %s; using defaults", self._path)
            return PersistedState()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read state from %s: %s", self._path, exc)
            return PersistedState()
        if not isinstance(raw, dict):
            logger.warning("Ignoring non-object state file %s", self._path)
            return PersistedState()

        settings_raw = raw.get("settings")
        if not isinstance(settings_raw, dict):
            # Legacy flat layout
            settings_raw = raw
        settings = AgentSettings.from_dict(_normalize_setting_keys(settings_raw))

        sessions = raw.get("sessions")
        last = raw.get("last_session_id", raw.get("lastSessionId"))
        state = PersistedState(
            settings=settings,
            sessions=sessions if isinstance(sessions, dict) else {},
            last_session_id=last if isinstance(last, str) and last else None,
        )
        logger.debug(
            "Loaded state from %s (last_session_id=%s)",
            self._path, (state.last_session_id or "none")[:8],
        )
        return state

    def save(self, state: PersistedState) -> None:
        data = {
            "settings": state.settings.to_dict(),
            "sessions": state.sessions,
            "last_session_id": state.last_session_id,
        }
        atomic_write_json(self._path, data)
        logger.debug("Saved state to %s", self._path)

    def reset(self) -> PersistedState:
        """Discard stored state; returns fresh defaults."""
        self._path.unlink(missing_ok=True)
        return PersistedState()


def _normalize_setting_keys(data: dict[str, Any]) -> dict[str, Any]:
    return {_LEGACY_SETTING_KEYS.get(k, k): v for k, v in data.items()}

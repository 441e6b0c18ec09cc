"""Agent settings loaded from defaults, environment variables and files.

All settings have sensible defaults. Override via CURSOR_CHAT_* env vars
or a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Environment credential read by cursor-agent itself.
API_KEY_ENV = "CURSOR_API_KEY"

DEFAULT_HISTORY_FOLDER = "Cursor Agent Chats"


class PermissionMode(Enum):
    DEFAULT = "default"
    # Unattended: tools and integrations run without asking.
    FORCE = "force"


@dataclass
class AgentSettings:
    """Read-only snapshot of the user's agent configuration.

    Attributes:
        api_key: Only used when neither the environment credential nor
            the CLI login is available.
        agent_path: Optional absolute path to the ``cursor-agent`` binary.
            Recommended when the host does not inherit the shell PATH.
        default_model: Model passed to fresh (non-resumed) sessions.
        working_directory: Directory the agent runs in, relative to the
            host's base directory. Blank means the base directory itself.
        permission_mode: "default" or "force" (unattended).
        custom_instructions: Prefixed to every prompt.
        show_tool_calls: Record tool calls as system messages.
        chat_history_folder: Folder for saved chat documents.
    """

    api_key: str = ""
    agent_path: str = ""
    default_model: str = ""
    working_directory: str = ""
    permission_mode: str = PermissionMode.DEFAULT.value
    custom_instructions: str = ""
    show_tool_calls: bool = True
    chat_history_folder: str = DEFAULT_HISTORY_FOLDER

    @property
    def unattended(self) -> bool:
        return self.permission_mode == PermissionMode.FORCE.value

    def validate(self) -> None:
        """Ensure all values are within allowed ranges."""
        for name in (
            "api_key", "agent_path", "default_model", "working_directory",
            "custom_instructions", "chat_history_folder",
        ):
            value = getattr(self, name)
            if not isinstance(value, str):
                setattr(self, name, "" if value is None else str(value))
        self.agent_path = self.agent_path.strip()
        self.default_model = self.default_model.strip()
        if self.permission_mode not in {m.value for m in PermissionMode}:
            logger.warning(
                "Unknown permission_mode %r; using default",
                self.permission_mode,
            )
            self.permission_mode = PermissionMode.DEFAULT.value
        if not isinstance(self.show_tool_calls, bool):
            self.show_tool_calls = _parse_bool(str(self.show_tool_calls), True)
        if not self.chat_history_folder.strip():
            self.chat_history_folder = DEFAULT_HISTORY_FOLDER

    def merged(self, overrides: dict[str, Any]) -> AgentSettings:
        """Return a copy with known keys from ``overrides`` applied."""
        known = {f.name for f in fields(self)}
        data = asdict(self)
        for key, value in overrides.items():
            if key in known:
                data[key] = value
        settings = AgentSettings(**data)
        settings.validate()
        return settings

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AgentSettings:
        """Build settings from a persisted dict, ignoring unknown keys."""
        return cls().merged(data or {})

    @classmethod
    def from_env(cls, base: AgentSettings | None = None) -> AgentSettings:
        """Apply CURSOR_CHAT_* environment variables on top of ``base``."""
        base = base or cls()
        env_vars = {
            k: v for k, v in os.environ.items()
            if k.startswith("CURSOR_CHAT_")
        }
        if env_vars:
            logger.info(
                "AgentSettings.from_env: overrides: %s",
                ", ".join(
                    sorted(k for k in env_vars if k != "CURSOR_CHAT_API_KEY")
                    + (["CURSOR_CHAT_API_KEY=***"]
                       if "CURSOR_CHAT_API_KEY" in env_vars else [])
                ),
            )
        else:
            logger.debug("AgentSettings.from_env: no CURSOR_CHAT_* vars set")

        overrides: dict[str, Any] = {}
        mapping = {
            "CURSOR_CHAT_AGENT_PATH": "agent_path",
            "CURSOR_CHAT_API_KEY": "api_key",
            "CURSOR_CHAT_MODEL": "default_model",
            "CURSOR_CHAT_CWD": "working_directory",
            "CURSOR_CHAT_PERMISSION_MODE": "permission_mode",
            "CURSOR_CHAT_CUSTOM_INSTRUCTIONS": "custom_instructions",
            "CURSOR_CHAT_HISTORY_FOLDER": "chat_history_folder",
        }
        for env_name, field_name in mapping.items():
            if env_name in env_vars:
                overrides[field_name] = env_vars[env_name]
        if "CURSOR_CHAT_SHOW_TOOL_CALLS" in env_vars:
            overrides["show_tool_calls"] = _parse_bool(
                env_vars["CURSOR_CHAT_SHOW_TOOL_CALLS"], base.show_tool_calls
            )
        return base.merged(overrides)


def _parse_bool(raw: str, default: bool) -> bool:
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default

"""YAML configuration loader.

Loads agent settings from a single YAML file. Only the ``agent`` section
is read; other top-level sections are left for the host application.

Example YAML:
    agent:
      agent_path: /opt/homebrew/bin/cursor-agent
      default_model: sonnet-4
      working_directory: notes/projects
      permission_mode: default      # or "force" for unattended runs
      custom_instructions: |
        Answer in British English.
      show_tool_calls: true
      chat_history_folder: Cursor Agent Chats
"""
from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from .config import AgentSettings

logger = logging.getLogger(__name__)


class ConfigFileError(ValueError):
    """The configuration file exists but cannot be used."""
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config file {path}: {reason}")


def load_yaml_config(
    path: str | Path,
    base: AgentSettings | None = None,
) -> AgentSettings:
    """Load the ``agent`` section of a YAML file on top of ``base``.

    Raises ConfigFileError when the file is unreadable or malformed.
    Unknown keys are ignored with a warning.
    """
    config_path = Path(path).expanduser()
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigFileError(config_path, str(exc)) from exc
    except yaml.YAMLError as exc:
        raise ConfigFileError(config_path, f"YAML parse error: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigFileError(config_path, "top level must be a mapping")

    section: Any = raw.get("agent", {})
    if section is None:
        section = {}
    if not isinstance(section, dict):
        raise ConfigFileError(config_path, "'agent' must be a mapping")

    known = {f.name for f in fields(AgentSettings)}
    unknown = sorted(k for k in section if k not in known)
    if unknown:
        logger.warning(
            "Ignoring unknown agent settings in %s: %s",
            config_path, ", ".join(unknown),
        )

    settings = (base or AgentSettings()).merged(section)
    logger.info(
        "Loaded config %s: model=%s permission_mode=%s agent_path=%s",
        config_path,
        settings.default_model or "<default>",
        settings.permission_mode,
        settings.agent_path or "<PATH>",
    )
    return settings

"""Resolve the cursor-agent command and its process environment.

Host GUI applications often start without the user's interactive shell
PATH, so the usual user/Homebrew binary directories are prepended to
whatever PATH the host has.
"""
from __future__ import annotations

import os
import sys
from collections.abc import Iterable, Mapping

from .config import AgentSettings

AGENT_COMMAND = "cursor-agent"


def is_windows(platform: str | None = None) -> bool:
    return (platform or sys.platform).startswith("win")


def get_command_candidates(
    settings: AgentSettings,
    platform: str | None = None,
) -> list[str]:
    """Ordered commands to try when spawning the agent.

    An explicit configured path is the only candidate.
    """
    configured = (settings.agent_path or "").strip()
    if configured:
        return [configured]

    if is_windows(platform):
        return [
            f"{AGENT_COMMAND}.cmd",
            f"{AGENT_COMMAND}.exe",
            f"{AGENT_COMMAND}.bat",
            AGENT_COMMAND,
        ]
    return [AGENT_COMMAND]


def get_path_key(env: Mapping[str, str]) -> str:
    """Windows spells it "Path" (case varies); keep the existing key."""
    return next((k for k in env if k.lower() == "path"), "PATH")


def path_delimiter(platform: str | None = None) -> str:
    return ";" if is_windows(platform) else ":"


def split_path(value: str | None, platform: str | None = None) -> list[str]:
    if not value:
        return []
    return [
        p.strip() for p in value.split(path_delimiter(platform)) if p.strip()
    ]


def unique(items: Iterable[str]) -> list[str]:
    """De-duplicate keeping the first occurrence."""
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def default_path_additions(
    env: Mapping[str, str],
    platform: str | None = None,
) -> list[str]:
    if is_windows(platform):
        return []
    additions: list[str] = []
    home = (env.get("HOME") or "").strip()
    if home:
        additions.extend([f"{home}/.local/bin", f"{home}/bin"])
    # Homebrew (Apple silicon, Intel) and common local installs
    additions.extend(["/opt/homebrew/bin", "/usr/local/bin"])
    return additions


def build_agent_env(
    settings: AgentSettings,
    base_env: Mapping[str, str] | None = None,
    platform: str | None = None,
) -> dict[str, str]:
    """Copy of the environment with an augmented search path."""
    env = dict(os.environ if base_env is None else base_env)
    key = get_path_key(env)
    merged = unique([
        *default_path_additions(env, platform),
        *split_path(env.get(key), platform),
    ])
    env[key] = path_delimiter(platform).join(merged)
    return env

"""Authentication source resolution for cursor-agent.

Precedence, first match wins:
  1. CURSOR_API_KEY in the environment (the agent reads it itself)
  2. CLI login reported by ``cursor-agent status``
  3. API key from settings, passed as ``--api-key``
  4. Unauthenticated

The status probe is optimistic: a zero exit code with ambiguous output
counts as logged in. A wrong guess surfaces as a clear runtime error
from the real invocation instead of blocking the send.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from .config import API_KEY_ENV, AgentSettings
from .errors import AgentSpawnError
from .process import ExecResult, exec_agent

logger = logging.getLogger(__name__)

STATUS_TIMEOUT = 5.0
VERSION_TIMEOUT = 5.0
LOGIN_TIMEOUT = 60.0


class AuthSource(Enum):
    ENVIRONMENT = "environment"
    CLI_LOGIN = "cli-login"
    API_KEY = "api-key"
    NONE = "none"


@dataclass
class AuthResult:
    is_authenticated: bool
    source: AuthSource
    extra_args: list[str] = field(default_factory=list)


async def resolve_auth(
    settings: AgentSettings,
    cwd: str | None,
    *,
    env: Mapping[str, str] | None = None,
) -> AuthResult:
    """Decide whether and how the agent process should authenticate."""
    env = os.environ if env is None else env
    if (env.get(API_KEY_ENV) or "").strip():
        logger.debug("Auth: using %s from environment", API_KEY_ENV)
        return AuthResult(True, AuthSource.ENVIRONMENT)

    if await check_cli_login(settings, cwd):
        logger.debug("Auth: cursor-agent CLI login")
        return AuthResult(True, AuthSource.CLI_LOGIN)

    key = (settings.api_key or "").strip()
    if key:
        logger.debug("Auth: using API key from settings")
        return AuthResult(True, AuthSource.API_KEY, ["--api-key", key])

    logger.info("Auth: no credential source available")
    return AuthResult(False, AuthSource.NONE)


async def check_cli_login(settings: AgentSettings, cwd: str | None) -> bool:
    """Probe ``cursor-agent status`` and classify its output."""
    try:
        res = await exec_agent(
            ["status"], cwd=cwd, settings=settings, timeout=STATUS_TIMEOUT,
        )
    except AgentSpawnError as exc:
        logger.warning("Login status probe failed: %s", exc)
        return False

    logger.debug(
        "Login status probe: code=%s stdout=%.100s", res.code, res.stdout,
    )
    return classify_status_output(res)


def classify_status_output(res: ExecResult) -> bool:
    out = f"{res.stdout}\n{res.stderr}".lower()
    if "not logged" in out:
        return False
    if "logged in" in out or "authenticated" in out:
        return True
    return res.code == 0


async def is_agent_installed(settings: AgentSettings, cwd: str | None) -> bool:
    """True when ``cursor-agent --version`` runs and exits cleanly."""
    try:
        res = await exec_agent(
            ["--version"], cwd=cwd, settings=settings, timeout=VERSION_TIMEOUT,
        )
    except AgentSpawnError as exc:
        logger.info("cursor-agent not installed: %s", exc)
        return False
    return res.code == 0


async def open_login_flow(
    settings: AgentSettings,
    cwd: str | None,
) -> ExecResult:
    """Run ``cursor-agent login``; it usually opens a browser."""
    logger.info("Starting cursor-agent login flow")
    return await exec_agent(
        ["login"], cwd=cwd, settings=settings, timeout=LOGIN_TIMEOUT,
    )

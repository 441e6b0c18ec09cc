"""Tests for authentication source resolution."""
from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from cursor_chat.engine.auth import (
    AuthSource,
    classify_status_output,
    is_agent_installed,
    open_login_flow,
    resolve_auth,
)
from cursor_chat.engine.config import AgentSettings
from cursor_chat.engine.errors import AgentNotRunnableError
from cursor_chat.engine.process import ExecResult

EXEC = "cursor_chat.engine.auth.exec_agent"


def _res(code=0, stdout="", stderr="", signal=None) -> ExecResult:
    return ExecResult(code=code, signal=signal, stdout=stdout, stderr=stderr)


class TestClassifyStatus:
    @pytest.mark.parametrize(
        "result, expected",
        [
            (_res(0, "Logged in as dev@example.com"), True),
            (_res(0, "Authenticated via token"), True),
            (_res(0, "Not logged in"), False),
            (_res(1, "", "You are not logged in"), False),
            (_res(1, "logged in"), True),
            (_res(0, "cursor-agent 1.2.3"), True),
            (_res(2, "something odd"), False),
            (_res(None, "", "Timed out after 5s", "SIGKILL"), False),
        ],
    )
    def test_classification(self, result, expected):
        assert classify_status_output(result) is expected


class TestResolveAuth:
    @pytest.mark.asyncio
    async def test_environment_wins_without_probe(self):
        probe = AsyncMock()
        with patch(EXEC, probe):
            auth = await resolve_auth(
                AgentSettings(api_key="k"), None, env={"CURSOR_API_KEY": "env-key"},
            )
        assert auth.is_authenticated
        assert auth.source is AuthSource.ENVIRONMENT
        assert auth.extra_args == []
        probe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blank_environment_value_is_ignored(self):
        with patch(EXEC, AsyncMock(return_value=_res(0, "Logged in"))):
            auth = await resolve_auth(AgentSettings(), None, env={"CURSOR_API_KEY": "  "})
        assert auth.source is AuthSource.CLI_LOGIN

    @pytest.mark.asyncio
    async def test_cli_login_beats_settings_key(self):
        probe = AsyncMock(return_value=_res(0, "Logged in as dev"))
        with patch(EXEC, probe):
            auth = await resolve_auth(AgentSettings(api_key="k-1"), "/work", env={})
        assert auth.source is AuthSource.CLI_LOGIN
        assert auth.extra_args == []
        assert probe.await_args.args[0] == ["status"]
        assert probe.await_args.kwargs["cwd"] == "/work"

    @pytest.mark.asyncio
    async def test_settings_key_when_not_logged_in(self):
        with patch(EXEC, AsyncMock(return_value=_res(1, "Not logged in"))):
            auth = await resolve_auth(AgentSettings(api_key=" k-1 "), None, env={})
        assert auth.is_authenticated
        assert auth.source is AuthSource.API_KEY
        assert auth.extra_args == ["--api-key", "k-1"]

    @pytest.mark.asyncio
    async def test_spawn_failure_counts_as_not_logged_in(self):
        failing = AsyncMock(side_effect=AgentNotRunnableError(["cursor-agent"]))
        with patch(EXEC, failing):
            auth = await resolve_auth(AgentSettings(api_key="k"), None, env={})
        assert auth.source is AuthSource.API_KEY

    @pytest.mark.asyncio
    async def test_nothing_available(self):
        with patch(EXEC, AsyncMock(return_value=_res(1, "Not logged in"))):
            auth = await resolve_auth(AgentSettings(), None, env={})
        assert not auth.is_authenticated
        assert auth.source is AuthSource.NONE
        assert auth.extra_args == []


class TestAuxiliaryCommands:
    @pytest.mark.asyncio
    async def test_installed(self):
        with patch(EXEC, AsyncMock(return_value=_res(0, "1.2.3"))) as probe:
            assert await is_agent_installed(AgentSettings(), None) is True
        assert probe.await_args.args[0] == ["--version"]

    @pytest.mark.asyncio
    async def test_not_installed(self):
        with patch(EXEC, AsyncMock(side_effect=AgentNotRunnableError(["cursor-agent"]))):
            assert await is_agent_installed(AgentSettings(), None) is False

    @pytest.mark.asyncio
    async def test_login_flow_uses_long_timeout(self):
        with patch(EXEC, AsyncMock(return_value=_res(0, "done"))) as probe:
            res = await open_login_flow(AgentSettings(), None)
        assert res.ok
        assert probe.await_args.args[0] == ["login"]
        assert probe.await_args.kwargs["timeout"] == 60.0

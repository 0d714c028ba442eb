"""Tests for the simulated host and demo backend."""

from __future__ import annotations

import pytest

from sshai_client.errors import ConnectError, ConnectErrorKind
from sshai_client.services.mock import MockBackend, MockTransport
from sshai_client.storage.models import CommandRequest, CommandResult, Suggestion, TerminalContext


class TestMockTransport:
    @pytest.mark.asyncio
    async def test_rejected_user(self, connection):
        transport = MockTransport(rejected_users={"alice"})
        with pytest.raises(ConnectError) as exc_info:
            await transport.connect(connection)
        assert exc_info.value.kind == ConnectErrorKind.AUTH_REJECTED
        assert transport.connect_attempts == 1

    @pytest.mark.asyncio
    async def test_chained_steps_share_directory(self, connection):
        transport = MockTransport()
        handle = await transport.connect(connection)
        result = await transport.execute(handle, "", CommandRequest("cd projects && pwd"), 5.0)
        assert result.stdout == "/home/alice/projects\n"

    @pytest.mark.asyncio
    async def test_chain_stops_on_failure(self, connection):
        transport = MockTransport()
        handle = await transport.connect(connection)
        result = await transport.execute(handle, "", CommandRequest("false && echo never"), 5.0)
        assert result.exit_code == 1
        assert result.stdout == ""

    @pytest.mark.asyncio
    async def test_unknown_command(self, connection):
        transport = MockTransport()
        handle = await transport.connect(connection)
        result = await transport.execute(handle, "", CommandRequest("frobnicate"), 5.0)
        assert result.exit_code == 127
        assert result.stderr == "bash: frobnicate: command not found\n"

    @pytest.mark.asyncio
    async def test_environment_and_canned_responses(self, connection):
        transport = MockTransport(responses={"uptime": CommandResult(stdout="up 3 days\n")})
        handle = await transport.connect(connection)

        echoed = await transport.execute(
            handle, "", CommandRequest("echo $GREETING", environment={"GREETING": "hi"}), 5.0
        )
        assert echoed.stdout == "hi\n"

        canned = await transport.execute(handle, "", CommandRequest("uptime"), 5.0)
        assert canned.stdout == "up 3 days\n"

    @pytest.mark.asyncio
    async def test_disconnected_handle(self, connection):
        transport = MockTransport()
        handle = await transport.connect(connection)
        await transport.disconnect(handle)
        assert transport.disconnects == 1
        with pytest.raises(EOFError):
            await transport.execute(handle, "", CommandRequest("ls"), 5.0)


class TestMockBackend:
    @pytest.mark.asyncio
    async def test_keyword_match(self):
        backend = MockBackend()
        response = await backend.complete("show me disk usage", TerminalContext())
        assert Suggestion.from_dict(response.payload).command == "df -h"
        assert response.provider == "mock"
        assert backend.calls == ["show me disk usage"]

    @pytest.mark.asyncio
    async def test_fallback(self):
        response = await MockBackend().complete("what is here", TerminalContext())
        assert response.payload["command"] == "ls -la"

    @pytest.mark.asyncio
    async def test_payload_is_a_copy(self):
        backend = MockBackend()
        first = await backend.complete("free disk space", TerminalContext())
        first.payload["command"] = "changed"
        second = await backend.complete("free disk space", TerminalContext())
        assert second.payload["command"] == "df -h"

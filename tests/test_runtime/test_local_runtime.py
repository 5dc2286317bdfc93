from __future__ import annotations

import sys

import pytest

from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.local_runtime import spawn_local_agent
from agnet_runtime.protocol import ReadyMessage, SessionStartMessage
from agnet_runtime.session_client import send_and_wait_complete, wait_for_type

MOCK_ARGS = ["-m", "agnet_runtime.agent.mock_agent"]


@pytest.mark.asyncio
async def test_spawned_mock_agent_round_trip() -> None:
    async with await spawn_local_agent(sys.executable, [*MOCK_ARGS, "--chunks", "3"]) as conn:
        ready = await wait_for_type(conn.transport, "ready", timeout=15)
        assert isinstance(ready, ReadyMessage)
        assert ready.pid == conn.pid

        await conn.transport.send(SessionStartMessage(session_id="s1"))
        await wait_for_type(conn.transport, "session/started", timeout=5)
        result = await send_and_wait_complete(conn.transport, "s1", "hello", timeout=5)

    assert result.text == "MockAgent response #1: hello"
    assert result.delta_count == 3
    assert conn.process.returncode is not None


@pytest.mark.asyncio
async def test_close_is_idempotent() -> None:
    conn = await spawn_local_agent(sys.executable, MOCK_ARGS)
    await wait_for_type(conn.transport, "ready", timeout=15)
    first = await conn.close()
    second = await conn.close()
    assert first == second
    assert conn.transport.closed


@pytest.mark.asyncio
async def test_missing_command_is_spawn_failed(tmp_path) -> None:
    with pytest.raises(AgnetError) as exc:
        await spawn_local_agent(str(tmp_path / "no-such-agent"))
    assert exc.value.code == ErrorCode.SPAWN_FAILED


@pytest.mark.asyncio
async def test_strict_mode_blocks_unlisted_command() -> None:
    env = {"AGNET_PROTECT_STRICT": "1", "AGNET_ALLOW_COMMANDS": "node"}
    with pytest.raises(AgnetError) as exc:
        await spawn_local_agent(sys.executable, MOCK_ARGS, env=env)
    assert exc.value.code == ErrorCode.COMMAND_BLOCKED

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

import pytest_asyncio

from agnet_runtime.agent.mock_agent import AgentContext, AgentOptions, MockAgent
from agnet_runtime.transport import StdioTransport


class PipeWriter:
    """Writer half of an in-memory pipe feeding a StreamReader."""

    def __init__(self, target: asyncio.StreamReader) -> None:
        self._target = target
        self._closed = False

    def write(self, data: bytes) -> None:
        if self._closed:
            raise BrokenPipeError("pipe closed")
        self._target.feed_data(data)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._target.feed_eof()


@dataclass
class AgentPair:
    client: StdioTransport
    agent: MockAgent
    client_writer: PipeWriter
    task: asyncio.Task[None]


async def _serve(agent: MockAgent, transport: StdioTransport, writer: PipeWriter) -> None:
    await agent.announce_ready()
    async for raw in transport:
        await agent.handle(raw)
    await agent.wait_idle()
    writer.close()


@pytest_asyncio.fixture
async def agent_pair() -> AsyncIterator[Callable[..., Awaitable[AgentPair]]]:
    """Factory for a mock agent wired to a client transport in memory."""
    pairs: list[AgentPair] = []

    async def make(options: AgentOptions | None = None) -> AgentPair:
        to_agent = asyncio.StreamReader()
        to_client = asyncio.StreamReader()
        client_writer = PipeWriter(to_agent)
        agent_writer = PipeWriter(to_client)
        agent_transport = StdioTransport(to_agent, agent_writer)
        client = StdioTransport(to_client, client_writer)
        agent = MockAgent(AgentContext(options=options or AgentOptions()), agent_transport.send)
        task = asyncio.get_running_loop().create_task(_serve(agent, agent_transport, agent_writer))
        pair = AgentPair(client=client, agent=agent, client_writer=client_writer, task=task)
        pairs.append(pair)
        return pair

    yield make

    for pair in pairs:
        pair.client_writer.close()
        with contextlib.suppress(asyncio.TimeoutError, asyncio.CancelledError):
            await asyncio.wait_for(pair.task, timeout=2)
        await pair.client.aclose()

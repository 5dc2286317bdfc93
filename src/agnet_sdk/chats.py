"""Chats and one-shot shortcut services backed by a spawned local agent."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.local_runtime import LocalAgentConnection, spawn_local_agent
from agnet_runtime.protocol import SessionStartMessage, SessionStreamMessage, ToolCallMessage
from agnet_runtime.providers import CliRuntime, HttpRuntime, IpcRuntime
from agnet_runtime.session_client import DeltaBuffer, random_id, replay_history, stream_turn, wait_for_type
from agnet_runtime.storage import ChatStore, PersistedChat
from agnet_sdk.context import AppContext
from agnet_sdk.providers import MOCK_PROVIDER_ID, ProvidersService

logger = logging.getLogger(__name__)


def require_non_empty(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise AgnetError(ErrorCode.INVALID_ARGS, f"Invalid {label}: expected non-empty string")
    return value


def strip_trailing_newline(text: str) -> str:
    return text[:-1] if text.endswith("\n") else text


class ChatsService:
    def __init__(self, ctx: AppContext, providers: ProvidersService | None = None) -> None:
        self._ctx = ctx
        self._providers = providers or ProvidersService(ctx)
        self.store = ChatStore(ctx.storage_root)

    async def create(self, provider_id: str | None = None) -> str:
        resolved = self._providers.resolve_default_provider_id(provider_id)
        chat_id = random_id("chat")
        self.store.write(PersistedChat(chat_id=chat_id, provider_id=resolved))
        logger.info("created chat %s for provider %s", chat_id, resolved)
        return chat_id

    async def send(
        self,
        chat_id: str | None,
        prompt: str | None,
        *,
        runtime: CliRuntime | HttpRuntime | IpcRuntime | None = None,
        buffer: DeltaBuffer | None = None,
    ) -> AsyncIterator[str]:
        """Run one turn of `chat_id` and yield the reply as it streams.

        Chunks are yielded in arrival order. Pass `buffer` to collect them by index.
        """
        resolved_chat_id = require_non_empty(chat_id, "chatId")
        content = require_non_empty(prompt, "prompt")

        chat = self.store.read(resolved_chat_id)
        provider_id = chat.provider_id or MOCK_PROVIDER_ID
        if runtime is None:
            cli_runtime = self._providers.resolve_cli_runtime(provider_id)
        elif isinstance(runtime, CliRuntime):
            cli_runtime = runtime
        else:
            raise AgnetError(
                ErrorCode.UNSUPPORTED_TRANSPORT,
                f'Provider "{provider_id}" does not support local CLI transport (got "{runtime.transport}")',
            )

        timeout = self._ctx.config.runtime.message_timeout_seconds
        if buffer is None:
            buffer = DeltaBuffer()
        async with self._open_session(cli_runtime, resolved_chat_id) as conn:
            await replay_history(conn.transport, resolved_chat_id, chat.history, timeout=timeout)
            async with contextlib.aclosing(
                stream_turn(conn.transport, resolved_chat_id, content, timeout=timeout)
            ) as stream:
                async for message in stream:
                    if isinstance(message, SessionStreamMessage):
                        buffer.add(message.index, message.delta)
                        yield message.delta
                    elif isinstance(message, ToolCallMessage):
                        logger.debug("chat %s tool call %s", resolved_chat_id, message.name)
                    else:
                        if len(buffer) == 0 and message.message.content:
                            buffer.add(0, message.message.content)
                            yield message.message.content
                        history = message.history or chat.history
                        self.store.write(
                            PersistedChat(chat_id=resolved_chat_id, provider_id=provider_id, history=history)
                        )

        if not buffer.text().endswith("\n"):
            yield "\n"

    async def complete(
        self,
        chat_id: str | None,
        prompt: str | None,
        *,
        runtime: CliRuntime | HttpRuntime | IpcRuntime | None = None,
    ) -> str:
        """Run one turn and return the reply ordered by delta index, ending with a newline."""
        buffer = DeltaBuffer()
        async for _ in self.send(chat_id, prompt, runtime=runtime, buffer=buffer):
            pass
        text = buffer.text()
        return text if text.endswith("\n") else text + "\n"

    async def close(self, chat_id: str | None) -> str:
        resolved = require_non_empty(chat_id, "chatId")
        self.store.delete(resolved)
        return "ok"

    @contextlib.asynccontextmanager
    async def _open_session(self, runtime: CliRuntime, session_id: str) -> AsyncIterator[LocalAgentConnection]:
        cfg = self._ctx.config.runtime
        cwd: Path | None = None
        if runtime.cwd:
            cwd = Path(runtime.cwd).expanduser()
            if not cwd.is_absolute():
                cwd = self._ctx.cwd / cwd
        conn = await spawn_local_agent(
            runtime.command,
            runtime.args or [],
            cwd=cwd,
            env=self._ctx.env,
            kill_timeout=cfg.kill_timeout_seconds,
            read_size=cfg.read_chunk_size,
        )
        try:
            await wait_for_type(conn.transport, "ready", timeout=cfg.ready_timeout_seconds)
            await conn.transport.send(SessionStartMessage(session_id=session_id))
            await wait_for_type(conn.transport, "session/started", timeout=cfg.message_timeout_seconds)
            yield conn
        finally:
            await conn.close()


class ShortcutsService:
    def __init__(self, ctx: AppContext, chats: ChatsService | None = None) -> None:
        self._ctx = ctx
        self._chats = chats or ChatsService(ctx)

    async def ask(self, prompt: str | None, provider_id: str | None = None) -> str:
        content = require_non_empty(prompt, "prompt")
        chat_id = await self._chats.create(provider_id)
        try:
            return await self._chats.complete(chat_id, content)
        finally:
            await self._discard(chat_id)

    async def prompt(self, prompt: str | None, provider_id: str | None = None) -> dict[str, Any]:
        content = require_non_empty(prompt, "prompt")
        chat_id = await self._chats.create(provider_id)
        try:
            text = await self._chats.complete(chat_id, content)
            persisted = self._chats.store.read(chat_id)
            return {
                "text": strip_trailing_newline(text),
                "chatId": chat_id,
                "providerId": persisted.provider_id,
                "history": [item.to_wire() for item in persisted.history],
            }
        finally:
            await self._discard(chat_id)

    async def _discard(self, chat_id: str) -> None:
        try:
            await self._chats.close(chat_id)
        except (AgnetError, OSError) as exc:
            logger.warning("could not remove one-shot chat %s: %s", chat_id, exc)

"""Deterministic reference agent speaking the session and chats protocols over stdio."""

from __future__ import annotations

import asyncio
import itertools
import logging
import math
import os
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import typer

from agnet_runtime.config import configure_logging, load_config
from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.protocol import (
    ChatCancelledEvent,
    ChatCompletedEvent,
    ChatFailedEvent,
    ChatMessage,
    ChatRest,
    ChatsCancelMessage,
    ChatsCancelResultMessage,
    ChatsCreatedMessage,
    ChatsCreateMessage,
    ChatsErrorMessage,
    ChatsGetMessage,
    ChatsGetResultMessage,
    ChatsListMessage,
    ChatsListResultMessage,
    ChatStartedEvent,
    ChatsSubscribeMessage,
    ChatStatus,
    MessageDeltaEvent,
    ReadyMessage,
    SessionCompleteMessage,
    SessionSendMessage,
    SessionStartedMessage,
    SessionStartMessage,
    SessionStreamMessage,
    TChat,
    ToolCallMessage,
    WireModel,
    parse_message,
    utc_now_iso,
)
from agnet_runtime.transport import StdioTransport

logger = logging.getLogger(__name__)

DEFAULT_CHUNKS = 5
DEFAULT_LIST_LIMIT = 50
SUPPORTED_SKILLS = ("chat",)
LOCAL_HINT = "This chat runs locally inside the mock agent process and is not persisted."

Send = Callable[[WireModel], Awaitable[None]]
Handler = Callable[[Any], Awaitable[None]]


@dataclass
class AgentOptions:
    chunks: int = DEFAULT_CHUNKS
    streaming: bool = True
    emit_tool_calls: bool = False


@dataclass
class SessionRecord:
    session_id: str
    history: list[ChatMessage] = field(default_factory=list)
    turns: int = 0


@dataclass
class ChatRecord:
    chat_id: str
    title: str | None = None
    provider_id: str | None = None
    pending_prompt: str | None = None
    status: ChatStatus = "created"
    created_at: str = field(default_factory=utc_now_iso)
    history: list[ChatMessage] = field(default_factory=list)
    turns: int = 0

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"

    def to_chat(self) -> TChat:
        return TChat(
            id=self.chat_id,
            title=self.title,
            extra={"hint": LOCAL_HINT},
            raw_rest=ChatRest(
                status=self.status,
                created_at=self.created_at,
                turns=self.turns,
                provider_id=self.provider_id,
            ),
        )


@dataclass
class AgentContext:
    """All mutable state for one connection; nothing is kept at module level."""

    options: AgentOptions = field(default_factory=AgentOptions)
    sessions: dict[str, SessionRecord] = field(default_factory=dict)
    chats: dict[str, ChatRecord] = field(default_factory=dict)
    running: dict[str, asyncio.Task[None]] = field(default_factory=dict)
    session_ids: itertools.count = field(default_factory=lambda: itertools.count(1))
    chat_ids: itertools.count = field(default_factory=lambda: itertools.count(1))
    message_ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def session(self, session_id: str) -> SessionRecord:
        record = self.sessions.get(session_id)
        if record is None:
            record = SessionRecord(session_id=session_id)
            self.sessions[session_id] = record
        return record


def chunk_text(text: str, parts: int) -> list[str]:
    """Split into at most `parts` pieces of ceil(len/parts) characters."""
    if not text:
        return [""]
    size = max(1, math.ceil(len(text) / max(1, parts)))
    return [text[i : i + size] for i in range(0, len(text), size)]


class MockAgent:
    def __init__(self, context: AgentContext, send: Send) -> None:
        self._ctx = context
        self._send = send
        self._handlers: dict[type[WireModel], Handler] = {
            SessionStartMessage: self._on_session_start,
            SessionSendMessage: self._on_session_send,
            ChatsCreateMessage: self._on_chats_create,
            ChatsListMessage: self._on_chats_list,
            ChatsGetMessage: self._on_chats_get,
            ChatsCancelMessage: self._on_chats_cancel,
            ChatsSubscribeMessage: self._on_chats_subscribe,
        }

    @property
    def context(self) -> AgentContext:
        return self._ctx

    async def announce_ready(self) -> None:
        await self._send(ReadyMessage(pid=os.getpid()))

    async def handle(self, raw: Any) -> None:
        try:
            message = parse_message(raw)
        except AgnetError as exc:
            logger.warning("ignoring malformed message: %s", exc.message)
            return
        if message is None:
            logger.debug("ignoring unknown message %r", raw.get("type") if isinstance(raw, dict) else raw)
            return
        handler = self._handlers.get(type(message), self._ignore)
        await handler(message)

    async def wait_idle(self) -> None:
        pending = [task for task in self._ctx.running.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _ignore(self, message: WireModel) -> None:
        logger.debug("no handler for %s", getattr(message, "type", type(message).__name__))

    # Legacy session family.

    async def _on_session_start(self, message: SessionStartMessage) -> None:
        session_id = message.session_id or f"session-{next(self._ctx.session_ids)}"
        self._ctx.session(session_id)
        await self._send(SessionStartedMessage(session_id=session_id))

    async def _on_session_send(self, message: SessionSendMessage) -> None:
        # Handled inline: a second send for the same session waits for this one.
        session = self._ctx.session(message.session_id)
        session.history.append(ChatMessage(role="user", content=message.content))
        session.turns += 1
        reply = f"MockAgent response #{session.turns}: {message.content}"

        if self._ctx.options.emit_tool_calls:
            await self._send(
                ToolCallMessage(
                    session_id=session.session_id,
                    name="mock.tool",
                    args={"turn": session.turns, "inputLength": len(message.content)},
                )
            )

        if self._ctx.options.streaming:
            for index, delta in enumerate(chunk_text(reply, self._ctx.options.chunks)):
                await self._send(SessionStreamMessage(session_id=session.session_id, index=index, delta=delta))
                await asyncio.sleep(0)

        assistant = ChatMessage(role="assistant", content=reply)
        session.history.append(assistant)
        await self._send(
            SessionCompleteMessage(
                session_id=session.session_id,
                message=assistant,
                history=list(session.history),
            )
        )

    # Chats family.

    async def _on_chats_create(self, message: ChatsCreateMessage) -> None:
        chat_id = message.chat_id or f"chat-{next(self._ctx.chat_ids)}"
        skill = message.skill or "chat"
        if skill not in SUPPORTED_SKILLS:
            await self._reply_error(
                "chats/createError",
                chat_id,
                ErrorCode.UNSUPPORTED_SKILL,
                f"unsupported skill '{skill}'",
            )
            return
        if chat_id in self._ctx.chats:
            await self._reply_error("chats/createError", chat_id, ErrorCode.CHAT_EXISTS, f"chat '{chat_id}' already exists")
            return

        record = ChatRecord(
            chat_id=chat_id,
            title=message.title,
            provider_id=message.provider_id,
            pending_prompt=message.prompt,
        )
        self._ctx.chats[chat_id] = record
        await self._send(ChatsCreatedMessage(chat=record.to_chat()))

    async def _on_chats_list(self, message: ChatsListMessage) -> None:
        try:
            offset = int(message.cursor) if message.cursor else 0
            limit = int(message.limit) if message.limit else DEFAULT_LIST_LIMIT
            if offset < 0 or limit < 1:
                raise ValueError("cursor must be >= 0 and limit >= 1")
        except ValueError as exc:
            await self._reply_error("chats/listError", None, ErrorCode.INVALID_ARGS, f"invalid cursor or limit: {exc}")
            return

        records = list(self._ctx.chats.values())
        page = records[offset : offset + limit]
        end = offset + len(page)
        next_cursor = str(end) if end < len(records) else None
        await self._send(ChatsListResultMessage(chats=[record.to_chat() for record in page], next_cursor=next_cursor))

    async def _on_chats_get(self, message: ChatsGetMessage) -> None:
        record = self._ctx.chats.get(message.chat_id)
        if record is None:
            await self._reply_not_found("chats/getError", message.chat_id)
            return
        await self._send(ChatsGetResultMessage(chat=record.to_chat()))

    async def _on_chats_cancel(self, message: ChatsCancelMessage) -> None:
        record = self._ctx.chats.get(message.chat_id)
        if record is None:
            await self._reply_not_found("chats/cancelError", message.chat_id)
            return
        record.status = "cancelled"
        await self._send(ChatsCancelResultMessage(chat_id=record.chat_id, ok=True))

    async def _on_chats_subscribe(self, message: ChatsSubscribeMessage) -> None:
        record = self._ctx.chats.get(message.chat_id)
        if record is None:
            await self._reply_not_found("chats/subscribeError", message.chat_id)
            return
        if record.cancelled:
            await self._send(ChatCancelledEvent(chat_id=record.chat_id, chat=record.to_chat()))
            return
        running = self._ctx.running.get(record.chat_id)
        if running is not None and not running.done():
            await self._reply_error(
                "chats/subscribeError",
                record.chat_id,
                ErrorCode.CHAT_BUSY,
                f"chat '{record.chat_id}' already has a turn in progress",
            )
            return

        prompt = message.prompt if message.prompt is not None else record.pending_prompt
        record.pending_prompt = None
        record.status = "running"
        # Runs as a task so chats/cancel can be read while deltas are streaming.
        task = asyncio.get_running_loop().create_task(self._run_chat_turn(record, prompt))
        self._ctx.running[record.chat_id] = task

    async def _run_chat_turn(self, record: ChatRecord, prompt: str | None) -> None:
        # A cancel can land between scheduling and the first step.
        if record.cancelled:
            await self._send(ChatCancelledEvent(chat_id=record.chat_id, chat=record.to_chat()))
            return
        await self._send(ChatStartedEvent(chat_id=record.chat_id))

        if not prompt:
            record.status = "failed"
            await self._send(ChatFailedEvent(chat_id=record.chat_id, error="no prompt to run"))
            return

        record.history.append(ChatMessage(role="user", content=prompt))
        record.turns += 1
        reply = f"MockTask response #{record.turns}: {prompt}"
        message_id = f"msg-{next(self._ctx.message_ids)}"

        if self._ctx.options.streaming:
            for index, delta in enumerate(chunk_text(reply, self._ctx.options.chunks)):
                if record.cancelled:
                    await self._send(ChatCancelledEvent(chat_id=record.chat_id, chat=record.to_chat()))
                    return
                await self._send(
                    MessageDeltaEvent(chat_id=record.chat_id, message_id=message_id, delta=delta, index=index)
                )
                await asyncio.sleep(0)

        if record.cancelled:
            await self._send(ChatCancelledEvent(chat_id=record.chat_id, chat=record.to_chat()))
            return

        assistant = ChatMessage(role="assistant", content=reply)
        record.history.append(assistant)
        record.status = "completed"
        await self._send(ChatCompletedEvent(chat_id=record.chat_id, chat=record.to_chat(), message=assistant))

    async def _reply_not_found(self, error_type: str, chat_id: str) -> None:
        await self._reply_error(error_type, chat_id, ErrorCode.CHAT_NOT_FOUND, f"chat '{chat_id}' not found")

    async def _reply_error(self, error_type: str, chat_id: str | None, code: ErrorCode, text: str) -> None:
        await self._send(ChatsErrorMessage(type=error_type, chat_id=chat_id, code=code.value, message=text))


async def _open_stdio() -> StdioTransport:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer)
    write_transport, write_protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout.buffer)
    writer = asyncio.StreamWriter(write_transport, write_protocol, reader, loop)
    return StdioTransport(reader, writer)


async def run_agent(options: AgentOptions) -> None:
    transport = await _open_stdio()
    agent = MockAgent(AgentContext(options=options), transport.send)
    await agent.announce_ready()
    logger.info("mock agent ready pid=%s chunks=%s streaming=%s", os.getpid(), options.chunks, options.streaming)
    async for raw in transport:
        await agent.handle(raw)
    await agent.wait_idle()
    if transport.error is not None:
        logger.error("stdin closed on error: %s", transport.error)
    await transport.aclose()


class Streaming(str, Enum):
    on = "on"
    off = "off"


cli = typer.Typer(add_completion=False, context_settings={"help_option_names": ["-h", "--help"]})


@cli.command(help="Reference agent for the agnet stdio protocol.")
def serve(
    chunks: int = typer.Option(DEFAULT_CHUNKS, "--chunks", help="Number of stream deltas per reply."),
    streaming: Streaming = typer.Option(Streaming.on, "--streaming", help="Emit stream deltas before completing."),
    emit_tool_calls: bool = typer.Option(
        False,
        "--emit-tool-calls",
        "--emitToolCalls",
        help="Emit one informational tool/call per legacy turn.",
    ),
) -> None:
    options = AgentOptions(
        chunks=max(1, chunks),
        streaming=streaming is Streaming.on,
        emit_tool_calls=emit_tool_calls,
    )
    configure_logging(load_config())
    asyncio.run(run_agent(options))


def main(argv: list[str] | None = None) -> None:
    cli(args=argv, prog_name="agnet-mock-agent")


if __name__ == "__main__":
    main()

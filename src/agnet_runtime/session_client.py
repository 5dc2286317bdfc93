"""Client-side driver for the session and chat protocol families."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from agnet_runtime.exceptions import AgnetError, ErrorCode, FramingError, error_code_from_wire
from agnet_runtime.protocol import (
    CHAT_TERMINAL_EVENTS,
    ChatCancelledEvent,
    ChatCompletedEvent,
    ChatFailedEvent,
    ChatMessage,
    ChatsCancelMessage,
    ChatsCancelResultMessage,
    ChatsCreatedMessage,
    ChatsCreateMessage,
    ChatsErrorMessage,
    ChatsGetMessage,
    ChatsGetResultMessage,
    ChatsListMessage,
    ChatsListResultMessage,
    ChatsSubscribeMessage,
    MessageDeltaEvent,
    SessionCompleteMessage,
    SessionSendMessage,
    SessionStreamMessage,
    TChat,
    ToolCallMessage,
    WireModel,
    parse_message,
)
from agnet_runtime.transport import StdioTransport

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_TIMEOUT = 2.0

M = TypeVar("M", bound=WireModel)

DeltaCallback = Callable[[str], None]


def random_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{os.urandom(4).hex()}"


async def next_message(
    transport: StdioTransport,
    label: str,
    *,
    timeout: float = DEFAULT_MESSAGE_TIMEOUT,
) -> Any:
    """Pull one raw decoded value, bounded by `timeout` seconds."""
    try:
        return await asyncio.wait_for(transport.__anext__(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise AgnetError(
            ErrorCode.TIMEOUT,
            f"Timeout waiting for {label}",
            details={"timeout_seconds": timeout},
        ) from exc
    except StopAsyncIteration:
        cause = transport.error
        code = ErrorCode.FRAMING_ERROR if isinstance(cause, FramingError) else ErrorCode.CONNECTION_CLOSED
        details = {"cause": str(cause)} if cause is not None else {}
        raise AgnetError(
            code,
            f"Unexpected end of stream while waiting for {label}",
            details=details,
        ) from cause


async def next_typed_message(
    transport: StdioTransport,
    label: str,
    *,
    timeout: float = DEFAULT_MESSAGE_TIMEOUT,
) -> WireModel | None:
    return parse_message(await next_message(transport, label, timeout=timeout))


async def wait_for_type(
    transport: StdioTransport,
    message_type: str,
    *,
    timeout: float = DEFAULT_MESSAGE_TIMEOUT,
) -> Any:
    """Drop messages until one of `message_type` arrives; each pull gets its own timeout."""
    while True:
        message = await next_typed_message(transport, message_type, timeout=timeout)
        if message is not None and getattr(message, "type", None) == message_type:
            return message
        logger.debug("dropping message while waiting for %s", message_type)


class DeltaBuffer:
    """Collects streamed fragments and releases them in index order."""

    def __init__(self) -> None:
        self._parts: dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._parts)

    def add(self, index: int | None, delta: str) -> None:
        key = index if index is not None else len(self._parts)
        self._parts[key] = delta

    def text(self) -> str:
        return "".join(self._parts[key] for key in sorted(self._parts))


@dataclass
class TurnResult:
    complete: SessionCompleteMessage
    combined: str
    delta_count: int

    @property
    def text(self) -> str:
        # Streaming off produces zero deltas; the terminal message still carries the text.
        if self.delta_count == 0:
            return self.complete.message.content
        return self.combined

    @property
    def history(self) -> list[ChatMessage]:
        return self.complete.history


async def stream_turn(
    transport: StdioTransport,
    session_id: str,
    content: str,
    *,
    timeout: float = DEFAULT_MESSAGE_TIMEOUT,
) -> AsyncIterator[SessionStreamMessage | ToolCallMessage | SessionCompleteMessage]:
    """Send one user turn and yield its stream, tool calls and terminal message."""
    await transport.send(SessionSendMessage(session_id=session_id, content=content))
    while True:
        message = await next_typed_message(transport, "session/complete", timeout=timeout)
        if not isinstance(message, (SessionStreamMessage, ToolCallMessage, SessionCompleteMessage)):
            continue
        if message.session_id != session_id:
            continue
        yield message
        if isinstance(message, SessionCompleteMessage):
            return


async def send_and_wait_complete(
    transport: StdioTransport,
    session_id: str,
    content: str,
    *,
    on_delta: DeltaCallback | None = None,
    timeout: float = DEFAULT_MESSAGE_TIMEOUT,
) -> TurnResult:
    buffer = DeltaBuffer()
    async with contextlib.aclosing(stream_turn(transport, session_id, content, timeout=timeout)) as stream:
        async for message in stream:
            if isinstance(message, SessionStreamMessage):
                buffer.add(message.index, message.delta)
                if on_delta is not None:
                    on_delta(message.delta)
            elif isinstance(message, ToolCallMessage):
                logger.debug("tool call %s %s", message.name, message.args)
            else:
                return TurnResult(complete=message, combined=buffer.text(), delta_count=len(buffer))
    raise AgnetError(ErrorCode.PROTOCOL_ERROR, "turn ended without session/complete")


async def replay_history(
    transport: StdioTransport,
    session_id: str,
    history: Iterable[ChatMessage],
    *,
    timeout: float = DEFAULT_MESSAGE_TIMEOUT,
) -> None:
    """Rebuild agent-side context by resending each earlier user turn; replies are discarded."""
    for item in history:
        if item.role != "user":
            continue
        await send_and_wait_complete(transport, session_id, item.content, timeout=timeout)


@dataclass
class ChatTurnResult:
    event: ChatCompletedEvent | ChatCancelledEvent | ChatFailedEvent
    combined: str
    delta_count: int

    @property
    def status(self) -> str:
        if isinstance(self.event, ChatCompletedEvent):
            return "completed"
        if isinstance(self.event, ChatCancelledEvent):
            return "cancelled"
        return "failed"

    @property
    def text(self) -> str:
        if self.delta_count == 0 and isinstance(self.event, ChatCompletedEvent) and self.event.message:
            return self.event.message.content
        return self.combined


class ChatsClient:
    """Request/reply helpers for the chats family over one transport.

    Application errors (`chats/<op>Error`) raise AgnetError with the code sent by
    the agent; the connection stays usable afterwards.
    """

    def __init__(self, transport: StdioTransport, *, timeout: float = DEFAULT_MESSAGE_TIMEOUT) -> None:
        self._transport = transport
        self._timeout = timeout

    async def create(
        self,
        *,
        chat_id: str | None = None,
        provider_id: str | None = None,
        title: str | None = None,
        prompt: str | None = None,
        skill: str | None = None,
    ) -> TChat:
        request = ChatsCreateMessage(chat_id=chat_id, provider_id=provider_id, title=title, prompt=prompt, skill=skill)
        reply = await self._request(request, ChatsCreatedMessage, "chats/createError")
        return reply.chat

    async def list_chats(self, *, cursor: str | None = None, limit: int | None = None) -> ChatsListResultMessage:
        request = ChatsListMessage(cursor=cursor, limit=None if limit is None else str(limit))
        return await self._request(request, ChatsListResultMessage, "chats/listError")

    async def get(self, chat_id: str) -> TChat:
        reply = await self._request(ChatsGetMessage(chat_id=chat_id), ChatsGetResultMessage, "chats/getError")
        return reply.chat

    async def cancel(self, chat_id: str) -> bool:
        reply = await self._request(ChatsCancelMessage(chat_id=chat_id), ChatsCancelResultMessage, "chats/cancelError")
        return reply.ok

    async def start_subscribe(self, chat_id: str, *, prompt: str | None = None) -> None:
        await self._transport.send(ChatsSubscribeMessage(chat_id=chat_id, prompt=prompt))

    async def wait_terminal(
        self,
        chat_id: str,
        *,
        on_delta: DeltaCallback | None = None,
    ) -> ChatTurnResult:
        buffer = DeltaBuffer()
        while True:
            message = await next_typed_message(self._transport, "chat terminal event", timeout=self._timeout)
            if isinstance(message, ChatsErrorMessage) and message.type == "chats/subscribeError":
                if message.chat_id in (None, chat_id):
                    raise _application_error(message)
                continue
            if isinstance(message, MessageDeltaEvent) and message.chat_id == chat_id:
                buffer.add(message.index, message.delta)
                if on_delta is not None:
                    on_delta(message.delta)
                continue
            if isinstance(message, CHAT_TERMINAL_EVENTS) and message.chat_id == chat_id:
                return ChatTurnResult(event=message, combined=buffer.text(), delta_count=len(buffer))

    async def subscribe(
        self,
        chat_id: str,
        *,
        prompt: str | None = None,
        on_delta: DeltaCallback | None = None,
    ) -> ChatTurnResult:
        await self.start_subscribe(chat_id, prompt=prompt)
        return await self.wait_terminal(chat_id, on_delta=on_delta)

    async def _request(self, request: WireModel, reply_type: type[M], error_type: str) -> M:
        await self._transport.send(request)
        while True:
            message = await next_typed_message(self._transport, reply_type.model_fields["type"].default, timeout=self._timeout)
            if isinstance(message, reply_type):
                return message
            if isinstance(message, ChatsErrorMessage) and message.type == error_type:
                raise _application_error(message)


def _application_error(message: ChatsErrorMessage) -> AgnetError:
    return AgnetError(
        error_code_from_wire(message.code),
        message.message,
        details={"chat_id": message.chat_id} if message.chat_id else None,
    )

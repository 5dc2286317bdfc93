"""Message vocabulary spoken between a driver and an agent subprocess."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from agnet_runtime.exceptions import AgnetError, ErrorCode

PROTOCOL_VERSION = 1


class MessageType(str, Enum):
    READY = "ready"
    SESSION_START = "session/start"
    SESSION_STARTED = "session/started"
    SESSION_SEND = "session/send"
    SESSION_STREAM = "session/stream"
    TOOL_CALL = "tool/call"
    SESSION_COMPLETE = "session/complete"
    CHATS_CREATE = "chats/create"
    CHATS_CREATED = "chats/created"
    CHATS_LIST = "chats/list"
    CHATS_LIST_RESULT = "chats/listResult"
    CHATS_GET = "chats/get"
    CHATS_GET_RESULT = "chats/getResult"
    CHATS_CANCEL = "chats/cancel"
    CHATS_CANCEL_RESULT = "chats/cancelResult"
    CHATS_SUBSCRIBE = "chats/subscribe"
    CHATS_CREATE_ERROR = "chats/createError"
    CHATS_LIST_ERROR = "chats/listError"
    CHATS_GET_ERROR = "chats/getError"
    CHATS_CANCEL_ERROR = "chats/cancelError"
    CHATS_SUBSCRIBE_ERROR = "chats/subscribeError"
    CHAT_STARTED = "chat.started"
    MESSAGE_DELTA = "message.delta"
    CHAT_COMPLETED = "chat.completed"
    CHAT_CANCELLED = "chat.cancelled"
    CHAT_FAILED = "chat.failed"


ChatStatus = Literal["created", "running", "completed", "failed", "cancelled"]
Role = Literal["user", "assistant", "system"]
ChatsErrorType = Literal[
    "chats/createError",
    "chats/listError",
    "chats/getError",
    "chats/cancelError",
    "chats/subscribeError",
]


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ChatMessage(WireModel):
    role: Role
    content: str


class ChatRest(WireModel):
    status: ChatStatus = "created"
    created_at: str = Field(default_factory=utc_now_iso)
    turns: int = 0
    provider_id: str | None = None


class TChat(WireModel):
    id: str
    title: str | None = None
    location: Literal["local"] = "local"
    persistence: Literal["ephemeral"] = "ephemeral"
    can_read: bool = True
    can_post: bool = True
    channel_type: Literal["chat"] = "chat"
    extra: dict[str, Any] = Field(default_factory=dict)
    raw_rest: ChatRest = Field(default_factory=ChatRest, alias="_rawRest")


# Legacy session family.


class ReadyMessage(WireModel):
    type: Literal["ready"] = "ready"
    pid: int
    version: Literal[1] = PROTOCOL_VERSION


class SessionStartMessage(WireModel):
    type: Literal["session/start"] = "session/start"
    session_id: str | None = None


class SessionStartedMessage(WireModel):
    type: Literal["session/started"] = "session/started"
    session_id: str


class SessionSendMessage(WireModel):
    type: Literal["session/send"] = "session/send"
    session_id: str
    content: str


class SessionStreamMessage(WireModel):
    type: Literal["session/stream"] = "session/stream"
    session_id: str
    index: int
    delta: str


class ToolCallMessage(WireModel):
    type: Literal["tool/call"] = "tool/call"
    session_id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class SessionCompleteMessage(WireModel):
    type: Literal["session/complete"] = "session/complete"
    session_id: str
    message: ChatMessage
    history: list[ChatMessage] = Field(default_factory=list)


# Chat family: requests and replies.


class ChatsCreateMessage(WireModel):
    type: Literal["chats/create"] = "chats/create"
    chat_id: str | None = None
    provider_id: str | None = None
    title: str | None = None
    prompt: str | None = None
    skill: str | None = None


class ChatsCreatedMessage(WireModel):
    type: Literal["chats/created"] = "chats/created"
    chat: TChat


class ChatsListMessage(WireModel):
    type: Literal["chats/list"] = "chats/list"
    cursor: str | None = None
    limit: str | None = None


class ChatsListResultMessage(WireModel):
    type: Literal["chats/listResult"] = "chats/listResult"
    chats: list[TChat] = Field(default_factory=list)
    next_cursor: str | None = None


class ChatsGetMessage(WireModel):
    type: Literal["chats/get"] = "chats/get"
    chat_id: str


class ChatsGetResultMessage(WireModel):
    type: Literal["chats/getResult"] = "chats/getResult"
    chat: TChat


class ChatsCancelMessage(WireModel):
    type: Literal["chats/cancel"] = "chats/cancel"
    chat_id: str


class ChatsCancelResultMessage(WireModel):
    type: Literal["chats/cancelResult"] = "chats/cancelResult"
    chat_id: str
    ok: bool = True


class ChatsSubscribeMessage(WireModel):
    type: Literal["chats/subscribe"] = "chats/subscribe"
    chat_id: str
    prompt: str | None = None


class ChatsErrorMessage(WireModel):
    type: ChatsErrorType
    chat_id: str | None = None
    code: str
    message: str


# Chat family: events.


class ChatEventBase(WireModel):
    chat_id: str
    timestamp: str = Field(default_factory=utc_now_iso)


class ChatStartedEvent(ChatEventBase):
    type: Literal["chat.started"] = "chat.started"


class MessageDeltaEvent(ChatEventBase):
    type: Literal["message.delta"] = "message.delta"
    message_id: str
    delta: str
    index: int | None = None


class ChatCompletedEvent(ChatEventBase):
    type: Literal["chat.completed"] = "chat.completed"
    chat: TChat
    message: ChatMessage | None = None


class ChatCancelledEvent(ChatEventBase):
    type: Literal["chat.cancelled"] = "chat.cancelled"
    chat: TChat


class ChatFailedEvent(ChatEventBase):
    type: Literal["chat.failed"] = "chat.failed"
    error: str


Message = Annotated[
    Union[
        ReadyMessage,
        SessionStartMessage,
        SessionStartedMessage,
        SessionSendMessage,
        SessionStreamMessage,
        ToolCallMessage,
        SessionCompleteMessage,
        ChatsCreateMessage,
        ChatsCreatedMessage,
        ChatsListMessage,
        ChatsListResultMessage,
        ChatsGetMessage,
        ChatsGetResultMessage,
        ChatsCancelMessage,
        ChatsCancelResultMessage,
        ChatsSubscribeMessage,
        ChatsErrorMessage,
        ChatStartedEvent,
        MessageDeltaEvent,
        ChatCompletedEvent,
        ChatCancelledEvent,
        ChatFailedEvent,
    ],
    Field(discriminator="type"),
]

CHAT_TERMINAL_EVENTS = (ChatCompletedEvent, ChatCancelledEvent, ChatFailedEvent)

KNOWN_MESSAGE_TYPES = frozenset(item.value for item in MessageType)

_MESSAGE_ADAPTER: TypeAdapter[Any] = TypeAdapter(Message)


def parse_message(value: Any) -> WireModel | None:
    """Validate one decoded frame.

    Returns None for values that are not objects or whose `type` is unknown;
    those are skipped so newer peers can add message types. A known type with
    malformed fields raises PROTOCOL_ERROR.
    """
    if not isinstance(value, dict):
        return None
    kind = value.get("type")
    if not isinstance(kind, str) or kind not in KNOWN_MESSAGE_TYPES:
        return None
    try:
        return _MESSAGE_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise AgnetError(
            ErrorCode.PROTOCOL_ERROR,
            f"malformed '{kind}' message",
            details={"validation": exc.errors(include_url=False)},
        ) from exc

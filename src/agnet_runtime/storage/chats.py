"""Chat transcripts persisted as one JSON document per chat id."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError

from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.protocol import ChatMessage, WireModel

logger = logging.getLogger(__name__)

STORE_VERSION = 1


class PersistedChat(WireModel):
    version: Literal[1] = STORE_VERSION
    chat_id: str
    provider_id: str
    history: list[ChatMessage] = Field(default_factory=list)


def write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    tmp.replace(path)


class ChatStore:
    def __init__(self, root: Path) -> None:
        self._dir = root / "chats"

    def path_for(self, chat_id: str) -> Path:
        if not chat_id or "/" in chat_id or "\\" in chat_id or chat_id in {".", ".."}:
            raise AgnetError(ErrorCode.INVALID_ARGS, f"invalid chat id '{chat_id}'")
        return self._dir / f"{chat_id}.json"

    def exists(self, chat_id: str) -> bool:
        return self.path_for(chat_id).exists()

    def read(self, chat_id: str) -> PersistedChat:
        return read_chat_file(self.path_for(chat_id), chat_id=chat_id)

    def write(self, chat: PersistedChat) -> Path:
        path = self.path_for(chat.chat_id)
        write_json(path, chat.to_wire())
        logger.debug("wrote chat %s (%d messages)", chat.chat_id, len(chat.history))
        return path

    def delete(self, chat_id: str) -> None:
        self.path_for(chat_id).unlink(missing_ok=True)

    def list_ids(self) -> list[str]:
        if not self._dir.exists():
            return []
        return sorted(p.stem for p in self._dir.glob("*.json"))


def read_chat_file(path: Path, *, chat_id: str | None = None) -> PersistedChat:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise AgnetError(
            ErrorCode.CHAT_NOT_FOUND,
            f"chat '{chat_id or path.stem}' not found",
            details={"path": str(path)},
            suggestion="Create one with `agnet chats create`.",
        ) from exc
    try:
        return PersistedChat.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise AgnetError(
            ErrorCode.INVALID_CONFIG,
            f"chat file '{path}' is corrupt",
            details={"path": str(path), "error": str(exc)},
        ) from exc

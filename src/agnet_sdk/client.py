"""High-level `Agnet` facade for embedding agnet in Python programs."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from agnet_runtime.config import AppConfig
from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.protocol import ChatMessage
from agnet_runtime.providers import AuthFromEnvRef, AuthMaterial, ProviderConfig, ProviderRef, validate_provider_config
from agnet_runtime.session_client import random_id
from agnet_runtime.storage import ChatStore, PersistedChat
from agnet_runtime.storage.chats import write_json
from agnet_sdk.chats import ChatsService, strip_trailing_newline
from agnet_sdk.context import AppContext, create_app_context
from agnet_sdk.providers import ProvidersService, load_provider_file

logger = logging.getLogger(__name__)

AgentRequest = str | Mapping[str, Any]


class AgentResult(BaseModel):
    text: str
    chat_id: str
    provider_id: str
    history: list[ChatMessage] = Field(default_factory=list)


def _coerce_request(request: AgentRequest) -> tuple[str, str | None]:
    if isinstance(request, str):
        if not request.strip():
            raise AgnetError(ErrorCode.INVALID_ARGS, "Request prompt must be a non-empty string")
        return request, None
    if not isinstance(request, Mapping):
        raise AgnetError(ErrorCode.INVALID_ARGS, "Invalid request: expected string or {prompt, providerId?}")
    prompt = request.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise AgnetError(ErrorCode.INVALID_ARGS, "Invalid request.prompt: expected non-empty string")
    provider_id = request.get("providerId", request.get("provider_id"))
    if not isinstance(provider_id, str) or not provider_id.strip():
        provider_id = None
    return prompt, provider_id


class Chat:
    """A persisted multi-turn chat bound to one provider."""

    def __init__(self, chats: ChatsService, provider: ProviderRef, chat_id: str) -> None:
        self._chats = chats
        self._provider = provider
        self.id = chat_id

    @property
    def provider_id(self) -> str:
        return self._provider.id

    async def send(self, prompt: str) -> str:
        """Run one turn; the returned text always ends with a newline."""
        if self._provider.runtime is None:
            raise AgnetError(ErrorCode.INVALID_CONFIG, f'Provider "{self.provider_id}" has no runtime configured')
        return await self._chats.complete(self.id, prompt, runtime=self._provider.runtime)

    def history(self) -> list[ChatMessage]:
        return self._chats.store.read(self.id).history

    async def save_to_file(self, path: str | Path) -> None:
        persisted = PersistedChat(chat_id=self.id, provider_id=self.provider_id, history=self.history())
        write_json(Path(path), persisted.to_wire())


class ChatExecution:
    """A chat whose first request is already running."""

    def __init__(self, chat: Chat, prompt: str) -> None:
        self.chat = chat
        self._task: asyncio.Future[str] = asyncio.ensure_future(chat.send(prompt))

    async def response(self) -> str:
        return strip_trailing_newline(await self._task)

    async def result(self) -> AgentResult:
        text = await self.response()
        return AgentResult(
            text=text,
            chat_id=self.chat.id,
            provider_id=self.chat.provider_id,
            history=self.chat.history(),
        )


class ProviderRegistry:
    def __init__(self, service: ProvidersService, env: Mapping[str, str]) -> None:
        self._service = service
        self._env = env
        self._by_id: dict[str, ProviderRef] = {}
        for config in service.registered():
            self._by_id[config.agent.id] = ProviderRef.from_config(config, env=env)

    def register(
        self,
        source: str | Path | Mapping[str, Any] | ProviderConfig,
        *,
        auth: AuthMaterial | None = None,
        auth_from_env: AuthFromEnvRef | None = None,
    ) -> ProviderRef:
        if isinstance(source, ProviderConfig):
            config = source
        elif isinstance(source, (str, Path)):
            config = load_provider_file(source)
        else:
            config = validate_provider_config(source)

        ref = ProviderRef.from_config(config, auth=auth, auth_from_env=auth_from_env, env=self._env)
        # Re-insert so the most recent registration sorts last for default selection.
        self._by_id.pop(ref.id, None)
        self._by_id[ref.id] = ref
        self._service.save([config])
        return ref

    def get(self, provider_id: str) -> ProviderRef | None:
        return self._by_id.get(provider_id)

    def list(self) -> list[ProviderRef]:
        return list(self._by_id.values())

    def resolve_default(self, provider_id: str | None = None) -> ProviderRef:
        if provider_id:
            ref = self.get(provider_id)
            if ref is None:
                raise AgnetError(
                    ErrorCode.PROVIDER_NOT_FOUND,
                    f"Unknown provider: {provider_id}",
                    details={"known_providers": sorted(self._by_id)},
                )
            return ref
        refs = self.list()
        if not refs:
            raise AgnetError(
                ErrorCode.PROVIDER_NOT_FOUND,
                "No providers registered. Register one via `agnet.providers.register(...)` first.",
            )
        marked = [ref for ref in refs if ref.card.is_default]
        return marked[-1] if marked else refs[-1]


class ChatsNamespace:
    def __init__(self, chats: ChatsService, providers: ProviderRegistry) -> None:
        self._chats = chats
        self._providers = providers

    @property
    def store(self) -> ChatStore:
        return self._chats.store

    async def fetch_list(self) -> list[Chat]:
        # Local providers keep no remote chat index.
        return []

    async def open(self, provider_id: str | None = None) -> Chat:
        """Create an empty chat without sending anything."""
        provider = self._providers.resolve_default(provider_id)
        return self._new_chat(provider)

    async def create(self, request: AgentRequest) -> ChatExecution:
        prompt, provider_id = _coerce_request(request)
        provider = self._providers.resolve_default(provider_id)
        return ChatExecution(self._new_chat(provider), prompt)

    async def load_from_file(self, path: str | Path) -> Chat:
        file_path = Path(path)
        try:
            parsed = json.loads(file_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise AgnetError(
                ErrorCode.INVALID_CONFIG, f'Failed to parse chat JSON at "{file_path}": {exc.msg}'
            ) from exc
        if not isinstance(parsed, dict):
            raise AgnetError(ErrorCode.INVALID_CONFIG, f'Invalid chat file at "{file_path}": expected object')
        if parsed.get("version") != 1:
            raise AgnetError(ErrorCode.INVALID_CONFIG, f'Invalid chat file at "{file_path}": unsupported version')
        provider_id = parsed.get("providerId")
        chat_id = parsed.get("chatId")
        if not isinstance(provider_id, str) or not provider_id.strip():
            raise AgnetError(ErrorCode.INVALID_CONFIG, f'Invalid chat file at "{file_path}": missing providerId')
        if not isinstance(chat_id, str) or not chat_id.strip():
            raise AgnetError(ErrorCode.INVALID_CONFIG, f'Invalid chat file at "{file_path}": missing chatId')

        provider = self._providers.get(provider_id)
        if provider is None:
            raise AgnetError(
                ErrorCode.PROVIDER_NOT_FOUND,
                f'Unknown provider "{provider_id}" while loading chat',
            )
        try:
            history = [ChatMessage.model_validate(item) for item in parsed.get("history") or []]
        except ValidationError as exc:
            raise AgnetError(ErrorCode.INVALID_CONFIG, f'Invalid chat file at "{file_path}": bad history') from exc
        self._chats.store.write(PersistedChat(chat_id=chat_id, provider_id=provider.id, history=history))
        logger.debug("loaded chat %s from %s", chat_id, file_path)
        return Chat(self._chats, provider, chat_id)

    def _new_chat(self, provider: ProviderRef) -> Chat:
        chat_id = random_id("chat")
        self._chats.store.write(PersistedChat(chat_id=chat_id, provider_id=provider.id))
        return Chat(self._chats, provider, chat_id)


class Agnet:
    def __init__(
        self,
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.ctx: AppContext = create_app_context(cwd=cwd, env=env, config=config)
        service = ProvidersService(self.ctx)
        self.providers = ProviderRegistry(service, self.ctx.env)
        self.chats = ChatsNamespace(ChatsService(self.ctx, service), self.providers)

    async def ask(self, request: AgentRequest) -> str:
        execution = await self.chats.create(request)
        try:
            return await execution.response()
        finally:
            self.chats.store.delete(execution.chat.id)

    async def prompt(self, request: AgentRequest) -> AgentResult:
        execution = await self.chats.create(request)
        try:
            return await execution.result()
        finally:
            self.chats.store.delete(execution.chat.id)

    async def test_connection(self, provider_ids: list[str] | None = None) -> dict[str, Any]:
        """Check that every selected provider can resolve the auth its card requires."""
        selected = provider_ids or [ref.id for ref in self.providers.list()]
        results: list[dict[str, Any]] = []
        for provider_id in selected:
            ref = self.providers.get(provider_id)
            if ref is None:
                results.append({"providerId": provider_id, "ok": False, "error": f"Unknown provider: {provider_id}"})
                continue
            error = _auth_problem(ref)
            if error:
                results.append({"providerId": provider_id, "ok": False, "error": error})
            else:
                results.append({"providerId": provider_id, "ok": True})

        failed = [item for item in results if not item["ok"]]
        if failed:
            detail = "; ".join(f"{item['providerId']}: {item['error']}" for item in failed)
            raise AgnetError(
                ErrorCode.INVALID_CONFIG,
                f"testConnection failed: {detail}",
                details={"results": results},
            )
        return {"ok": True, "results": results}


def _auth_problem(ref: ProviderRef) -> str | None:
    auth = ref.card.auth
    kind = auth.kind if auth else "none"
    headers = ref.get_auth_headers()
    if kind == "bearer":
        header = (auth.header if auth else None) or "Authorization"
        value = headers.get(header) or headers.get(header.lower()) or ""
        parts = value.split()
        if len(parts) != 2 or parts[0] != "Bearer":
            return 'Missing bearer token (expected "Authorization: Bearer <token>")'
    elif kind == "apiKey":
        header = (auth.header if auth else None) or "X-API-Key"
        if not headers.get(header, "").strip():
            return f"Missing API key header: {header}"
    return None

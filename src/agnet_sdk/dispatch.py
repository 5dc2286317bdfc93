"""Route endpoint ids with JSON params to the SDK services."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from pydantic import ValidationError

from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_sdk.chats import ChatsService, ShortcutsService
from agnet_sdk.context import AppContext
from agnet_sdk.providers import ProvidersService
from agnet_sdk.schema import Endpoint, get_endpoint

logger = logging.getLogger(__name__)


class ApiHost:
    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx
        self.providers = ProvidersService(ctx)
        self.chats = ChatsService(ctx, self.providers)
        self.shortcuts = ShortcutsService(ctx, self.chats)

    async def call(self, endpoint_id: str, params: Mapping[str, Any] | None = None) -> Any:
        endpoint = get_endpoint(endpoint_id, include_internal=True)
        p = _validate(endpoint, params)
        if endpoint.pattern == "serverStream":
            return await self.chats.complete(p.chat_id, p.prompt)
        logger.debug("dispatch %s", endpoint_id)

        if endpoint_id == "internal.health":
            return "ok"
        if endpoint_id == "providers.list":
            return await self.providers.list()
        if endpoint_id == "providers.describe":
            return await self.providers.describe(p.provider_id)
        if endpoint_id == "providers.register":
            files = [*(p.files or []), *([p.file] if p.file else [])]
            return await self.providers.register(
                files=files,
                inline_json=p.inline_json,
                bearer_env=p.bearer_env,
                api_key_env=p.api_key_env,
                header_env=p.header_env,
            )
        if endpoint_id == "chats.create":
            return await self.chats.create(p.provider_id)
        if endpoint_id == "chats.close":
            return await self.chats.close(p.chat_id)
        if endpoint_id == "ask":
            return await self.shortcuts.ask(p.prompt, p.provider_id)
        if endpoint_id == "prompt":
            return await self.shortcuts.prompt(p.prompt, p.provider_id)
        raise AgnetError(ErrorCode.INTERNAL_ERROR, f"endpoint '{endpoint_id}' has no handler")

    async def stream(self, endpoint_id: str, params: Mapping[str, Any] | None = None) -> AsyncIterator[str]:
        endpoint = get_endpoint(endpoint_id, include_internal=True)
        if endpoint.pattern != "serverStream":
            yield str(await self.call(endpoint_id, params))
            return
        p = _validate(endpoint, params)
        async for chunk in self.chats.send(p.chat_id, p.prompt):
            yield chunk


def _validate(endpoint: Endpoint, params: Mapping[str, Any] | None) -> Any:
    try:
        return endpoint.params.model_validate(dict(params or {}))
    except ValidationError as exc:
        raise invalid_params_error(endpoint.id, exc) from exc


def invalid_params_error(endpoint_id: str, exc: ValidationError) -> AgnetError:
    first = exc.errors(include_url=False)[0]
    loc = ".".join(str(part) for part in first["loc"]) or "$"
    return AgnetError(
        ErrorCode.INVALID_ARGS,
        f"invalid params for '{endpoint_id}' at {loc}: {first['msg']}",
        details={"validation": exc.errors(include_url=False, include_context=False)},
        suggestion=f"Run `agnet schema {endpoint_id}` for expected parameters.",
    )


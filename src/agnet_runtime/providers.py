"""Provider (agent) configuration: card, runtime transport and auth references."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from agnet_runtime.exceptions import AgnetError, ErrorCode

AuthKind = Literal["none", "bearer", "apiKey"]

_RUNTIME_TAGS = {"cli", "http", "ipc"}


def _non_empty(value: str) -> str:
    if not value.strip():
        raise ValueError("expected non-empty string")
    return value


NonEmptyStr = Annotated[str, AfterValidator(_non_empty)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AgentSkill(CamelModel):
    id: NonEmptyStr
    description: str | None = None


class AgentRule(CamelModel):
    id: NonEmptyStr
    text: NonEmptyStr


class McpRequirement(CamelModel):
    tools: list[NonEmptyStr]


class AuthRequirement(CamelModel):
    kind: AuthKind
    header: str | None = None


class AgentCard(CamelModel):
    id: NonEmptyStr
    name: NonEmptyStr
    version: NonEmptyStr
    description: str | None = None
    skills: list[AgentSkill] = Field(min_length=1)
    rules: list[AgentRule] | None = None
    mcp: McpRequirement | None = None
    auth: AuthRequirement | None = None
    extensions: dict[str, Any] | None = None

    @property
    def is_default(self) -> bool:
        ext = self.extensions or {}
        return ext.get("default") is True or ext.get("isDefault") is True


class CliRuntime(CamelModel):
    transport: Literal["cli"] = "cli"
    command: NonEmptyStr
    args: list[NonEmptyStr] | None = None
    cwd: str | None = None


class HttpRuntime(CamelModel):
    transport: Literal["http"] = "http"
    base_url: NonEmptyStr


class IpcRuntime(CamelModel):
    transport: Literal["ipc"] = "ipc"
    socket_path: NonEmptyStr


AgentRuntime = Annotated[Union[CliRuntime, HttpRuntime, IpcRuntime], Field(discriminator="transport")]


class AuthFromEnvRef(CamelModel):
    """Names of env vars holding auth material; safe to persist."""

    bearer_env: str | None = None
    api_key_env: str | None = None
    header_env: dict[str, NonEmptyStr] | None = None


class AuthMaterial(CamelModel):
    """Secret auth values; never persisted."""

    bearer_token: str | None = None
    api_key: str | None = None
    headers: dict[str, str] | None = None


class ProviderConfig(CamelModel):
    agent: AgentCard
    runtime: AgentRuntime
    auth_ref: AuthFromEnvRef | None = None


def _format_loc(loc: tuple[int | str, ...]) -> str:
    parts: list[str] = []
    previous: int | str | None = None
    for item in loc:
        if isinstance(item, int):
            parts.append(f"[{item}]")
        elif previous == "runtime" and item in _RUNTIME_TAGS:
            # Union tag inserted by pydantic; not part of the user's document.
            pass
        else:
            parts.append(f".{item}" if parts else str(item))
        previous = item
    return "".join(parts) or "$"


def validate_provider_config(value: Any, *, source: str | None = None) -> ProviderConfig:
    if not isinstance(value, Mapping):
        raise AgnetError(ErrorCode.INVALID_CONFIG, 'Invalid provider config at "$": expected object')
    try:
        return ProviderConfig.model_validate(dict(value))
    except ValidationError as exc:
        first = exc.errors(include_url=False)[0]
        path = _format_loc(tuple(first["loc"]))
        details: dict[str, Any] = {"path": path, "errors": exc.errors(include_url=False, include_context=False)}
        if source:
            details["source"] = source
        raise AgnetError(
            ErrorCode.INVALID_CONFIG,
            f'Invalid provider config at "{path}": {first["msg"]}',
            details=details,
        ) from exc


def merge_auth_refs(base: AuthFromEnvRef | None, override: AuthFromEnvRef | None) -> AuthFromEnvRef:
    headers = dict((base.header_env if base else None) or {})
    headers.update((override.header_env if override else None) or {})
    return AuthFromEnvRef(
        bearer_env=(override.bearer_env if override else None) or (base.bearer_env if base else None),
        api_key_env=(override.api_key_env if override else None) or (base.api_key_env if base else None),
        header_env=headers or None,
    )


def _default_header(kind: AuthKind) -> str:
    if kind == "apiKey":
        return "X-API-Key"
    return "Authorization"


def resolve_auth_headers(
    card: AgentCard,
    *,
    auth: AuthMaterial | None = None,
    auth_from_env: AuthFromEnvRef | None = None,
    env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Env references first, then explicit secrets overlaid on top."""
    source = os.environ if env is None else env
    kind: AuthKind = card.auth.kind if card.auth else "none"
    header = (card.auth.header if card.auth else None) or _default_header(kind)
    out: dict[str, str] = {}

    if auth_from_env is not None:
        for name, env_name in (auth_from_env.header_env or {}).items():
            value = source.get(env_name)
            if value:
                out[name] = value
        if kind == "bearer" and auth_from_env.bearer_env:
            token = source.get(auth_from_env.bearer_env)
            if token:
                out[header] = f"Bearer {token}"
        if kind == "apiKey" and auth_from_env.api_key_env:
            key = source.get(auth_from_env.api_key_env)
            if key:
                out[header] = key

    if auth is not None:
        out.update(auth.headers or {})
        if kind == "bearer" and auth.bearer_token is not None:
            out[header] = f"Bearer {auth.bearer_token}"
        if kind == "apiKey" and auth.api_key is not None:
            out[header] = auth.api_key

    return out


@dataclass
class ProviderRef:
    id: str
    card: AgentCard
    runtime: CliRuntime | HttpRuntime | IpcRuntime | None
    get_auth_headers: Callable[[], dict[str, str]]

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        *,
        auth: AuthMaterial | None = None,
        auth_from_env: AuthFromEnvRef | None = None,
        env: Mapping[str, str] | None = None,
    ) -> "ProviderRef":
        merged = merge_auth_refs(config.auth_ref, auth_from_env)
        return cls(
            id=config.agent.id,
            card=config.agent,
            runtime=config.runtime,
            get_auth_headers=lambda: resolve_auth_headers(config.agent, auth=auth, auth_from_env=merged, env=env),
        )

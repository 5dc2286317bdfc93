"""Endpoint registry and the deterministic API schema snapshot."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from difflib import get_close_matches
from typing import Any, Literal

from pydantic import ConfigDict, Field

from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.providers import CamelModel

SCHEMA_VERSION = "v1"

ArgType = Literal["string", "boolean", "string[]"]
Pattern = Literal["unary", "serverStream"]


@dataclass(frozen=True)
class CliArg:
    flag: str | None = None
    aliases: tuple[str, ...] = ()
    repeatable: bool = False
    positional_index: int | None = None


@dataclass(frozen=True)
class ApiArg:
    name: str
    type: ArgType
    required: bool = False
    description: str | None = None
    cli: CliArg | None = None

    def to_json_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": self.name, "type": self.type, "required": self.required}
        if self.description:
            out["description"] = self.description
        if self.cli is not None:
            cli: dict[str, Any] = {}
            if self.cli.flag:
                cli["flag"] = self.cli.flag
            if self.cli.aliases:
                cli["aliases"] = list(self.cli.aliases)
            if self.cli.repeatable:
                cli["repeatable"] = True
            if self.cli.positional_index is not None:
                cli["positionalIndex"] = self.cli.positional_index
            out["cli"] = cli
        return out


class Params(CamelModel):
    model_config = ConfigDict(extra="forbid")


class EmptyParams(Params):
    pass


class ProviderIdParams(Params):
    provider_id: str


class ProvidersRegisterParams(Params):
    files: list[str] | None = None
    file: str | None = None
    inline_json: str | None = Field(default=None, alias="json")
    bearer_env: str | None = None
    api_key_env: str | None = None
    header_env: list[str] | None = None


class ChatsCreateParams(Params):
    provider_id: str | None = None


class ChatsSendParams(Params):
    chat_id: str
    prompt: str


class ChatIdParams(Params):
    chat_id: str


class PromptParams(Params):
    prompt: str
    provider_id: str | None = None


@dataclass(frozen=True)
class Endpoint:
    id: str
    params: type[Params]
    pattern: Pattern = "unary"
    args: tuple[ApiArg, ...] = field(default_factory=tuple)
    description: str | None = None
    internal: bool = False

    def to_json_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "pattern": self.pattern,
            "args": [arg.to_json_dict() for arg in self.args],
            "params": self.params.model_json_schema(by_alias=True),
        }
        if self.description:
            out["description"] = self.description
        return out


_CHAT_ARG = ApiArg("chatId", "string", required=True, cli=CliArg(flag="--chat", aliases=("--task", "--session")))
_PROVIDER_FLAG = ApiArg("providerId", "string", cli=CliArg(flag="--provider"))
_PROMPT_POSITIONAL = ApiArg("prompt", "string", required=True, cli=CliArg(positional_index=0))

ENDPOINTS: dict[str, Endpoint] = {
    endpoint.id: endpoint
    for endpoint in (
        Endpoint("providers.list", EmptyParams, description="List built-in and registered providers."),
        Endpoint(
            "providers.describe",
            ProviderIdParams,
            args=(ApiArg("providerId", "string", required=True, cli=CliArg(positional_index=0)),),
            description="Show the agent card of one provider.",
        ),
        Endpoint(
            "providers.register",
            ProvidersRegisterParams,
            args=(
                ApiArg("files", "string[]", cli=CliArg(flag="--files", repeatable=True)),
                ApiArg("file", "string", cli=CliArg(flag="--file")),
                ApiArg("json", "string", description="Inline provider config JSON.", cli=CliArg(flag="--json")),
                ApiArg("bearerEnv", "string", cli=CliArg(flag="--bearer-env")),
                ApiArg("apiKeyEnv", "string", cli=CliArg(flag="--api-key-env")),
                ApiArg("headerEnv", "string[]", cli=CliArg(flag="--header-env", repeatable=True)),
            ),
            description="Register providers from .agent.mdx/JSON files or inline JSON.",
        ),
        Endpoint("chats.create", ChatsCreateParams, args=(_PROVIDER_FLAG,), description="Create an empty chat."),
        Endpoint(
            "chats.send",
            ChatsSendParams,
            pattern="serverStream",
            args=(_CHAT_ARG, ApiArg("prompt", "string", required=True, cli=CliArg(flag="--prompt"))),
            description="Send one prompt and stream the reply.",
        ),
        Endpoint("chats.close", ChatIdParams, args=(_CHAT_ARG,), description="Delete a persisted chat."),
        Endpoint("ask", PromptParams, args=(_PROMPT_POSITIONAL, _PROVIDER_FLAG), description="One-shot text answer."),
        Endpoint(
            "prompt",
            PromptParams,
            args=(_PROMPT_POSITIONAL, _PROVIDER_FLAG),
            description="One-shot structured answer with history.",
        ),
        Endpoint("internal.health", EmptyParams, internal=True),
    )
}


def public_endpoint_ids() -> list[str]:
    return sorted(endpoint_id for endpoint_id, endpoint in ENDPOINTS.items() if not _is_internal(endpoint))


def get_endpoint(endpoint_id: str, *, include_internal: bool = False) -> Endpoint:
    endpoint = ENDPOINTS.get(endpoint_id)
    if endpoint is None or (_is_internal(endpoint) and not include_internal):
        raise unknown_endpoint_error(endpoint_id)
    return endpoint


def unknown_endpoint_error(endpoint_id: str) -> AgnetError:
    known = public_endpoint_ids()
    matches = get_close_matches(endpoint_id, known, n=3, cutoff=0.45)
    suggestion = f"Did you mean: {', '.join(matches)}" if matches else "Run `agnet schema` to list available endpoints."
    return AgnetError(
        ErrorCode.INVALID_ARGS,
        f"unknown endpoint '{endpoint_id}'",
        details={"known_endpoints": known},
        suggestion=suggestion,
    )


def generated_at(environ: dict[str, str] | None = None) -> str:
    """SOURCE_DATE_EPOCH when set to a positive number, else the Unix epoch."""
    source = os.environ if environ is None else environ
    raw = source.get("SOURCE_DATE_EPOCH", "")
    try:
        value = float(raw)
    except ValueError:
        value = 0.0
    seconds = value if math.isfinite(value) and value > 0 else 0.0
    try:
        stamp = datetime.fromtimestamp(seconds, UTC)
    except (OverflowError, OSError, ValueError):
        stamp = datetime.fromtimestamp(0, UTC)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def api_schema(endpoint_id: str | None = None, *, environ: dict[str, str] | None = None) -> dict[str, Any]:
    if endpoint_id:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "generatedAt": generated_at(environ),
            "endpoint": get_endpoint(endpoint_id).to_json_dict(),
        }
    return {
        "schemaVersion": SCHEMA_VERSION,
        "generatedAt": generated_at(environ),
        "endpoints": [ENDPOINTS[endpoint_id].to_json_dict() for endpoint_id in public_endpoint_ids()],
    }


def _is_internal(endpoint: Endpoint) -> bool:
    return endpoint.internal or endpoint.id.startswith("internal.")

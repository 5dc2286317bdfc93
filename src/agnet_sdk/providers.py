"""Providers service: built-ins, the persisted registry, and default selection."""

from __future__ import annotations

import json
import logging
import sys
from difflib import get_close_matches
from pathlib import Path
from typing import Any

from agnet_runtime.agent_mdx import parse_agent_mdx
from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.providers import (
    AgentCard,
    AgentSkill,
    AuthFromEnvRef,
    CliRuntime,
    ProviderConfig,
    merge_auth_refs,
    validate_provider_config,
)
from agnet_runtime.storage import ProviderRegistryStore
from agnet_sdk.context import AppContext

logger = logging.getLogger(__name__)

MOCK_PROVIDER_ID = "mock-agent"


def built_in_providers() -> list[ProviderConfig]:
    return [
        ProviderConfig(
            agent=AgentCard(
                id=MOCK_PROVIDER_ID,
                name="Mock Agent",
                version="0.0.0",
                description="Deterministic, stdio-driven mock provider for tests",
                skills=[AgentSkill(id="chat", description="Chat-style interaction, streamed over stdio")],
            ),
            runtime=CliRuntime(command=sys.executable, args=["-m", "agnet_runtime.agent.mock_agent"]),
        )
    ]


def load_provider_file(path: str | Path) -> ProviderConfig:
    """Read a provider from a `.agent.mdx` or JSON file."""
    file_path = Path(path)
    try:
        raw = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise AgnetError(
            ErrorCode.INVALID_ARGS,
            f'cannot read provider file "{file_path}": {exc.strerror or exc}',
            details={"path": str(file_path)},
        ) from exc

    if file_path.name.lower().endswith(".agent.mdx"):
        return parse_agent_mdx(raw, path=str(file_path))
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise AgnetError(
            ErrorCode.INVALID_CONFIG,
            f'Failed to parse JSON config at "{file_path}": {exc.msg}',
            details={"path": str(file_path)},
        ) from exc
    return validate_provider_config(parsed, source=str(file_path))


def parse_header_env(items: list[str] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for item in items or []:
        header, sep, env_name = item.partition("=")
        header, env_name = header.strip(), env_name.strip()
        if not sep or not header or not env_name:
            raise AgnetError(
                ErrorCode.INVALID_ARGS,
                f'Invalid --header-env "{item}" (expected "Header=ENV_VAR")',
            )
        out[header] = env_name
    return out


class ProvidersService:
    def __init__(self, ctx: AppContext) -> None:
        self._ctx = ctx
        self._registry = ProviderRegistryStore(ctx.storage_root)

    @property
    def registry(self) -> ProviderRegistryStore:
        return self._registry

    def registered(self) -> list[ProviderConfig]:
        return self._registry.read()

    def all_configs(self) -> list[ProviderConfig]:
        return [*built_in_providers(), *self.registered()]

    def resolve(self, provider_id: str) -> ProviderConfig:
        for config in built_in_providers():
            if config.agent.id == provider_id:
                return config
        registered = self.registered()
        for config in registered:
            if config.agent.id == provider_id:
                return config
        raise _unknown_provider_error(provider_id, [c.agent.id for c in [*built_in_providers(), *registered]])

    def resolve_default_provider_id(self, explicit: str | None = None) -> str:
        """Explicit id, else the last provider marked default, else the last registered, else the built-in."""
        if explicit and explicit.strip():
            return self.resolve(explicit).agent.id

        builtins = built_in_providers()
        registered = self.registered()
        marked = [c for c in [*builtins, *registered] if c.agent.is_default]
        if marked:
            return marked[-1].agent.id
        if registered:
            return registered[-1].agent.id
        return builtins[-1].agent.id

    def resolve_cli_runtime(self, provider_id: str) -> CliRuntime:
        runtime = self.resolve(provider_id).runtime
        if not isinstance(runtime, CliRuntime):
            raise AgnetError(
                ErrorCode.UNSUPPORTED_TRANSPORT,
                f'Provider "{provider_id}" does not support local CLI transport (got "{runtime.transport}")',
                details={"provider_id": provider_id, "transport": runtime.transport},
            )
        return runtime

    async def list(self) -> dict[str, Any]:
        providers = [
            {"id": c.agent.id, "name": c.agent.name, "description": c.agent.description}
            for c in self.all_configs()
        ]
        providers.sort(key=lambda item: item["id"])
        return {"providers": providers}

    async def describe(self, provider_id: str) -> dict[str, Any]:
        return {"provider": self.resolve(provider_id).agent.to_json_dict()}

    async def register(
        self,
        *,
        files: list[str] | None = None,
        inline_json: str | None = None,
        bearer_env: str | None = None,
        api_key_env: str | None = None,
        header_env: list[str] | None = None,
    ) -> dict[str, Any]:
        paths = [p for p in files or [] if p]
        if not paths and not inline_json:
            raise AgnetError(ErrorCode.INVALID_ARGS, "Missing --file or --json")
        if paths and inline_json:
            raise AgnetError(ErrorCode.INVALID_ARGS, "Use only one of --file or --json")

        configs: list[ProviderConfig] = []
        if inline_json:
            try:
                parsed = json.loads(inline_json)
            except json.JSONDecodeError as exc:
                raise AgnetError(ErrorCode.INVALID_ARGS, f"Failed to parse JSON: {exc.msg}") from exc
            configs.append(validate_provider_config(parsed))
        else:
            for path in paths:
                try:
                    configs.append(load_provider_file(path))
                except AgnetError as exc:
                    raise AgnetError(
                        exc.code,
                        f'Failed to register "{path}": {exc.message}',
                        details=exc.details,
                    ) from exc

        headers = parse_header_env(header_env)
        if bearer_env or api_key_env or headers:
            extra = AuthFromEnvRef(bearer_env=bearer_env, api_key_env=api_key_env, header_env=headers or None)
            configs = [c.model_copy(update={"auth_ref": merge_auth_refs(c.auth_ref, extra)}) for c in configs]

        self.save(configs)
        ids = [c.agent.id for c in configs]
        logger.info("registered providers %s", ", ".join(ids))
        if len(ids) == 1:
            return {"ok": True, "providerId": ids[0]}
        return {"ok": True, "providerIds": ids}

    def save(self, configs: list[ProviderConfig]) -> None:
        self._registry.upsert(configs)


def _unknown_provider_error(provider_id: str, known: list[str]) -> AgnetError:
    matches = get_close_matches(provider_id, known, n=3, cutoff=0.45)
    suggestion = f"Did you mean: {', '.join(matches)}" if matches else "Run `agnet providers list` to see providers."
    return AgnetError(
        ErrorCode.PROVIDER_NOT_FOUND,
        f"Unknown provider: {provider_id}",
        details={"known_providers": sorted(known)},
        suggestion=suggestion,
    )

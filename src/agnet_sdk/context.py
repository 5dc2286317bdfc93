"""Per-invocation context shared by the SDK services."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from agnet_runtime.config import AppConfig, load_config


@dataclass
class AppContext:
    cwd: Path
    env: Mapping[str, str]
    config: AppConfig

    @property
    def storage_root(self) -> Path:
        return self.config.storage.resolve_root(self.cwd)


def create_app_context(
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    config: AppConfig | None = None,
) -> AppContext:
    resolved_env = dict(os.environ) if env is None else dict(env)
    return AppContext(
        cwd=Path(cwd).resolve() if cwd is not None else Path.cwd(),
        env=resolved_env,
        config=config if config is not None else load_config(environ=resolved_env),
    )

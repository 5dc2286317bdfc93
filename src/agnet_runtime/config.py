"""Config loading, defaults, and environment overrides."""

from __future__ import annotations

import logging
import os
import sys
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

CONFIG_DIR_NAME = ".agnet"
DEFAULT_STORAGE_ROOT = Path(".cache") / "agnet"

_SECTIONS = {"runtime", "storage", "logging", "output"}


class RuntimeConfig(BaseModel):
    message_timeout_seconds: float = 2.0
    ready_timeout_seconds: float = 15.0
    kill_timeout_seconds: float = 5.0
    read_chunk_size: int = 64 * 1024

    @field_validator("message_timeout_seconds", "ready_timeout_seconds", "kill_timeout_seconds")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value


class StorageConfig(BaseModel):
    root: Path = DEFAULT_STORAGE_ROOT

    def resolve_root(self, cwd: Path) -> Path:
        root = self.root.expanduser()
        return root if root.is_absolute() else cwd / root


class LoggingConfig(BaseModel):
    level: str = "WARNING"
    log_file: Path | None = None


class OutputConfig(BaseModel):
    default_format: str = "human"


class AppConfig(BaseModel):
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    def expanded(self) -> "AppConfig":
        clone = self.model_copy(deep=True)
        clone.storage.root = clone.storage.root.expanduser()
        if clone.logging.log_file is not None:
            clone.logging.log_file = clone.logging.log_file.expanduser()
        return clone


def _coerce_env_value(value: str) -> Any:
    lower = value.lower()
    if lower in {"true", "false"}:
        return lower == "true"
    if "," in value:
        return [part.strip() for part in value.split(",") if part.strip()]
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    result = dict(data)
    source = os.environ if environ is None else environ
    for key, raw in source.items():
        if not key.startswith("AGNET_"):
            continue
        tokens = key[len("AGNET_") :].lower().split("_")
        section = tokens[0]
        # AGNET_PROTECT*, AGNET_ALLOW_* and friends are not config sections.
        if section not in _SECTIONS or len(tokens) == 1:
            continue
        field = "_".join(tokens[1:])
        section_obj = dict(result.get(section, {}))
        section_obj[field] = _coerce_env_value(raw)
        result[section] = section_obj
    return result


def default_config_path() -> Path:
    return Path.home() / CONFIG_DIR_NAME / "config.toml"


def load_config(path: Path | None = None, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    config_path = (path or default_config_path()).expanduser()
    data: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            loaded = tomllib.load(f)
            if isinstance(loaded, dict):
                data = loaded
    merged = _apply_env_overrides(data, environ)
    return AppConfig.model_validate(merged).expanded()


def configure_logging(cfg: AppConfig) -> None:
    """Route log records to stderr (stdout may be a protocol channel) and the optional log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if cfg.logging.log_file is not None:
        cfg.logging.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(cfg.logging.log_file))
    logging.basicConfig(
        level=getattr(logging, cfg.logging.level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
        force=True,
    )

"""Best-effort environment reduction for spawned agent processes.

Enabled with `AGNET_PROTECT=1` (or `AGNET_PROTECT_ENV=1`). This is a coarse
safety net against leaking unrelated secrets to child processes; it is not a
security boundary.
"""

from __future__ import annotations

import ntpath
import posixpath
from collections.abc import Mapping

from agnet_runtime.exceptions import AgnetError, ErrorCode

SAFE_ENV_KEYS = frozenset(
    {
        "PATH",
        "HOME",
        "USER",
        "LOGNAME",
        "SHELL",
        "PWD",
        "TMPDIR",
        "TMP",
        "TEMP",
        "LANG",
        "LC_ALL",
        "TERM",
        "COLORTERM",
        "NO_COLOR",
        "FORCE_COLOR",
        "CI",
        "PYTHONPATH",
        "PYTHONHOME",
        "VIRTUAL_ENV",
        "PYTHONIOENCODING",
        "PYTHONUNBUFFERED",
    }
)

_TRUTHY = {"1", "true", "yes", "on"}


def _truthy(value: str | None) -> bool:
    return bool(value) and value.strip().lower() in _TRUTHY


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def is_env_protection_enabled(env: Mapping[str, str]) -> bool:
    return _truthy(env.get("AGNET_PROTECT")) or _truthy(env.get("AGNET_PROTECT_ENV"))


def is_strict_protection_enabled(env: Mapping[str, str]) -> bool:
    return _truthy(env.get("AGNET_PROTECT_STRICT"))


def _allowed_by_patterns(key: str, patterns: list[str]) -> bool:
    for pattern in patterns:
        if pattern.endswith("*"):
            if key.startswith(pattern[:-1]):
                return True
        elif key == pattern:
            return True
    return False


def sanitize_child_env(env: Mapping[str, str]) -> Mapping[str, str]:
    """Return `env` untouched when protection is off, otherwise a reduced copy.

    Kept: the safe base set, `LC_*`, `AGNET_*`, and whatever `AGNET_ALLOW_ENV`
    lists (comma separated, `PREFIX_*` patterns allowed).
    """
    if not is_env_protection_enabled(env):
        return env

    allow = _split_list(env.get("AGNET_ALLOW_ENV"))
    out: dict[str, str] = {}
    for key, value in env.items():
        if value is None:
            continue
        if key in SAFE_ENV_KEYS or key.startswith(("LC_", "AGNET_")) or _allowed_by_patterns(key, allow):
            out[key] = value
    return out


def assert_command_allowed(command: str, env: Mapping[str, str]) -> None:
    if not is_strict_protection_enabled(env):
        return
    allow = _split_list(env.get("AGNET_ALLOW_COMMANDS"))
    if not allow:
        return

    base = ntpath.basename(posixpath.basename(command))
    if command in allow or base in allow:
        return
    raise AgnetError(
        ErrorCode.COMMAND_BLOCKED,
        f'Blocked command in strict protected mode: "{command}". Set AGNET_ALLOW_COMMANDS to allow it.',
        details={"command": command, "allowed": allow},
        suggestion="Add the command path or basename to AGNET_ALLOW_COMMANDS.",
    )

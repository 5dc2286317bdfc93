from __future__ import annotations

import pytest

from agnet_runtime.env_protection import (
    assert_command_allowed,
    is_env_protection_enabled,
    sanitize_child_env,
)
from agnet_runtime.exceptions import AgnetError, ErrorCode

BASE_ENV = {
    "PATH": "/usr/bin",
    "HOME": "/home/me",
    "LC_TIME": "C",
    "AGNET_PROTECT": "1",
    "AWS_SECRET_ACCESS_KEY": "shh",
    "OPENAI_API_KEY": "sk-1",
    "MY_TOKEN": "t",
}


def test_disabled_returns_env_untouched() -> None:
    env = {"PATH": "/usr/bin", "AWS_SECRET_ACCESS_KEY": "shh"}
    assert sanitize_child_env(env) is env
    assert not is_env_protection_enabled(env)


@pytest.mark.parametrize("flag", ["AGNET_PROTECT", "AGNET_PROTECT_ENV"])
@pytest.mark.parametrize("value", ["1", "true", "YES", " on "])
def test_truthy_flags_enable_protection(flag: str, value: str) -> None:
    assert is_env_protection_enabled({flag: value})


def test_enabled_keeps_safe_set_and_prefixes() -> None:
    out = sanitize_child_env(BASE_ENV)
    assert set(out) == {"PATH", "HOME", "LC_TIME", "AGNET_PROTECT"}


def test_allow_list_supports_exact_and_prefix_patterns() -> None:
    env = {**BASE_ENV, "AGNET_ALLOW_ENV": "MY_TOKEN, OPENAI_*"}
    out = sanitize_child_env(env)
    assert out["MY_TOKEN"] == "t"
    assert out["OPENAI_API_KEY"] == "sk-1"
    assert "AWS_SECRET_ACCESS_KEY" not in out


def test_commands_allowed_without_strict_mode() -> None:
    assert_command_allowed("/usr/bin/anything", {"AGNET_ALLOW_COMMANDS": "node"})


def test_strict_mode_with_empty_allow_list_allows_all() -> None:
    assert_command_allowed("/usr/bin/anything", {"AGNET_PROTECT_STRICT": "1"})


def test_strict_mode_matches_basename_or_full_path() -> None:
    env = {"AGNET_PROTECT_STRICT": "1", "AGNET_ALLOW_COMMANDS": "node,/opt/bin/agent"}
    assert_command_allowed("/usr/local/bin/node", env)
    assert_command_allowed("/opt/bin/agent", env)
    assert_command_allowed("C:\\tools\\node", env)

    with pytest.raises(AgnetError) as exc:
        assert_command_allowed("/usr/bin/python3", env)
    assert exc.value.code == ErrorCode.COMMAND_BLOCKED
    assert "python3" in exc.value.message

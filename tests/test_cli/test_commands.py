from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.main import get_command
from typer.testing import CliRunner

from agnet_cli._common import CLIState
from agnet_cli.main import app
from agnet_cli.shell import run_line
from agnet_runtime.config import AppConfig
from agnet_sdk.providers import MOCK_PROVIDER_ID, built_in_providers


@pytest.fixture(autouse=True)
def _isolated(fake_home: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _json(result: Any) -> Any:
    return json.loads(result.stdout.strip().splitlines()[-1])


@pytest.fixture
def provider_file(tmp_path: Path) -> Path:
    raw = built_in_providers()[0].to_json_dict()
    raw["agent"]["id"] = "local-mock"
    path = tmp_path / "local-mock.json"
    path.write_text(json.dumps(raw), encoding="utf-8")
    return path


def test_providers_list_json(runner: CliRunner) -> None:
    result = runner.invoke(app, ["--json", "providers", "list"])
    assert result.exit_code == 0
    assert [p["id"] for p in _json(result)["providers"]] == [MOCK_PROVIDER_ID]


def test_providers_describe_unknown(runner: CliRunner) -> None:
    result = runner.invoke(app, ["--json", "providers", "describe", "nope"])
    assert result.exit_code == 3
    payload = _json(result)
    assert payload["ok"] is False
    assert payload["error"]["code"] == "PROVIDER_NOT_FOUND"
    assert payload["error"]["suggestion"]


def test_providers_register_then_list(runner: CliRunner, provider_file: Path) -> None:
    registered = runner.invoke(app, ["providers", "register", "--file", str(provider_file)])
    assert registered.exit_code == 0
    assert _json(registered) == {"ok": True, "providerId": "local-mock"}

    listed = runner.invoke(app, ["providers", "list"])
    assert [p["id"] for p in _json(listed)["providers"]] == ["local-mock", MOCK_PROVIDER_ID]


def test_providers_register_needs_a_source(runner: CliRunner) -> None:
    result = runner.invoke(app, ["providers", "register"])
    assert result.exit_code == 2
    assert _json(result)["error"]["message"] == "Missing --file or --json"


def test_chat_lifecycle(runner: CliRunner) -> None:
    created = runner.invoke(app, ["chats", "create"])
    assert created.exit_code == 0
    chat_id = created.stdout.strip()
    assert chat_id.startswith("chat-")

    first = runner.invoke(app, ["chats", "send", "--chat", chat_id, "--prompt", "hi"])
    assert first.exit_code == 0
    assert first.stdout == "MockAgent response #1: hi\n"

    second = runner.invoke(app, ["chats", "send", "--task", chat_id, "--prompt", "again"])
    assert second.stdout == "MockAgent response #2: again\n"

    closed = runner.invoke(app, ["chats", "close", "--session", chat_id])
    assert closed.exit_code == 0
    assert closed.stdout == "ok\n"

    missing = runner.invoke(app, ["chats", "send", "--chat", chat_id, "--prompt", "x"])
    assert missing.exit_code == 3
    assert _json(missing)["error"]["code"] == "CHAT_NOT_FOUND"


def test_ask_prints_plain_text(runner: CliRunner) -> None:
    result = runner.invoke(app, ["ask", "hello"])
    assert result.exit_code == 0
    assert result.stdout == "MockAgent response #1: hello\n"


def test_prompt_prints_json(runner: CliRunner) -> None:
    result = runner.invoke(app, ["prompt", "hello", "--provider", MOCK_PROVIDER_ID])
    assert result.exit_code == 0
    payload = _json(result)
    assert payload["text"] == "MockAgent response #1: hello"
    assert payload["providerId"] == MOCK_PROVIDER_ID
    assert len(payload["history"]) == 2


def test_schema_is_stable(runner: CliRunner) -> None:
    result = runner.invoke(app, ["schema"])
    assert result.exit_code == 0
    payload = _json(result)
    assert payload["generatedAt"] == "1970-01-01T00:00:00.000Z"
    assert "internal.health" not in [e["id"] for e in payload["endpoints"]]

    single = runner.invoke(app, ["schema", "ask"])
    assert _json(single)["endpoint"]["id"] == "ask"

    unknown = runner.invoke(app, ["schema", "nope"])
    assert unknown.exit_code == 2


def test_call_unary_and_stream(runner: CliRunner) -> None:
    listed = runner.invoke(app, ["call", "providers.list", "--params", "{}"])
    assert listed.exit_code == 0
    assert _json(listed)["providers"][0]["id"] == MOCK_PROVIDER_ID

    created = runner.invoke(app, ["call", "chats.create"])
    chat_id = created.stdout.strip()
    streamed = runner.invoke(
        app,
        ["call", "chats.send", "--params", json.dumps({"chatId": chat_id, "prompt": "yo"})],
    )
    assert streamed.exit_code == 0
    assert streamed.stdout == "MockAgent response #1: yo\n"


@pytest.mark.parametrize("params", ["{bad", "[1]", '{"chatId": 3}'])
def test_call_rejects_bad_params(runner: CliRunner, params: str) -> None:
    result = runner.invoke(app, ["call", "chats.close", "--params", params])
    assert result.exit_code == 2
    assert _json(result)["error"]["code"] == "INVALID_ARGS"


def test_shell_runs_commands_until_exit(runner: CliRunner) -> None:
    result = runner.invoke(app, ["shell"], input="providers list\nshell\nexit\nproviders list\n")
    assert result.exit_code == 0
    assert "agnet interactive mode" in result.stdout
    assert result.stdout.count(MOCK_PROVIDER_ID) == 1
    assert "already in interactive mode" in result.stdout


def test_run_line_handles_parse_errors_and_exit() -> None:
    console = Console(record=True, width=120)
    state = CLIState(config=AppConfig(), json_output=True)
    group = get_command(app)
    assert run_line(group, state, 'ask "unterminated', console) is True
    assert "parse error" in console.export_text()
    assert run_line(group, state, "   ", console) is True
    assert run_line(group, state, "quit", console) is False

"""Shared CLI context, rendering, and error helpers."""

from __future__ import annotations

import asyncio
from difflib import get_close_matches
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
import typer
from typer.core import TyperGroup
from rich.console import Console
from rich.table import Table

from agnet_runtime.config import AppConfig, load_config
from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_sdk.context import AppContext, create_app_context

HELP_CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 110,
}


@dataclass
class CLIState:
    config: AppConfig
    json_output: bool
    config_path: Path | None = None

    def app_context(self) -> AppContext:
        return create_app_context(config=self.config)


class SuggestionGroup(TyperGroup):
    """Click command group that appends close-match suggestions for unknown commands."""

    def resolve_command(
        self,
        ctx: click.Context,
        args: list[str],
    ) -> tuple[str | None, click.Command | None, list[str]]:
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as exc:
            if args:
                attempted = args[0]
                matches = get_close_matches(attempted, list(self.list_commands(ctx)), n=3, cutoff=0.45)
                if matches:
                    exc.message = f"{exc.message}\n\nDid you mean: {', '.join(matches)}"
            raise


def build_typer(help_text: str) -> typer.Typer:
    """Create Typer apps with consistent help ergonomics across command groups."""

    return typer.Typer(
        help=help_text,
        cls=SuggestionGroup,
        no_args_is_help=True,
        rich_markup_mode="markdown",
        context_settings=HELP_CONTEXT_SETTINGS,
    )


def resolve_json_mode(json_flag: bool, cfg: AppConfig) -> bool:
    if json_flag:
        return True
    if not sys.stdout.isatty():
        return True
    return cfg.output.default_format.lower() == "json"


def get_state(ctx: typer.Context) -> CLIState:
    value = ctx.obj
    if not isinstance(value, CLIState):
        raise RuntimeError("CLI context not initialized")
    return value


def run_async(awaitable: Any) -> Any:
    return asyncio.run(awaitable)


def echo_text(text: str) -> None:
    """Plain text results are written as-is, ending with exactly one newline."""
    typer.echo(text if text.endswith("\n") else text + "\n", nl=False)


def print_output(data: Any, *, json_output: bool, title: str | None = None) -> None:
    if isinstance(data, str):
        echo_text(data)
        return
    if json_output:
        print(json.dumps(data, default=str, separators=(",", ":")))
        return
    console = Console()
    if isinstance(data, list):
        if not data:
            console.print("(empty)")
            return
        if all(isinstance(item, dict) for item in data):
            keys: list[str] = []
            seen: set[str] = set()
            for item in data:
                for key in item.keys():
                    if key in seen:
                        continue
                    seen.add(key)
                    keys.append(key)
            table = Table(title=title)
            for key in keys:
                table.add_column(str(key))
            for item in data:
                table.add_row(*[str(item.get(k, "")) for k in keys])
            console.print(table)
            return
    if isinstance(data, dict):
        if all(not isinstance(v, (dict, list)) for v in data.values()):
            table = Table(title=title)
            table.add_column("Key")
            table.add_column("Value")
            for key, value in data.items():
                table.add_row(str(key), str(value))
            console.print(table)
            return
    console.print_json(json.dumps(data, default=str, indent=2))


def handle_error(exc: AgnetError, *, json_output: bool) -> None:
    suggestion = exc.suggestion or _default_suggestion(exc.code)
    error_payload = exc.to_error_payload()
    if suggestion and "suggestion" not in error_payload:
        error_payload["suggestion"] = suggestion
    payload = {"ok": False, "error": error_payload}
    if json_output:
        print(json.dumps(payload, default=str, separators=(",", ":")))
    else:
        console = Console(stderr=True)
        console.print(f"[red]{exc.code.value}[/red]: {exc.message}", markup=True, highlight=False)
        if exc.details:
            console.print_json(json.dumps(exc.details, default=str, indent=2))
        if suggestion:
            console.print(f"Suggestion: {suggestion}", markup=False)
    raise typer.Exit(code=exc.exit_code)


def _default_suggestion(code: ErrorCode) -> str | None:
    suggestions = {
        ErrorCode.PROVIDER_NOT_FOUND: "Run `agnet providers list` to see available providers.",
        ErrorCode.CHAT_NOT_FOUND: "Create one with `agnet chats create`.",
        ErrorCode.INVALID_ARGS: "Run `agnet --help` or `<command> --help` for valid usage.",
        ErrorCode.TIMEOUT: "Retry the command or increase `runtime.message_timeout_seconds` in config.",
        ErrorCode.COMMAND_BLOCKED: "Unset AGNET_PROTECT_STRICT or allow the command with AGNET_ALLOW_COMMANDS.",
        ErrorCode.SPAWN_FAILED: "Check the provider runtime command with `agnet providers describe <id>`.",
    }
    return suggestions.get(code)

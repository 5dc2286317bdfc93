"""Interactive loop that runs agnet commands typed one per line."""

from __future__ import annotations

import shlex

import click
import typer
from rich.console import Console

from agnet_cli._common import CLIState, get_state

BANNER = 'agnet interactive mode. Type "help" (or "?") for commands, "exit" to quit.'
PROMPT = "agnet> "


def _global_args(state: CLIState) -> list[str]:
    args: list[str] = []
    if state.json_output:
        args.append("--json")
    if state.config_path is not None:
        args.extend(["--config", str(state.config_path)])
    return args


def run_line(group: click.Command, state: CLIState, line: str, console: Console) -> bool:
    """Run one line; returns False when the loop should stop."""
    stripped = line.strip()
    if not stripped:
        return True
    if stripped in {"exit", "quit"}:
        return False
    try:
        tokens = shlex.split(stripped)
    except ValueError as exc:
        console.print(f"parse error: {exc}", markup=False)
        return True
    if tokens[0] == "agnet":
        tokens = tokens[1:]
    if not tokens or tokens[0] in {"help", "?"}:
        tokens = ["--help"]
    if tokens[0] == "shell":
        console.print("already in interactive mode", markup=False)
        return True

    try:
        group.main(args=[*_global_args(state), *tokens], prog_name="agnet", standalone_mode=False)
    except click.exceptions.Abort:
        return False
    except click.ClickException as exc:
        exc.show()
    return True


def shell(ctx: typer.Context) -> None:
    state = get_state(ctx)
    group = ctx.find_root().command
    console = Console()
    console.print(BANNER, markup=False)
    while True:
        try:
            line = console.input(PROMPT)
        except (EOFError, KeyboardInterrupt):
            break
        if not run_line(group, state, line, console):
            break

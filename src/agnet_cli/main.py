"""Root Typer app and command registration."""

from __future__ import annotations

from pathlib import Path

import typer

from agnet_cli import chats, providers, schema_cmd, shell, shortcuts
from agnet_cli._common import CLIState, build_typer, load_config, resolve_json_mode
from agnet_runtime.config import configure_logging

app = build_typer(
    """Drive local agent providers over framed stdio.

    Examples:
      agnet providers list
      agnet ask "hello"
      agnet chats send --chat <id> --prompt "hello"
    """
)

app.add_typer(providers.app, name="providers")
app.add_typer(chats.app, name="chats")

app.command("ask", help="One-shot prompt; prints the reply text.")(shortcuts.ask)
app.command("prompt", help="One-shot prompt; prints JSON with text, chat id, provider id and history.")(
    shortcuts.prompt
)
app.command("schema", help="Show the machine-readable API schema.")(schema_cmd.schema)
app.command("call", help="Call any API endpoint by id with JSON params.")(schema_cmd.call)
app.command("shell", help="Interactive mode: run agnet commands one per line.")(shell.shell)


@app.callback()
def root(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit machine-readable JSON only.",
    ),
    config: str | None = typer.Option(
        None,
        "--config",
        help="Path to config.toml (default: ~/.agnet/config.toml).",
    ),
) -> None:
    config_path = None if config is None else Path(config)
    cfg = load_config(config_path)
    configure_logging(cfg)
    ctx.obj = CLIState(config=cfg, json_output=resolve_json_mode(json_output, cfg), config_path=config_path)


def run() -> None:
    app()


if __name__ == "__main__":
    run()

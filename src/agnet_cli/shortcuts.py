"""One-shot `ask` and `prompt` commands."""

from __future__ import annotations

import typer

from agnet_cli._common import get_state, handle_error, print_output, run_async
from agnet_runtime.exceptions import AgnetError
from agnet_sdk.chats import ShortcutsService


def ask(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Prompt text."),
    provider_id: str | None = typer.Option(None, "--provider", help="Provider id."),
) -> None:
    state = get_state(ctx)
    try:
        text = run_async(ShortcutsService(state.app_context()).ask(prompt, provider_id))
        print_output(text, json_output=state.json_output)
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)


def prompt(
    ctx: typer.Context,
    prompt_text: str = typer.Argument(..., metavar="PROMPT", help="Prompt text."),
    provider_id: str | None = typer.Option(None, "--provider", help="Provider id."),
) -> None:
    state = get_state(ctx)
    try:
        data = run_async(ShortcutsService(state.app_context()).prompt(prompt_text, provider_id))
        print_output(data, json_output=True)
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)

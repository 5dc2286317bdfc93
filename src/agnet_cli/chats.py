"""Chat lifecycle commands: create, send (streamed), and close."""

from __future__ import annotations

import contextlib

import typer

from agnet_cli._common import build_typer, get_state, handle_error, print_output, run_async
from agnet_runtime.exceptions import AgnetError
from agnet_sdk.chats import ChatsService

app = build_typer("Create chats, send prompts, and close chats.")

CHAT_OPTION_DECLS = ("--chat", "--task", "--session")


async def _stream_send(service: ChatsService, chat_id: str, prompt: str) -> None:
    async with contextlib.aclosing(service.send(chat_id, prompt)) as stream:
        async for delta in stream:
            typer.echo(delta, nl=False)


@app.command("create", help="Create an empty chat and print its id.")
def create(
    ctx: typer.Context,
    provider_id: str | None = typer.Option(None, "--provider", help="Provider id (default: resolved default)."),
) -> None:
    state = get_state(ctx)
    try:
        chat_id = run_async(ChatsService(state.app_context()).create(provider_id))
        print_output(chat_id, json_output=state.json_output)
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)


@app.command("send", help="Send one prompt to a chat and stream the reply to stdout.")
def send(
    ctx: typer.Context,
    chat_id: str = typer.Option(..., *CHAT_OPTION_DECLS, help="Chat id from `agnet chats create`."),
    prompt: str = typer.Option(..., "--prompt", help="Prompt text."),
) -> None:
    state = get_state(ctx)
    try:
        run_async(_stream_send(ChatsService(state.app_context()), chat_id, prompt))
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)


@app.command("close", help="Delete a persisted chat.")
def close(
    ctx: typer.Context,
    chat_id: str = typer.Option(..., *CHAT_OPTION_DECLS, help="Chat id to close."),
) -> None:
    state = get_state(ctx)
    try:
        result = run_async(ChatsService(state.app_context()).close(chat_id))
        print_output(result, json_output=state.json_output)
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)

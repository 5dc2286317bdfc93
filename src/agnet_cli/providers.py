"""Provider listing, inspection, and registration commands."""

from __future__ import annotations

import typer

from agnet_cli._common import build_typer, get_state, handle_error, print_output, run_async
from agnet_runtime.exceptions import AgnetError
from agnet_sdk.providers import ProvidersService

app = build_typer("Inspect and register agent providers.")


@app.command("list", help="List built-in and registered providers.")
def list_providers(ctx: typer.Context) -> None:
    state = get_state(ctx)
    try:
        data = run_async(ProvidersService(state.app_context()).list())
        if state.json_output:
            print_output(data, json_output=True)
        else:
            print_output(data["providers"], json_output=False, title="Providers")
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)


@app.command("describe", help="Show the agent card of one provider.")
def describe(
    ctx: typer.Context,
    provider_id: str = typer.Argument(..., help="Provider id (example: mock-agent)."),
) -> None:
    state = get_state(ctx)
    try:
        data = run_async(ProvidersService(state.app_context()).describe(provider_id))
        print_output(data, json_output=state.json_output)
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)


@app.command("register", help="Register providers from `.agent.mdx`/JSON files or inline JSON.")
def register(
    ctx: typer.Context,
    files: list[str] | None = typer.Option(None, "--files", help="Provider file; repeat for several."),
    file: str | None = typer.Option(None, "--file", help="Single provider file."),
    inline_json: str | None = typer.Option(None, "--json", help="Inline provider config JSON."),
    bearer_env: str | None = typer.Option(None, "--bearer-env", help="Env var holding a bearer token."),
    api_key_env: str | None = typer.Option(None, "--api-key-env", help="Env var holding an API key."),
    header_env: list[str] | None = typer.Option(
        None,
        "--header-env",
        help="Extra header sourced from env, as Header=ENV_VAR; repeatable.",
    ),
) -> None:
    state = get_state(ctx)
    paths = [*(files or []), *([file] if file else [])]
    try:
        data = run_async(
            ProvidersService(state.app_context()).register(
                files=paths,
                inline_json=inline_json,
                bearer_env=bearer_env,
                api_key_env=api_key_env,
                header_env=header_env,
            )
        )
        print_output(data, json_output=state.json_output)
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)

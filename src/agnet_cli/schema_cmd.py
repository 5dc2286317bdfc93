"""API schema discovery and generic endpoint calls."""

from __future__ import annotations

import json
from typing import Any

import typer

from agnet_cli._common import get_state, handle_error, print_output, run_async
from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_sdk.dispatch import ApiHost
from agnet_sdk.schema import api_schema, get_endpoint


def schema(
    ctx: typer.Context,
    endpoint: str | None = typer.Argument(
        None,
        help="Optional endpoint id (example: chats.send). Omit to list all endpoints.",
    ),
) -> None:
    state = get_state(ctx)
    try:
        print_output(api_schema(endpoint), json_output=state.json_output)
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)


def _parse_params(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise AgnetError(ErrorCode.INVALID_ARGS, f"--params is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise AgnetError(ErrorCode.INVALID_ARGS, "--params must be a JSON object")
    return parsed


async def _stream(host: ApiHost, endpoint_id: str, params: dict[str, Any]) -> None:
    async for chunk in host.stream(endpoint_id, params):
        typer.echo(chunk, nl=False)


def call(
    ctx: typer.Context,
    endpoint: str = typer.Argument(..., help="Endpoint id (see `agnet schema`)."),
    params: str | None = typer.Option(None, "--params", help="Endpoint params as a JSON object."),
) -> None:
    state = get_state(ctx)
    try:
        payload = _parse_params(params)
        host = ApiHost(state.app_context())
        if get_endpoint(endpoint).pattern == "serverStream":
            run_async(_stream(host, endpoint, payload))
            return
        result = run_async(host.call(endpoint, payload))
        print_output(result, json_output=state.json_output)
    except AgnetError as exc:
        handle_error(exc, json_output=state.json_output)

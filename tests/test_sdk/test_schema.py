from __future__ import annotations

import pytest

from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_sdk.schema import api_schema, generated_at, get_endpoint, public_endpoint_ids

PUBLIC = [
    "ask",
    "chats.close",
    "chats.create",
    "chats.send",
    "prompt",
    "providers.describe",
    "providers.list",
    "providers.register",
]


def test_public_endpoints_are_sorted_and_hide_internal() -> None:
    assert public_endpoint_ids() == PUBLIC


def test_full_schema_is_deterministic() -> None:
    first = api_schema(environ={})
    second = api_schema(environ={})
    assert first == second
    assert first["schemaVersion"] == "v1"
    assert first["generatedAt"] == "1970-01-01T00:00:00.000Z"
    assert [item["id"] for item in first["endpoints"]] == PUBLIC


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1700000000", "2023-11-14T22:13:20.000Z"),
        ("1700000000.5", "2023-11-14T22:13:20.500Z"),
        ("0", "1970-01-01T00:00:00.000Z"),
        ("-5", "1970-01-01T00:00:00.000Z"),
        ("soon", "1970-01-01T00:00:00.000Z"),
        ("inf", "1970-01-01T00:00:00.000Z"),
        ("1e20", "1970-01-01T00:00:00.000Z"),
        ("1e12", "1970-01-01T00:00:00.000Z"),
    ],
)
def test_generated_at_honours_source_date_epoch(value: str, expected: str) -> None:
    assert generated_at({"SOURCE_DATE_EPOCH": value}) == expected


def test_single_endpoint_schema() -> None:
    schema = api_schema("chats.send", environ={})
    endpoint = schema["endpoint"]
    assert endpoint["pattern"] == "serverStream"
    assert endpoint["args"][0] == {
        "name": "chatId",
        "type": "string",
        "required": True,
        "cli": {"flag": "--chat", "aliases": ["--task", "--session"]},
    }
    assert set(endpoint["params"]["required"]) == {"chatId", "prompt"}


def test_register_args_mark_repeatable_flags() -> None:
    args = {arg["name"]: arg for arg in api_schema("providers.register", environ={})["endpoint"]["args"]}
    assert args["files"]["cli"] == {"flag": "--files", "repeatable": True}
    assert args["headerEnv"]["type"] == "string[]"


def test_unknown_endpoint_suggests_close_match() -> None:
    with pytest.raises(AgnetError) as exc:
        api_schema("chats.sned")
    assert exc.value.code == ErrorCode.INVALID_ARGS
    assert exc.value.message == "unknown endpoint 'chats.sned'"
    assert exc.value.suggestion.startswith("Did you mean: chats.send")


def test_internal_endpoints_need_opt_in() -> None:
    with pytest.raises(AgnetError):
        get_endpoint("internal.health")
    assert get_endpoint("internal.health", include_internal=True).internal

from __future__ import annotations

import json

import pytest

from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_sdk.dispatch import ApiHost
from agnet_sdk.providers import MOCK_PROVIDER_ID


@pytest.mark.asyncio
async def test_internal_health(app_ctx) -> None:
    assert await ApiHost(app_ctx).call("internal.health") == "ok"


@pytest.mark.asyncio
async def test_providers_list_via_dispatch(app_ctx) -> None:
    result = await ApiHost(app_ctx).call("providers.list", {})
    assert [item["id"] for item in result["providers"]] == [MOCK_PROVIDER_ID]


@pytest.mark.asyncio
async def test_register_merges_file_and_files(app_ctx, provider_file, tmp_path, mock_provider_dict) -> None:
    second = json.loads(json.dumps(mock_provider_dict))
    second["agent"]["id"] = "second-mock"
    second_path = tmp_path / "second.json"
    second_path.write_text(json.dumps(second), encoding="utf-8")

    result = await ApiHost(app_ctx).call(
        "providers.register",
        {"files": [str(provider_file)], "file": str(second_path)},
    )
    assert result == {"ok": True, "providerIds": ["local-mock", "second-mock"]}


@pytest.mark.asyncio
async def test_invalid_params_are_reported(app_ctx) -> None:
    host = ApiHost(app_ctx)
    with pytest.raises(AgnetError) as missing:
        await host.call("providers.describe", {})
    assert missing.value.code == ErrorCode.INVALID_ARGS
    assert missing.value.message.startswith("invalid params for 'providers.describe'")
    assert missing.value.suggestion == "Run `agnet schema providers.describe` for expected parameters."

    with pytest.raises(AgnetError) as extra:
        await host.call("providers.list", {"bogus": 1})
    assert "bogus" in extra.value.message


@pytest.mark.asyncio
async def test_chat_round_trip_via_dispatch(app_ctx) -> None:
    host = ApiHost(app_ctx)
    chat_id = await host.call("chats.create", {"providerId": MOCK_PROVIDER_ID})

    chunks = [chunk async for chunk in host.stream("chats.send", {"chatId": chat_id, "prompt": "hi"})]
    assert "".join(chunks) == "MockAgent response #1: hi\n"

    joined = await host.call("chats.send", {"chatId": chat_id, "prompt": "again"})
    assert joined == "MockAgent response #2: again\n"

    assert await host.call("chats.close", {"chatId": chat_id}) == "ok"


@pytest.mark.asyncio
async def test_stream_of_unary_endpoint_yields_once(app_ctx) -> None:
    chunks = [chunk async for chunk in ApiHost(app_ctx).stream("ask", {"prompt": "yo"})]
    assert chunks == ["MockAgent response #1: yo\n"]


@pytest.mark.asyncio
async def test_prompt_via_dispatch(app_ctx) -> None:
    result = await ApiHost(app_ctx).call("prompt", {"prompt": "yo"})
    assert result["text"] == "MockAgent response #1: yo"
    assert result["providerId"] == MOCK_PROVIDER_ID


@pytest.mark.asyncio
async def test_call_on_stream_endpoint_orders_by_index(app_ctx, mock_provider_dict, reversed_runtime) -> None:
    mock_provider_dict["runtime"] = reversed_runtime.to_json_dict()
    host = ApiHost(app_ctx)
    await host.call("providers.register", {"json": json.dumps(mock_provider_dict)})
    chat_id = await host.call("chats.create", {"providerId": "local-mock"})

    assert await host.call("chats.send", {"chatId": chat_id, "prompt": "hi"}) == "hello world\n"

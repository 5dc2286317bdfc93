from __future__ import annotations

import json

import pytest

from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.protocol import ChatMessage
from agnet_runtime.providers import validate_provider_config
from agnet_runtime.storage import ChatStore, PersistedChat, ProviderRegistryStore


def _provider(provider_id: str, name: str = "P") -> dict:
    return {
        "agent": {"id": provider_id, "name": name, "version": "1", "skills": [{"id": "chat"}]},
        "runtime": {"transport": "cli", "command": "agent"},
    }


def test_chat_store_round_trip(tmp_path) -> None:
    store = ChatStore(tmp_path)
    chat = PersistedChat(
        chat_id="chat-1",
        provider_id="mock-agent",
        history=[ChatMessage(role="user", content="hi"), ChatMessage(role="assistant", content="yo")],
    )
    path = store.write(chat)

    assert path == tmp_path / "chats" / "chat-1.json"
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["version"] == 1
    assert on_disk["chatId"] == "chat-1"
    assert on_disk["providerId"] == "mock-agent"
    assert store.read("chat-1") == chat
    assert store.list_ids() == ["chat-1"]

    store.delete("chat-1")
    store.delete("chat-1")
    assert not store.exists("chat-1")


def test_missing_chat_is_not_found(tmp_path) -> None:
    with pytest.raises(AgnetError) as exc:
        ChatStore(tmp_path).read("ghost")
    assert exc.value.code == ErrorCode.CHAT_NOT_FOUND


def test_corrupt_chat_is_invalid_config(tmp_path) -> None:
    store = ChatStore(tmp_path)
    path = store.path_for("bad")
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(AgnetError) as exc:
        store.read("bad")
    assert exc.value.code == ErrorCode.INVALID_CONFIG


@pytest.mark.parametrize("chat_id", ["", "..", "a/b", "a\\b"])
def test_path_like_chat_ids_are_rejected(tmp_path, chat_id: str) -> None:
    with pytest.raises(AgnetError) as exc:
        ChatStore(tmp_path).path_for(chat_id)
    assert exc.value.code == ErrorCode.INVALID_ARGS


def test_registry_missing_file_reads_empty(tmp_path) -> None:
    assert ProviderRegistryStore(tmp_path).read() == []


def test_registry_upsert_replaces_and_moves_to_end(tmp_path) -> None:
    store = ProviderRegistryStore(tmp_path)
    store.upsert([validate_provider_config(_provider("a")), validate_provider_config(_provider("b"))])
    merged = store.upsert([validate_provider_config(_provider("a", name="A2"))])

    assert [p.agent.id for p in merged] == ["b", "a"]
    assert [p.agent.name for p in store.read()] == ["P", "A2"]
    assert json.loads(store.path.read_text(encoding="utf-8"))["version"] == 1


def test_registry_skips_invalid_entries(tmp_path) -> None:
    store = ProviderRegistryStore(tmp_path)
    store.path.write_text(
        json.dumps({"version": 1, "providers": [_provider("ok"), {"agent": {"id": "broken"}}]}),
        encoding="utf-8",
    )
    assert [p.agent.id for p in store.read()] == ["ok"]


@pytest.mark.parametrize("content", ["{oops", '{"version": 2, "providers": []}', '{"version": 1}', "[]"])
def test_registry_unreadable_shapes_read_empty(tmp_path, content: str) -> None:
    store = ProviderRegistryStore(tmp_path)
    store.path.write_text(content, encoding="utf-8")
    assert store.read() == []

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import pytest

from agnet_runtime.config import load_config
from agnet_runtime.providers import CliRuntime
from agnet_sdk.context import AppContext, create_app_context
from agnet_sdk.providers import built_in_providers


@pytest.fixture
def app_ctx(tmp_path: Path) -> AppContext:
    env = {k: v for k, v in os.environ.items() if not k.startswith("AGNET_")}
    return create_app_context(cwd=tmp_path, env=env, config=load_config(tmp_path / "absent.toml", environ={}))


@pytest.fixture
def mock_provider_dict() -> dict:
    """The built-in mock provider re-registered under another id."""
    raw = built_in_providers()[0].to_json_dict()
    raw["agent"]["id"] = "local-mock"
    raw["agent"]["name"] = "Local Mock"
    return raw


@pytest.fixture
def provider_file(tmp_path: Path, mock_provider_dict: dict) -> Path:
    path = tmp_path / "local-mock.json"
    path.write_text(json.dumps(mock_provider_dict), encoding="utf-8")
    return path


REVERSED_AGENT = '''\
import os
import sys

from agnet_runtime.framing import FrameDecoder, encode_frame


def send(value):
    sys.stdout.buffer.write(encode_frame(value))
    sys.stdout.buffer.flush()


send({"type": "ready", "pid": os.getpid(), "version": 1})
decoder = FrameDecoder()
history = []
while True:
    chunk = os.read(0, 65536)
    if not chunk:
        break
    for message in decoder.push(chunk):
        session_id = message.get("sessionId") or "s"
        if message["type"] == "session/start":
            send({"type": "session/started", "sessionId": session_id})
        elif message["type"] == "session/send":
            history.append({"role": "user", "content": message["content"]})
            send({"type": "session/stream", "sessionId": session_id, "index": 1, "delta": "world"})
            send({"type": "session/stream", "sessionId": session_id, "index": 0, "delta": "hello "})
            reply = {"role": "assistant", "content": "hello world"}
            history.append(reply)
            send({"type": "session/complete", "sessionId": session_id, "message": reply, "history": history})
'''


@pytest.fixture
def reversed_runtime(tmp_path: Path) -> CliRuntime:
    """An agent that streams its reply with indices in reverse order."""
    script = tmp_path / "reversed_agent.py"
    script.write_text(REVERSED_AGENT, encoding="utf-8")
    return CliRuntime(command=sys.executable, args=[str(script)])

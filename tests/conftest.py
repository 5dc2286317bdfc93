from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture
def fake_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("AGNET_STORAGE_ROOT", str(tmp_path / "store"))
    return home


@pytest.fixture(autouse=True)
def clear_agnet_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ.keys()):
        if key.startswith("AGNET_") or key == "SOURCE_DATE_EPOCH":
            monkeypatch.delenv(key, raising=False)

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from storybook_agents.domain.errors import PersistenceError
from storybook_agents.storage.assets import LocalAssetStore


def test_put_writes_bytes_under_kind_directory(tmp_path: Path) -> None:
    store = LocalAssetStore(tmp_path / "assets")

    location = asyncio.run(store.put(b"\x89PNG", kind="avatar", name="Mia the Brave"))

    path = Path(location)
    assert path.parent == tmp_path / "assets" / "avatars"
    assert path.name.startswith("Mia_the_Brave_")
    assert path.suffix == ".png"
    assert path.read_bytes() == b"\x89PNG"
    assert not list(path.parent.glob("*.tmp"))
    assert asyncio.run(store.put(b"\x89PNG", kind="avatar", name="Mia the Brave")) == location


def test_put_reports_unwritable_root(tmp_path: Path) -> None:
    blocker = tmp_path / "assets"
    blocker.write_text("not a directory", encoding="utf-8")
    store = LocalAssetStore(blocker)

    with pytest.raises(PersistenceError):
        asyncio.run(store.put(b"data", kind="page", name="run_page1"))

from __future__ import annotations

from storybook_agents.domain.hashing import sha256_bytes, sha256_text, snapshot_hash


def test_sha256_text_deterministic() -> None:
    assert sha256_text("hello") == sha256_text("hello")
    assert sha256_text("hello") != sha256_text("world")
    assert len(sha256_text("hello")) == 64


def test_bytes_and_text_hashes_agree() -> None:
    assert sha256_bytes(b"hello") == sha256_text("hello")
    assert snapshot_hash('{"a":1}') == sha256_text('{"a":1}')


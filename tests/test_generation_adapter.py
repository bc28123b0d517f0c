from __future__ import annotations

import asyncio
from typing import Sequence

import pytest

from storybook_agents.domain.errors import PersistenceError, UpstreamServiceError
from storybook_agents.llm.images import GeneratedImage
from storybook_agents.pipeline.generation import Attempt, GenerationAdapter, first_success


class _FakeImages:
    def __init__(self, *, fail_reference: bool = False, fail_standard: bool = False) -> None:
        self.fail_reference = fail_reference
        self.fail_standard = fail_standard
        self.reference_calls: list[list[str]] = []
        self.standard_calls = 0

    async def generate_image(self, prompt: str) -> GeneratedImage:
        self.standard_calls += 1
        if self.fail_standard:
            raise UpstreamServiceError("standard failed")
        return GeneratedImage(data=b"standard", url=None, model="fake-standard")

    async def generate_image_with_references(self, prompt: str, references: Sequence[str]) -> GeneratedImage:
        self.reference_calls.append(list(references))
        if self.fail_reference:
            raise UpstreamServiceError("reference failed")
        return GeneratedImage(data=b"reference", url=None, model="fake-reference")


class _FakeStore:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.saved: list[tuple[str, bytes]] = []

    async def put(self, data: bytes, *, kind: str, name: str, suffix: str = ".png") -> str:
        if self.fail:
            raise PersistenceError("disk full")
        self.saved.append((kind, data))
        return f"/assets/{kind}s/{name}{suffix}"

    async def fetch(self, url: str) -> bytes:
        return b"downloaded"


def test_reference_success_uses_one_call() -> None:
    images = _FakeImages()
    adapter = GenerationAdapter(images, _FakeStore())

    result = asyncio.run(adapter.generate("prompt", ["/a.png"], kind="page", name="p1"))

    assert result.used_references is True
    assert result.asset.used_references is True
    assert result.asset.model == "fake-reference"
    assert images.standard_calls == 0
    assert len(images.reference_calls) == 1


def test_reference_failure_falls_back_exactly_once() -> None:
    images = _FakeImages(fail_reference=True)
    adapter = GenerationAdapter(images, _FakeStore())

    result = asyncio.run(adapter.generate("prompt", ["/a.png", "/b.png"], kind="page", name="p1"))

    assert result.used_references is False
    assert len(images.reference_calls) == 1
    assert images.standard_calls == 1


def test_no_references_goes_straight_to_prompt_only() -> None:
    images = _FakeImages()
    adapter = GenerationAdapter(images, _FakeStore())

    result = asyncio.run(adapter.generate("prompt", [], kind="avatar", name="Mia"))

    assert result.used_references is False
    assert images.reference_calls == []
    assert images.standard_calls == 1


def test_disabled_reference_conditioning_skips_reference_path() -> None:
    images = _FakeImages()
    adapter = GenerationAdapter(images, _FakeStore(), references_enabled=False)

    asyncio.run(adapter.generate("prompt", ["/a.png"], kind="page", name="p1"))

    assert images.reference_calls == []
    assert images.standard_calls == 1


def test_references_are_capped() -> None:
    images = _FakeImages()
    adapter = GenerationAdapter(images, _FakeStore(), max_references=2)

    asyncio.run(adapter.generate("prompt", ["/a.png", "", "/b.png", "/c.png"], kind="page", name="p1"))

    assert images.reference_calls == [["/a.png", "/b.png"]]


def test_both_paths_failing_raises_after_two_calls() -> None:
    images = _FakeImages(fail_reference=True, fail_standard=True)
    adapter = GenerationAdapter(images, _FakeStore())

    with pytest.raises(UpstreamServiceError):
        asyncio.run(adapter.generate("prompt", ["/a.png"], kind="page", name="p1"))

    assert len(images.reference_calls) == 1
    assert images.standard_calls == 1


def test_storage_failure_keeps_inline_image() -> None:
    adapter = GenerationAdapter(_FakeImages(), _FakeStore(fail=True))

    result = asyncio.run(adapter.generate("prompt", [], kind="cover", name="run"))

    assert result.asset.location.startswith("data:image/png;base64,")


def test_slow_upstream_call_times_out_into_fallback() -> None:
    class _SlowReference(_FakeImages):
        async def generate_image_with_references(self, prompt, references):
            self.reference_calls.append(list(references))
            await asyncio.sleep(1)
            return GeneratedImage(data=b"late", url=None, model="slow")

    images = _SlowReference()
    adapter = GenerationAdapter(images, _FakeStore(), call_timeout_s=0.01)

    result = asyncio.run(adapter.generate("prompt", ["/a.png"], kind="page", name="p1"))

    assert result.used_references is False
    assert images.standard_calls == 1


def test_first_success_stops_at_first_image() -> None:
    calls: list[str] = []

    async def _fail() -> Attempt:
        calls.append("fail")
        return Attempt(used_references=True, error=UpstreamServiceError("x"))

    async def _ok() -> Attempt:
        calls.append("ok")
        return Attempt(used_references=False, image=GeneratedImage(data=b"1", url=None, model="m"))

    outcome = asyncio.run(first_success([_fail, _ok, _ok]))

    assert outcome.ok
    assert calls == ["fail", "ok"]

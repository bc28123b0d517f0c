"""Single-image generation with at most one fallback.

A unit first tries reference-conditioned generation (when references exist and
the feature is on), then a prompt-only call. Never more than two upstream calls.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Protocol, Sequence

from loguru import logger

from storybook_agents.domain.errors import PersistenceError, UpstreamServiceError
from storybook_agents.domain.models import AssetRef
from storybook_agents.llm.images import GeneratedImage


class ImageService(Protocol):
    async def generate_image(self, prompt: str) -> GeneratedImage: ...

    async def generate_image_with_references(self, prompt: str, references: Sequence[str]) -> GeneratedImage: ...


class AssetStore(Protocol):
    async def put(self, data: bytes, *, kind: str, name: str, suffix: str = ".png") -> str: ...

    async def fetch(self, url: str) -> bytes: ...


@dataclass(frozen=True)
class Attempt:
    """Tagged outcome of one upstream call."""

    used_references: bool
    image: GeneratedImage | None = None
    error: UpstreamServiceError | None = None

    @property
    def ok(self) -> bool:
        return self.image is not None


@dataclass(frozen=True)
class ImageResult:
    asset: AssetRef
    used_references: bool


AttemptFactory = Callable[[], Awaitable[Attempt]]


async def first_success(attempts: Sequence[AttemptFactory]) -> Attempt:
    """Run attempts in order and stop at the first one that produced an image."""
    if not attempts:
        raise ValueError("first_success needs at least one attempt")
    outcome = await attempts[0]()
    for attempt in attempts[1:]:
        if outcome.ok:
            break
        outcome = await attempt()
    return outcome


class GenerationAdapter:
    def __init__(
        self,
        image_service: ImageService,
        asset_store: AssetStore,
        *,
        references_enabled: bool = True,
        max_references: int = 4,
        call_timeout_s: float | None = None,
    ):
        self.image_service = image_service
        self.asset_store = asset_store
        self.references_enabled = references_enabled
        self.max_references = max_references
        self.call_timeout_s = call_timeout_s

    async def _bounded(self, call: Awaitable[GeneratedImage]) -> GeneratedImage:
        if self.call_timeout_s is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.call_timeout_s)
        except asyncio.TimeoutError as exc:
            raise UpstreamServiceError(f"Image call exceeded {self.call_timeout_s}s") from exc

    async def _try_reference_conditioned(self, prompt: str, references: Sequence[str]) -> Attempt:
        try:
            image = await self._bounded(self.image_service.generate_image_with_references(prompt, references))
        except UpstreamServiceError as exc:
            logger.warning("Reference-conditioned generation failed, using prompt-only: {}", exc)
            return Attempt(used_references=True, error=exc)
        return Attempt(used_references=True, image=image)

    async def _try_standard(self, prompt: str) -> Attempt:
        try:
            image = await self._bounded(self.image_service.generate_image(prompt))
        except UpstreamServiceError as exc:
            logger.warning("Prompt-only generation failed: {}", exc)
            return Attempt(used_references=False, error=exc)
        return Attempt(used_references=False, image=image)

    async def _store(self, image: GeneratedImage, *, kind: str, name: str) -> str:
        try:
            data = image.data
            if data is None and image.url:
                data = await self.asset_store.fetch(image.url)
            if data is None:
                raise PersistenceError("Image has no retrievable content")
            return await self.asset_store.put(data, kind=kind, name=name)
        except (PersistenceError, UpstreamServiceError) as exc:
            logger.warning("Could not store {} asset '{}', keeping upstream reference: {}", kind, name, exc)
            if image.url:
                return image.url
            return "data:image/png;base64," + base64.b64encode(image.data or b"").decode("ascii")

    async def generate(
        self,
        prompt: str,
        references: Sequence[str] = (),
        *,
        kind: str,
        name: str,
    ) -> ImageResult:
        refs = [ref for ref in references if ref][: self.max_references]
        attempts: list[AttemptFactory] = []
        if refs and self.references_enabled:
            attempts.append(partial(self._try_reference_conditioned, prompt, refs))
        attempts.append(partial(self._try_standard, prompt))

        outcome = await first_success(attempts)
        if not outcome.ok or outcome.image is None:
            raise UpstreamServiceError(f"Image generation failed for {kind} '{name}': {outcome.error}")

        location = await self._store(outcome.image, kind=kind, name=name)
        asset = AssetRef(
            location=location,
            prompt=prompt,
            used_references=outcome.used_references,
            model=outcome.image.model,
        )
        return ImageResult(asset=asset, used_references=outcome.used_references)

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from storybook_agents.config.schema import AppConfigRoot
from storybook_agents.domain.errors import UpstreamServiceError
from storybook_agents.llm.factory import resolve_api_key


@dataclass(frozen=True)
class GeneratedImage:
    """Raw image returned by the image service: inline bytes or a remote URL."""

    data: bytes | None
    url: str | None
    model: str
    revised_prompt: str | None = None


@dataclass(frozen=True)
class ResolvedImageRuntime:
    endpoint_name: str
    model: str
    reference_model: str
    size: str
    quality: str
    style: str | None
    timeout_s: int
    max_concurrency: int
    base_url: str | None
    api_key: str | None


def resolve_image_runtime(config: AppConfigRoot) -> ResolvedImageRuntime:
    endpoint_name, endpoint, provider = config.llm.resolve_image_route()
    return ResolvedImageRuntime(
        endpoint_name=endpoint_name,
        model=endpoint.model,
        reference_model=endpoint.reference_model,
        size=endpoint.size,
        quality=endpoint.quality,
        style=endpoint.style,
        timeout_s=endpoint.timeout_s,
        max_concurrency=endpoint.max_concurrency,
        base_url=provider.base_url,
        api_key=resolve_api_key(provider.api_key_env, route="image"),
    )


def _first_image(response: Any, model: str) -> GeneratedImage:
    data = getattr(response, "data", None) or []
    if not data:
        raise UpstreamServiceError("Image service returned no images")
    item = data[0]
    b64 = getattr(item, "b64_json", None)
    url = getattr(item, "url", None)
    if not b64 and not url:
        raise UpstreamServiceError("Image service returned neither data nor url")
    return GeneratedImage(
        data=base64.b64decode(b64) if b64 else None,
        url=url,
        model=model,
        revised_prompt=getattr(item, "revised_prompt", None),
    )


def _load_reference(location: str) -> tuple[str, bytes, str] | None:
    path = Path(location)
    if not path.is_file():
        return None
    suffix = path.suffix.lower().lstrip(".") or "png"
    mime = "image/jpeg" if suffix in {"jpg", "jpeg"} else f"image/{suffix}"
    return path.name, path.read_bytes(), mime


class OpenAIImageClient:
    """Prompt-only and reference-conditioned image generation.

    Both calls are bounded by the endpoint timeout; SDK errors and timeouts are
    raised as :class:`UpstreamServiceError`.
    """

    def __init__(self, config: AppConfigRoot, *, client: AsyncOpenAI | None = None):
        self.runtime = resolve_image_runtime(config)
        self.client = client or AsyncOpenAI(
            api_key=self.runtime.api_key,
            base_url=self.runtime.base_url,
            max_retries=0,
        )
        self._semaphore = asyncio.Semaphore(max(1, self.runtime.max_concurrency))

    async def _call(self, label: str, model: str, request: Any) -> GeneratedImage:
        try:
            async with self._semaphore:
                response = await asyncio.wait_for(request, timeout=self.runtime.timeout_s)
        except asyncio.TimeoutError as exc:
            raise UpstreamServiceError(f"{label} timed out after {self.runtime.timeout_s}s") from exc
        except OpenAIError as exc:
            raise UpstreamServiceError(f"{label} failed: {exc}") from exc
        return _first_image(response, model)

    async def generate_image(self, prompt: str) -> GeneratedImage:
        kwargs: dict[str, Any] = {
            "model": self.runtime.model,
            "prompt": prompt,
            "size": self.runtime.size,
            "quality": self.runtime.quality,
            "n": 1,
        }
        if self.runtime.model.startswith("dall-e"):
            kwargs["response_format"] = "b64_json"
            if self.runtime.style and self.runtime.model == "dall-e-3":
                kwargs["style"] = self.runtime.style
        logger.debug("Image generate model={} prompt_len={}", self.runtime.model, len(prompt))
        return await self._call("Image generation", self.runtime.model, self.client.images.generate(**kwargs))

    async def generate_image_with_references(self, prompt: str, references: Sequence[str]) -> GeneratedImage:
        files = [loaded for loaded in (_load_reference(location) for location in references) if loaded]
        if not files:
            raise UpstreamServiceError("No readable reference images")
        logger.debug(
            "Image edit model={} references={} prompt_len={}",
            self.runtime.reference_model,
            len(files),
            len(prompt),
        )
        request = self.client.images.edit(
            model=self.runtime.reference_model,
            prompt=prompt,
            image=files,
            size=self.runtime.size,
            n=1,
        )
        return await self._call("Reference-conditioned generation", self.runtime.reference_model, request)

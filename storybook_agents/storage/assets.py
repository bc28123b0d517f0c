from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
from loguru import logger

from storybook_agents.domain.errors import PersistenceError, UpstreamServiceError
from storybook_agents.domain.hashing import sha256_bytes


class LocalAssetStore:
    """Writes image bytes under ``root/<kind>s/`` and hands back the file path."""

    def __init__(self, root: Path, *, download_timeout_s: float = 60.0):
        self.root = root
        self.download_timeout_s = download_timeout_s

    def _target(self, kind: str, name: str, data: bytes, suffix: str) -> Path:
        safe_name = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in name)[:80] or "asset"
        return self.root / f"{kind}s" / f"{safe_name}_{sha256_bytes(data)[:12]}{suffix}"

    async def put(self, data: bytes, *, kind: str, name: str, suffix: str = ".png") -> str:
        target = self._target(kind, name, data, suffix)
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            raise PersistenceError(f"Could not store {kind} asset at {target}: {exc}") from exc
        logger.debug("Stored {} asset bytes={} path={}", kind, len(data), target)
        return str(target)

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)

    async def fetch(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.download_timeout_s, follow_redirects=True) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"Could not download generated image: {exc}") from exc

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import os
import time
from typing import Any, Callable, Literal, Mapping, TypeVar

from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage
from loguru import logger

from storybook_agents.config.schema import AppConfigRoot
from storybook_agents.domain.errors import UpstreamServiceError
from storybook_agents.domain.hashing import sha256_text
from storybook_agents.llm.json_utils import safe_load_json_dict

ChatRoute = Literal["storybook", "style", "character", "page"]

T = TypeVar("T")


@dataclass(frozen=True)
class ResolvedChatRuntime:
    route: str
    endpoint_name: str
    provider_name: str
    model: str
    temperature: float
    timeout_s: int
    max_concurrency: int
    retries: int
    max_tokens: int | None
    base_url: str | None
    api_key: str | None


def resolve_api_key(api_key_env: str | None, *, route: str) -> str | None:
    if not api_key_env:
        return None
    api_key = os.getenv(api_key_env)
    if not api_key:
        raise ValueError(f"Missing required API key env for route '{route}': {api_key_env}")
    return api_key


def _extract_json_error_location(exc: Exception) -> str | None:
    parts = [
        f"{label}={value}"
        for label, value in (
            ("line", getattr(exc, "lineno", None)),
            ("column", getattr(exc, "colno", None)),
            ("pos", getattr(exc, "pos", None)),
        )
        if isinstance(value, int)
    ]
    return ", ".join(parts) or None


def resolve_chat_runtime(config: AppConfigRoot, route: ChatRoute) -> ResolvedChatRuntime:
    endpoint_name, endpoint, provider = config.llm.resolve_chat_route(route)
    return ResolvedChatRuntime(
        route=route,
        endpoint_name=endpoint_name,
        provider_name=endpoint.provider,
        model=endpoint.model,
        temperature=endpoint.temperature,
        timeout_s=endpoint.timeout_s,
        max_concurrency=endpoint.max_concurrency,
        retries=endpoint.retries,
        max_tokens=endpoint.max_tokens,
        base_url=provider.base_url,
        api_key=resolve_api_key(provider.api_key_env, route=route),
    )


def _build_chat_model(runtime: ResolvedChatRuntime) -> ChatOpenAI:
    kwargs: dict[str, Any] = {
        "model": runtime.model,
        "temperature": runtime.temperature,
        "timeout": runtime.timeout_s,
        # Retries are counted by StorybookTextClient, not by the SDK.
        "max_retries": 0,
        "model_kwargs": {"response_format": {"type": "json_object"}},
    }
    if runtime.max_tokens:
        kwargs["max_tokens"] = runtime.max_tokens
    if runtime.base_url:
        kwargs["base_url"] = runtime.base_url
    if runtime.api_key:
        kwargs["api_key"] = runtime.api_key
    return ChatOpenAI(**kwargs)


class StorybookTextClient:
    """Structured text generation over a chat model.

    Every call is bounded by the endpoint timeout and retried with exponential
    backoff. Exhausted retries surface as :class:`UpstreamServiceError`.
    """

    def __init__(self, config: AppConfigRoot, route: ChatRoute = "storybook", *, model: Any | None = None):
        self.config = config
        self.runtime = resolve_chat_runtime(config, route)
        self.model = model if model is not None else _build_chat_model(self.runtime)
        self.model_identifier = f"{self.runtime.provider_name}/{self.runtime.endpoint_name}/{self.runtime.model}"
        self._semaphore = asyncio.Semaphore(max(1, self.runtime.max_concurrency))

    def _build_log_context(
        self,
        *,
        attempt: int | None = None,
        attempts_total: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        merged: dict[str, Any] = {
            "route": self.runtime.route,
            "endpoint": self.runtime.endpoint_name,
            "model": self.runtime.model,
        }
        if context:
            merged.update({key: value for key, value in context.items() if value is not None})
        if attempt is not None and attempts_total is not None:
            merged["attempt"] = f"{attempt}/{attempts_total}"
        return merged

    def _format_payload_for_log(self, payload: str) -> str:
        max_chars = int(self.config.observability.json_error_payload_max_chars)
        if max_chars <= 0 or len(payload) <= max_chars:
            return payload
        head = max_chars // 2
        tail = max_chars - head
        if head <= 0 or tail <= 0:
            return payload[:max_chars]
        return f"{payload[:head]}\n...[truncated {len(payload) - max_chars} chars]...\n{payload[-tail:]}"

    def _log_json_parse_failure(self, *, raw_text: str, exc: Exception, context: Mapping[str, Any]) -> None:
        log = logger.bind(**context)
        log.warning(
            "JSON parse failed error_type={} error={} location={} raw_len={} raw_hash={}",
            type(exc).__name__,
            exc,
            _extract_json_error_location(exc) or "-",
            len(raw_text),
            sha256_text(raw_text)[:12],
        )
        if self.config.observability.log_json_error_payload:
            log.warning("JSON parse raw_response={}", self._format_payload_for_log(raw_text))

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        parser: Callable[[str], T] = safe_load_json_dict,
        *,
        context: Mapping[str, Any] | None = None,
    ) -> T:
        """Send one system/user exchange and parse the reply."""
        attempts = max(1, self.runtime.retries + 1)
        messages = [SystemMessage(system_prompt), HumanMessage(user_prompt)]
        last_exc: Exception | None = None

        for attempt in range(attempts):
            attempt_context = self._build_log_context(
                attempt=attempt + 1, attempts_total=attempts, context=context
            )
            attempt_started = time.perf_counter()
            try:
                async with self._semaphore:
                    response = await asyncio.wait_for(
                        self.model.ainvoke(messages), timeout=self.runtime.timeout_s or None
                    )
                text = str(response.content).strip()
                if not text:
                    raise ValueError("Empty LLM response")
                try:
                    return parser(text)
                except Exception as parse_exc:  # noqa: BLE001
                    self._log_json_parse_failure(raw_text=text, exc=parse_exc, context=attempt_context)
                    raise
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                elapsed_ms = int((time.perf_counter() - attempt_started) * 1000)
                log = logger.bind(**attempt_context)
                if self.config.observability.log_retry_attempts:
                    log.warning(
                        "LLM call failed elapsed_ms={} error_type={} error={}",
                        elapsed_ms,
                        type(exc).__name__,
                        exc,
                    )
                if attempt == attempts - 1:
                    log.error("LLM call failed on final attempt")
                else:
                    await asyncio.sleep(min(0.5 * (2**attempt), 4.0))

        raise UpstreamServiceError(f"LLM call failed after {attempts} attempts: {last_exc}") from last_exc

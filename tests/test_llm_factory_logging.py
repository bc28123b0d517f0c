from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

from loguru import logger
import pytest

import storybook_agents.llm.factory as llm_factory
from storybook_agents.config.schema import AppConfigRoot
from storybook_agents.domain.errors import UpstreamServiceError


class _FakeModel:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = responses
        self.calls = 0

    async def ainvoke(self, messages):
        _ = messages
        index = min(self.calls, len(self._responses) - 1)
        self.calls += 1
        response = self._responses[index]
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(content=response)


def _make_config(*, retries: int, log_payload: bool = True, payload_max_chars: int = 0) -> AppConfigRoot:
    return AppConfigRoot.model_validate(
        {
            "llm": {
                "providers": {
                    "fake": {
                        "kind": "openai_compatible",
                        "base_url": "https://api.example.com/v1",
                        "api_key_env": None,
                    }
                },
                "chat_endpoints": {
                    "storybook_default": {
                        "provider": "fake",
                        "model": "fake-chat",
                        "temperature": 0.3,
                        "timeout_s": 30,
                        "max_concurrency": 1,
                        "retries": retries,
                    }
                },
                "image_endpoints": {
                    "image_default": {"provider": "fake", "model": "fake-image"},
                },
                "routes": {
                    "storybook_chat": "storybook_default",
                    "image": "image_default",
                },
            },
            "observability": {
                "log_json_error_payload": log_payload,
                "json_error_payload_max_chars": payload_max_chars,
                "log_retry_attempts": True,
            },
        }
    )


def test_generate_structured_logs_raw_payload_on_parse_failure() -> None:
    fake_model = _FakeModel(["not json at all"])
    client = llm_factory.StorybookTextClient(_make_config(retries=0), "character", model=fake_model)

    records: list[Any] = []
    sink_id = logger.add(lambda message: records.append(message.record), level="WARNING")
    try:
        with pytest.raises(UpstreamServiceError, match="LLM call failed after 1 attempts"):
            asyncio.run(
                client.generate_structured(
                    "system",
                    "user",
                    context={"run_id": "run-7", "phase": "characters"},
                )
            )
    finally:
        logger.remove(sink_id)

    assert any("JSON parse failed" in record["message"] for record in records)
    assert any("JSON parse raw_response=not json at all" in record["message"] for record in records)
    assert any(
        record["extra"].get("run_id") == "run-7" and record["extra"].get("phase") == "characters"
        for record in records
    )


def test_generate_structured_retries_then_succeeds() -> None:
    fake_model = _FakeModel([RuntimeError("boom"), '{"title": "ok"}'])
    client = llm_factory.StorybookTextClient(_make_config(retries=1), model=fake_model)

    payload = asyncio.run(client.generate_structured("system", "user"))

    assert payload == {"title": "ok"}
    assert fake_model.calls == 2


def test_generate_structured_wraps_final_error() -> None:
    error = RuntimeError("service down")
    fake_model = _FakeModel([error])
    client = llm_factory.StorybookTextClient(_make_config(retries=0), model=fake_model)

    with pytest.raises(UpstreamServiceError) as excinfo:
        asyncio.run(client.generate_structured("system", "user"))

    assert excinfo.value.__cause__ is error
    assert fake_model.calls == 1


def test_json_error_payload_respects_truncation_config() -> None:
    fake_model = _FakeModel(["x" * 80])
    client = llm_factory.StorybookTextClient(
        _make_config(retries=0, log_payload=True, payload_max_chars=20), model=fake_model
    )

    records: list[Any] = []
    sink_id = logger.add(lambda message: records.append(message.record), level="WARNING")
    try:
        with pytest.raises(UpstreamServiceError):
            asyncio.run(client.generate_structured("system", "user"))
    finally:
        logger.remove(sink_id)

    assert any("JSON parse raw_response=" in record["message"] for record in records)
    assert any("[truncated" in record["message"] for record in records)


def test_missing_api_key_is_reported_per_route(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STORYBOOK_TEST_KEY", raising=False)

    with pytest.raises(ValueError, match="route 'style'"):
        llm_factory.resolve_api_key("STORYBOOK_TEST_KEY", route="style")

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data_dir: Path = Field(default=Path("./data"))
    log_level: str = Field(default="INFO")


class LLMProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["openai_compatible"] = "openai_compatible"
    base_url: str | None = None
    api_key_env: str | None = None


class ChatEndpointConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str
    model: str
    temperature: float = 0.7
    timeout_s: int = 60
    max_concurrency: int = 4
    retries: int = 2
    max_tokens: int | None = None

    @field_validator("temperature")
    @classmethod
    def _temperature_range(cls, value: float) -> float:
        if not 0 <= value <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return value

    @field_validator("timeout_s", "max_concurrency", "retries")
    @classmethod
    def _non_negative_int(cls, value: int) -> int:
        if value < 0:
            raise ValueError("endpoint integer settings must be non-negative")
        return value

    @field_validator("max_tokens")
    @classmethod
    def _positive_optional_max_tokens(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("max_tokens must be positive when provided")
        return value


class ImageEndpointConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str
    model: str = "dall-e-3"
    # Model used for reference-conditioned (image edit) calls.
    reference_model: str = "gpt-image-1"
    size: str = "1024x1024"
    quality: str = "standard"
    style: Literal["vivid", "natural"] | None = "vivid"
    timeout_s: int = 180
    max_concurrency: int = 2

    @field_validator("timeout_s", "max_concurrency")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("image endpoint integer settings must be positive")
        return value

    @field_validator("size")
    @classmethod
    def _validate_size(cls, value: str) -> str:
        width, sep, height = value.partition("x")
        if not sep or not width.isdigit() or not height.isdigit():
            raise ValueError("size must look like '<width>x<height>'")
        return value


class LLMRoutesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    storybook_chat: str = "storybook_default"
    style_chat: str | None = None
    character_chat: str | None = None
    page_chat: str | None = None
    image: str = "image_default"


class LLMConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    providers: dict[str, LLMProviderConfig]
    chat_endpoints: dict[str, ChatEndpointConfig]
    image_endpoints: dict[str, ImageEndpointConfig]
    routes: LLMRoutesConfig = LLMRoutesConfig()

    @model_validator(mode="after")
    def _validate_references(self) -> "LLMConfig":
        if not self.providers:
            raise ValueError("llm.providers cannot be empty")
        if not self.chat_endpoints:
            raise ValueError("llm.chat_endpoints cannot be empty")
        if not self.image_endpoints:
            raise ValueError("llm.image_endpoints cannot be empty")

        for endpoint_name, endpoint in self.chat_endpoints.items():
            if endpoint.provider not in self.providers:
                raise ValueError(
                    f"chat endpoint '{endpoint_name}' references unknown provider '{endpoint.provider}'"
                )

        for endpoint_name, endpoint in self.image_endpoints.items():
            if endpoint.provider not in self.providers:
                raise ValueError(
                    f"image endpoint '{endpoint_name}' references unknown provider '{endpoint.provider}'"
                )

        if self.routes.storybook_chat not in self.chat_endpoints:
            raise ValueError(f"llm.routes.storybook_chat not found: {self.routes.storybook_chat}")
        for route_name in ("style_chat", "character_chat", "page_chat"):
            endpoint_name = getattr(self.routes, route_name)
            if endpoint_name and endpoint_name not in self.chat_endpoints:
                raise ValueError(f"llm.routes.{route_name} not found: {endpoint_name}")
        if self.routes.image not in self.image_endpoints:
            raise ValueError(f"llm.routes.image not found: {self.routes.image}")

        return self

    def resolve_chat_route(
        self,
        route: Literal["storybook", "style", "character", "page"],
    ) -> tuple[str, ChatEndpointConfig, LLMProviderConfig]:
        if route == "style":
            endpoint_name = self.routes.style_chat or self.routes.storybook_chat
        elif route == "character":
            endpoint_name = self.routes.character_chat or self.routes.storybook_chat
        elif route == "page":
            endpoint_name = self.routes.page_chat or self.routes.storybook_chat
        else:
            endpoint_name = self.routes.storybook_chat

        endpoint = self.chat_endpoints[endpoint_name]
        provider = self.providers[endpoint.provider]
        return endpoint_name, endpoint, provider

    def resolve_image_route(self) -> tuple[str, ImageEndpointConfig, LLMProviderConfig]:
        endpoint_name = self.routes.image
        endpoint = self.image_endpoints[endpoint_name]
        provider = self.providers[endpoint.provider]
        return endpoint_name, endpoint, provider


class PipelineConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_audience: str = "children"
    min_pages: int = 4
    max_pages: int = 20
    generate_cover: bool = True
    default_style: str = "illustration"
    reference_conditioning_enabled: bool = True
    max_reference_images: int = 4
    scene_description_max_chars: int = 550
    consistency_tag_max_words: int = 20
    raw_descriptor_chars: int = 80

    @field_validator(
        "min_pages",
        "max_pages",
        "max_reference_images",
        "scene_description_max_chars",
        "consistency_tag_max_words",
        "raw_descriptor_chars",
    )
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("pipeline integer config values must be positive")
        return value

    @model_validator(mode="after")
    def _validate_page_bounds(self) -> "PipelineConfig":
        if self.min_pages > self.max_pages:
            raise ValueError("min_pages must not exceed max_pages")
        return self


class BatchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_concurrent_batches: int = 4

    @field_validator("max_concurrent_batches")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_concurrent_batches must be positive")
        return value


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sqlite_path: Path = Field(default=Path("./data/storybook.db"))
    assets_dir: Path = Field(default=Path("./data/assets"))


class ObservabilityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_json_error_payload: bool = True
    json_error_payload_max_chars: int = 0
    log_retry_attempts: bool = True

    @field_validator("json_error_payload_max_chars")
    @classmethod
    def _non_negative_chars(cls, value: int) -> int:
        if value < 0:
            raise ValueError("json_error_payload_max_chars must be non-negative")
        return value


def default_llm_config() -> LLMConfig:
    return LLMConfig.model_validate(
        {
            "providers": {
                "default": {
                    "kind": "openai_compatible",
                    "base_url": None,
                    "api_key_env": "OPENAI_API_KEY",
                }
            },
            "chat_endpoints": {
                "storybook_default": {
                    "provider": "default",
                    "model": "gpt-4o-mini",
                    "temperature": 0.7,
                    "timeout_s": 60,
                    "max_concurrency": 4,
                    "retries": 2,
                },
            },
            "image_endpoints": {
                "image_default": {
                    "provider": "default",
                    "model": "dall-e-3",
                    "reference_model": "gpt-image-1",
                    "size": "1024x1024",
                    "quality": "standard",
                    "timeout_s": 180,
                }
            },
            "routes": {
                "storybook_chat": "storybook_default",
                "image": "image_default",
            },
        }
    )


class AppConfigRoot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    app: AppConfig = AppConfig()
    llm: LLMConfig = Field(default_factory=default_llm_config)
    pipeline: PipelineConfig = PipelineConfig()
    batch: BatchConfig = BatchConfig()
    storage: StorageConfig = StorageConfig()
    observability: ObservabilityConfig = ObservabilityConfig()


def resolve_paths(config: AppConfigRoot, base_dir: Path) -> AppConfigRoot:
    def _resolve(path_value: Path) -> Path:
        return path_value if path_value.is_absolute() else (base_dir / path_value).resolve()

    config.app.data_dir = _resolve(config.app.data_dir)
    config.storage.sqlite_path = _resolve(config.storage.sqlite_path)
    config.storage.assets_dir = _resolve(config.storage.assets_dir)
    return config

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator
import os
import re

import yaml
from loguru import logger

from storybook_agents.config.schema import AppConfigRoot, resolve_paths

ENV_PREFIX = "STORYBOOK_AGENTS_"

# STORYBOOK_AGENTS_<name> -> config path. Values are validated by the schema.
ENV_FIELDS: dict[str, tuple[str, ...]] = {
    "DATA_DIR": ("app", "data_dir"),
    "LOG_LEVEL": ("app", "log_level"),
    "SQLITE_PATH": ("storage", "sqlite_path"),
    "ASSETS_DIR": ("storage", "assets_dir"),
    "DEFAULT_STYLE": ("pipeline", "default_style"),
    "REFERENCE_CONDITIONING": ("pipeline", "reference_conditioning_enabled"),
    "MAX_CONCURRENT_BATCHES": ("batch", "max_concurrent_batches"),
    "IMAGE_ROUTE": ("llm", "routes", "image"),
}


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _load_dotenv(dotenv_path: Path) -> None:
    """Export ``KEY=value`` lines without overriding the real environment."""
    if not dotenv_path.is_file():
        return
    for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export ") :]
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip("\"'"))


def _provider_base_url_var(provider_name: str) -> str:
    normalized = re.sub(r"[^A-Za-z0-9]", "_", provider_name).upper()
    return f"{ENV_PREFIX}LLM_PROVIDER_{normalized}_BASE_URL"


def _set_path(data: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = data
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = node[key] = {}
        node = child
    node[path[-1]] = value


def _env_overrides(config_data: dict[str, Any]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name, path in ENV_FIELDS.items():
        value = os.getenv(f"{ENV_PREFIX}{name}")
        if value:
            _set_path(overrides, path, value)

    providers = (config_data.get("llm") or {}).get("providers") or {}
    for provider_name in providers:
        base_url = os.getenv(_provider_base_url_var(provider_name))
        if base_url:
            _set_path(overrides, ("llm", "providers", provider_name, "base_url"), base_url)
    return overrides


def _file_layers(base_dir: Path, profile: str | None, config_path: Path | None) -> Iterator[tuple[str, Path]]:
    yield "default", base_dir / "configs" / "default.yaml"
    if profile:
        yield f"profile:{profile}", base_dir / "configs" / "profiles" / f"{profile}.yaml"
    if config_path:
        yield "custom", config_path


def load_config(
    config_path: Path | None = None,
    profile: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> AppConfigRoot:
    """Merge default, profile and custom YAML, then CLI overrides, then the environment."""
    base_dir = Path.cwd()
    _load_dotenv(base_dir / ".env")

    config_data: dict[str, Any] = {}
    loaded: list[str] = []
    for label, path in _file_layers(base_dir, profile, config_path):
        layer = _read_yaml(path)
        if layer:
            loaded.append(label)
            config_data = _deep_merge(config_data, layer)
    if overrides:
        config_data = _deep_merge(config_data, overrides)
    config_data = _deep_merge(config_data, _env_overrides(config_data))

    config = resolve_paths(AppConfigRoot.model_validate(config_data), base_dir)
    logger.debug("Loaded config layers={} base_dir={}", loaded or ["builtin"], base_dir)
    return config


def masked_env_snapshot(config: AppConfigRoot | None = None) -> dict[str, str | None]:
    snapshot: dict[str, str | None] = {
        f"{ENV_PREFIX}{name}": os.getenv(f"{ENV_PREFIX}{name}") for name in ENV_FIELDS
    }
    if config is None:
        return snapshot

    for provider_name, provider in config.llm.providers.items():
        override_var = _provider_base_url_var(provider_name)
        snapshot[override_var] = os.getenv(override_var)
        snapshot[f"llm.providers.{provider_name}.base_url"] = provider.base_url
        if provider.api_key_env:
            snapshot[provider.api_key_env] = "***" if os.getenv(provider.api_key_env) else None
    return snapshot

"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  -- pipeline defaults checked into the repo
#   2. .env file           -- local developer overrides (not committed)
#   3. Environment vars    -- set at deploy time
#
# load_config() reads the YAML, then deep-merges env-derived values on
# top.  build_pipeline_config() validates the "pipeline" section into an
# immutable PipelineConfig; pydantic rejects unknown types or out-of-range
# values, which surface as ConfigurationError.
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path
from typing import Any

import pydantic
import yaml

from src.config.pipeline_config import PipelineConfig
from src.config.settings import Settings
from src.utils.errors import ConfigurationError


def load_config(path: str | None = None, settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML file.  Defaults to ``settings.config_path``.
        settings: Settings instance; a fresh one is read from the
            environment when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    settings = settings or Settings()
    config_path = Path(path or settings.config_path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            try:
                yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Cannot parse {config_path}: {exc}") from exc
    else:
        yaml_config = {}

    if not isinstance(yaml_config, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at the top level")

    env_overrides: dict[str, Any] = {
        "app": {
            "env": settings.app_env,
        },
        "logging": {
            "level": settings.log_level,
        },
        "store": {
            "backend": settings.store_backend,
            "sqlite_db_path": settings.sqlite_db_path,
        },
        "pipeline": {
            "embedding": {
                "model": settings.openai_embedding_model,
                "timeout_seconds": settings.embedding_timeout_seconds,
            },
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def build_pipeline_config(config: dict | None = None) -> PipelineConfig:
    """Validate the ``pipeline`` section of *config* into a PipelineConfig.

    Raises:
        ConfigurationError: when a value has the wrong type or range.
    """
    section = (config or {}).get("pipeline", {}) or {}
    try:
        return PipelineConfig.model_validate(section)
    except pydantic.ValidationError as exc:
        raise ConfigurationError(f"Invalid pipeline configuration: {exc}") from exc


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value

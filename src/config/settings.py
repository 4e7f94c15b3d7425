"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Values are read from TWO sources (in priority order):
#
#   1. Environment variables -- e.g. OPENAI_API_KEY=sk-abc123 (always wins)
#   2. .env file in the project root -- local development overrides
#
# Field `openai_api_key` maps to env var `OPENAI_API_KEY` automatically.
# Defaults apply when neither source sets a field.
#
# These are deployment concerns (credentials, paths, log level).  The
# tuning knobs for chunking, embedding and retrieval live in
# config/config.yaml and end up in an immutable PipelineConfig.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """docuweave deployment settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embedding provider ===
    # Empty key = "not configured"; callers then inject their own provider.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, local gateway, ...)
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_timeout_seconds: float = 30.0

    # === Knowledge store ===
    store_backend: str = "sqlite"  # "sqlite" or "memory"
    sqlite_db_path: str = "data/knowledge.db"

    # === Pipeline config file ===
    config_path: str = "config/config.yaml"

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def has_openai(self) -> bool:
        """Return ``True`` when an OpenAI-compatible key is configured."""
        return bool(self.openai_api_key)

"""Configuration module -- exports Settings, the YAML loader and PipelineConfig."""

from src.config.loader import build_pipeline_config, load_config
from src.config.pipeline_config import (
    ChunkingConfig,
    CitationConfig,
    ConfidenceConfig,
    ContextConfig,
    EmbeddingConfig,
    IngestionConfig,
    PipelineConfig,
    RetrievalConfig,
    ScaleBand,
)
from src.config.settings import Settings

__all__ = [
    "ChunkingConfig",
    "CitationConfig",
    "ConfidenceConfig",
    "ContextConfig",
    "EmbeddingConfig",
    "IngestionConfig",
    "PipelineConfig",
    "RetrievalConfig",
    "ScaleBand",
    "Settings",
    "build_pipeline_config",
    "load_config",
]

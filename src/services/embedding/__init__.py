"""Multi-scale embedding generation."""

from src.services.embedding.multi_scale_embedder import MultiScaleEmbedder

__all__ = ["MultiScaleEmbedder"]

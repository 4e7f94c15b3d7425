"""Hierarchical multi-scale chunking: structure parsing, splitting,
boundary refinement, quality filtering and parent/child linking."""

from src.services.chunking.boundary_refiner import SemanticBoundaryRefiner
from src.services.chunking.hierarchical_chunker import ChunkingOutcome, HierarchicalChunker
from src.services.chunking.quality_validator import ChunkQualityValidator
from src.services.chunking.structure_parser import StructureParser, detect_heading

__all__ = [
    "ChunkQualityValidator",
    "ChunkingOutcome",
    "HierarchicalChunker",
    "SemanticBoundaryRefiner",
    "StructureParser",
    "detect_heading",
]

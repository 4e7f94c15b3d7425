"""Utility modules for docuweave.

- **confidence** -- weighted scoring math and low/medium/high level mapping.
- **errors** -- domain exception hierarchy rooted at DocuweaveError.
- **concurrency** -- semaphore-throttled gather and per-key asyncio locks.
- **logging** -- structlog setup with console/JSON dual rendering.
- **similarity** -- numpy vector metrics (imported directly, not re-exported).
- **text** -- sentence/paragraph splitting, word sets, token estimation.
"""

from src.utils.concurrency import KeyedLocks, throttled_gather
from src.utils.confidence import (
    ConfidenceLevel,
    calculate_confidence,
    confidence_to_level,
    weighted_factors,
)
from src.utils.errors import (
    ConfigurationError,
    DocuweaveError,
    JobCancelledError,
    PersistenceError,
    PipelineError,
    ProviderError,
    RateLimitError,
    ValidationError,
)
from src.utils.logging import configure_logging, get_logger
from src.utils.text import estimate_tokens, jaccard, split_paragraphs, split_sentences

__all__ = [
    "ConfidenceLevel",
    "ConfigurationError",
    "DocuweaveError",
    "JobCancelledError",
    "KeyedLocks",
    "PersistenceError",
    "PipelineError",
    "ProviderError",
    "RateLimitError",
    "ValidationError",
    "calculate_confidence",
    "confidence_to_level",
    "configure_logging",
    "estimate_tokens",
    "get_logger",
    "jaccard",
    "split_paragraphs",
    "split_sentences",
    "throttled_gather",
    "weighted_factors",
]

"""Shared pytest fixtures for the docuweave test suite."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np
import pytest

from src.config.pipeline_config import EmbeddingConfig, PipelineConfig
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.chunk import Chunk, ChunkScale
from src.models.document import Document
from src.pipeline.ingestion_orchestrator import IngestionOrchestrator
from src.pipeline.progress_tracker import ProgressTracker
from src.providers.store.memory_store import InMemoryKnowledgeStore
from src.services.embedding.multi_scale_embedder import MultiScaleEmbedder
from src.services.retrieval_service import RetrievalService
from src.utils.errors import ProviderError
from src.utils.text import estimate_tokens, words

# ---------------------------------------------------------------------------
# Embedding fixtures
# ---------------------------------------------------------------------------

_EMBEDDING_DIM = 256


def bag_of_words_vector(text: str, dim: int = _EMBEDDING_DIM) -> list[float]:
    """Deterministic unit vector: each word hashed (sha256) into one bucket.

    Texts that share words share buckets, so cosine similarity tracks word
    overlap the way a real embedding tracks topical overlap.
    """
    vec = np.zeros(dim)
    for token in words(text):
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        vec[int.from_bytes(digest[:4], "little") % dim] += 1.0
    norm = float(np.linalg.norm(vec))
    if norm == 0.0:
        vec[0] = 1.0
        return vec.tolist()
    return (vec / norm).tolist()


class HashingEmbeddingProvider(IEmbeddingProvider):
    """In-memory deterministic embedding provider for tests.

    ``fail_times`` makes the first N calls raise :class:`ProviderError`;
    ``fail_when`` makes every call whose text contains that marker raise.
    """

    def __init__(
        self,
        dim: int = _EMBEDDING_DIM,
        fail_times: int = 0,
        fail_when: str | None = None,
    ) -> None:
        self.dim = dim
        self.calls = 0
        self.texts: list[str] = []
        self._fail_times = fail_times
        self._fail_when = fail_when

    async def embed(self, text: str, model: str) -> list[float]:
        self.calls += 1
        self.texts.append(text)
        if self.calls <= self._fail_times:
            raise ProviderError(message="transient failure", provider_name="hashing")
        if self._fail_when is not None and self._fail_when in text:
            raise ProviderError(message="poisoned input", provider_name="hashing")
        return bag_of_words_vector(text, self.dim)

    def get_provider_name(self) -> str:
        return "hashing_embedding"

    def is_available(self) -> bool:
        return True


@pytest.fixture
def embedding_provider() -> HashingEmbeddingProvider:
    """Deterministic bag-of-words IEmbeddingProvider."""
    return HashingEmbeddingProvider()


@pytest.fixture
def provider_factory() -> type[HashingEmbeddingProvider]:
    """The provider class itself, for tests that need failure injection."""
    return HashingEmbeddingProvider


@pytest.fixture
def vectorize() -> Callable[[str], list[float]]:
    return bag_of_words_vector


# ---------------------------------------------------------------------------
# Chunk factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_chunk() -> Callable[..., Chunk]:
    """Build a Chunk with sensible defaults; keyword arguments override."""
    counter = iter(range(1, 10_000))

    def _make(content: str = "Compost feeds the soil with organic matter.", **overrides: Any) -> Chunk:
        n = next(counter)
        fields: dict[str, Any] = {
            "chunk_id": f"chunk-{n}",
            "source_id": "guide",
            "version": "1",
            "scale": ChunkScale.PARAGRAPH,
            "content": content,
            "token_count": estimate_tokens(content),
            "heading": "Composting",
            "hierarchy_path": ["Composting", "Lead"],
            "position": n,
            "page": 1,
            "quality_score": 0.8,
        }
        fields.update(overrides)
        return Chunk(**fields)

    return _make


# ---------------------------------------------------------------------------
# Configuration / collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Default pipeline config with test-friendly retry timing."""
    config = PipelineConfig()
    return config.model_copy(
        update={
            "embedding": EmbeddingConfig(retry_backoff_seconds=0.0, timeout_seconds=5.0),
        }
    )


@pytest.fixture
def memory_store() -> InMemoryKnowledgeStore:
    return InMemoryKnowledgeStore()


@pytest.fixture
def embedder(
    embedding_provider: HashingEmbeddingProvider,
    pipeline_config: PipelineConfig,
) -> MultiScaleEmbedder:
    return MultiScaleEmbedder(embedding_provider, pipeline_config.embedding)


@pytest.fixture
def orchestrator(
    memory_store: InMemoryKnowledgeStore,
    embedder: MultiScaleEmbedder,
    pipeline_config: PipelineConfig,
) -> IngestionOrchestrator:
    return IngestionOrchestrator(memory_store, embedder, pipeline_config, ProgressTracker())


@pytest.fixture
def retrieval_service(
    memory_store: InMemoryKnowledgeStore,
    embedder: MultiScaleEmbedder,
    pipeline_config: PipelineConfig,
) -> RetrievalService:
    return RetrievalService(memory_store, embedder, pipeline_config)


# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------

_SOIL_SECTION = [
    "Healthy soil is a living system made of minerals, organic matter, water, air and a "
    "vast community of organisms. Bacteria and fungi break down plant residues and "
    "release nutrients that roots can absorb. Earthworms mix the layers and open channels "
    "that let rainwater soak into the ground instead of running off the surface. A "
    "handful of fertile topsoil can contain more microorganisms than there are people on "
    "the planet. Gardeners who understand this hidden ecosystem treat the soil as "
    "something to feed and protect rather than as an inert medium that simply holds "
    "plants upright.",
    "Soil texture describes the proportion of sand, silt and clay particles. Sandy soil "
    "drains quickly and warms early in spring, but it holds few nutrients and dries out "
    "during long summer spells. Clay soil holds water and nutrients well, yet it compacts "
    "easily and can stay cold and waterlogged for weeks. Loam sits between the two "
    "extremes and is prized by growers because it balances drainage with retention. You "
    "can estimate texture at home by rubbing a moist sample between your fingers and "
    "noting whether it feels gritty, silky or sticky.",
    "Organic matter is the single most useful amendment for almost every soil type. "
    "Compost, leaf mould and well rotted manure improve the structure of clay by "
    "binding particles into crumbs, and they help sandy soil hold moisture like a "
    "sponge. Adding a few centimetres of compost each autumn gradually darkens the "
    "topsoil and increases earthworm activity. Mulching the surface with straw or wood "
    "chips protects the soil from heavy rain, suppresses weeds and slowly feeds the "
    "organisms living below.",
    "Testing the soil every few years tells you its pH and which nutrients are in short "
    "supply. Most vegetables prefer slightly acidic to neutral soil, with a pH between six "
    "and seven, while blueberries and rhododendrons need far more acidic conditions. Garden "
    "lime raises the pH of acidic ground and sulphur lowers it, but both work slowly and "
    "should be applied in small amounts over several seasons. A cheap home kit gives a rough "
    "reading, and a laboratory test adds detail on phosphorus, potassium and trace elements "
    "so that you can correct real deficiencies instead of guessing and over fertilising.",
]

_COMPOST_SECTION = [
    "Composting turns kitchen scraps and garden waste into a dark crumbly material "
    "that gardeners call black gold. The process relies on microbes that need a "
    "balanced diet of carbon rich browns such as dry leaves, cardboard and straw, and "
    "nitrogen rich greens such as vegetable peelings, coffee grounds and fresh grass "
    "clippings. A common rule of thumb is to add roughly three parts browns to one part "
    "greens by volume. Too many greens make the heap slimy and smelly, while too many "
    "browns slow the decomposition to a crawl.",
    "A compost heap also needs air and moisture to work quickly. Turning the pile with "
    "a fork every week or two introduces oxygen and moves the outer material into the "
    "hot centre where decomposition is fastest. The heap should feel as damp as a "
    "wrung out sponge; if it is dry, sprinkle it with water, and if it is soggy, mix in "
    "more shredded cardboard. A well managed heap can reach temperatures above sixty "
    "degrees, which kills many weed seeds and plant diseases.",
    "Finished compost is ready when it smells earthy and the original ingredients are "
    "no longer recognisable. Depending on the method and the season this can take "
    "anywhere from two months to a year. Sieve out any large woody pieces and return "
    "them to a new heap as a starter. Spread the finished compost on vegetable beds, "
    "dig it into planting holes for shrubs, or blend it with sand and leaf mould to "
    "make a simple homemade potting mix for containers.",
    "Not everything belongs in a home compost heap. Meat, fish, dairy and cooked food "
    "attract rats and flies and are better handled by municipal collection or a sealed "
    "bokashi bin. Diseased plants and the roots of persistent perennial weeds can survive "
    "a cool heap and spread back into the garden when the compost is used. Glossy "
    "magazines, treated timber and pet waste also stay out. Worm bins are a good "
    "alternative for flats and small yards because the worms process scraps quickly "
    "indoors and produce a rich liquid feed as well as solid castings.",
]

_WATER_SECTION = [
    "Watering correctly matters more than watering often. Shallow daily sprinkling "
    "encourages roots to stay near the surface, where they are vulnerable to heat and "
    "drought. A deep soak once or twice a week sends moisture down into the root zone "
    "and trains plants to grow deeper, more resilient root systems. Early morning is "
    "the best time to water because less moisture is lost to evaporation and foliage "
    "has time to dry before evening, which reduces the risk of fungal disease spreading "
    "through the garden.",
    "Drip irrigation and soaker hoses deliver water directly to the base of each plant. "
    "They use far less water than overhead sprinklers because almost nothing is lost "
    "to wind or evaporation. A simple timer attached to the tap can run the system "
    "automatically while you are away. Check the emitters at the start of each season, "
    "flush the lines to remove sediment, and replace any sections that have cracked "
    "during the winter frosts. A well designed drip system can cut outdoor water use by "
    "half compared with a hose.",
    "Collecting rainwater reduces demand on mains supplies and gives plants soft water "
    "that is free of chlorine. A single water butt connected to a downpipe can gather "
    "thousands of litres from a modest roof over a year. Keep the butt covered to stop "
    "mosquitoes breeding and to keep leaves out, and raise it on a stand so a watering "
    "can fits under the tap. In dry regions several linked butts can carry a vegetable "
    "garden through weeks without rain.",
    "Mulch is the gardener's best ally for saving water. A layer of bark, straw, grass "
    "clippings or compost five centimetres deep shades the soil, keeps it cooler on hot "
    "afternoons and slows evaporation dramatically. Apply mulch after a thorough soaking "
    "so that moisture is locked in rather than kept out, and leave a small gap around the "
    "stems of trees and shrubs to prevent rot. Over time the mulch breaks down into the "
    "topsoil, which improves its structure and its ability to hold water during the long "
    "dry spells of late summer.",
]

SAMPLE_SECTIONS: dict[str, list[str]] = {
    "Understanding Soil": _SOIL_SECTION,
    "Composting Basics": _COMPOST_SECTION,
    "Watering Wisely": _WATER_SECTION,
}


def build_sample_text(sections: dict[str, list[str]] | None = None) -> str:
    """Markdown-style text: ``# Heading`` then blank-line separated paragraphs."""
    blocks: list[str] = []
    for heading, paragraphs in (sections or SAMPLE_SECTIONS).items():
        blocks.append(f"# {heading}")
        blocks.extend(paragraphs)
    return "\n\n".join(blocks) + "\n"


@pytest.fixture
def sample_text() -> str:
    """Three-section gardening guide, four paragraphs per section."""
    return build_sample_text()


@pytest.fixture
def sample_document(sample_text: str) -> Document:
    return Document.from_text(source_id="garden-guide", version="1", text=sample_text)


@pytest.fixture
def unrelated_text() -> str:
    """A short two-section document on a different subject."""
    return build_sample_text(
        {
            "Orbital Mechanics": [
                "Satellites stay in orbit because their forward velocity balances the pull "
                "of gravity. A spacecraft in low orbit circles the planet roughly every ninety "
                "minutes, travelling at nearly eight kilometres per second. Raising the orbit "
                "requires a burn at the lowest point, which lifts the opposite side of the "
                "ellipse, and a second burn at the new high point circularises the path. "
                "Engineers plan these manoeuvres carefully because every kilogram of "
                "propellant is expensive to launch."
            ],
            "Launch Windows": [
                "A launch window is the period during which a rocket can lift off and still "
                "reach its intended target. For missions to other planets the window depends "
                "on the relative positions of the planets and may open only once every two "
                "years. Missing the window can mean a long delay, so launch teams rehearse "
                "countdowns repeatedly and prepare contingency dates. Weather, range safety "
                "and technical holds all eat into the available time."
            ],
        }
    )


@pytest.fixture
def sample_file(tmp_path: Path, sample_text: str) -> Path:
    path = tmp_path / "garden_guide.md"
    path.write_text(sample_text, encoding="utf-8")
    return path

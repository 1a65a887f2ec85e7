"""
Deterministic stand-ins for the embedding providers and the vector index.
"""

from collections.abc import Callable, Sequence

from hybrid_calibration.models.calibration import Candidate, IndexQuery, SparseVector
from hybrid_calibration.providers.base import DenseEmbeddingProvider, SparseEmbeddingProvider, VectorIndex


class StubDenseEmbedder(DenseEmbeddingProvider):
    """Returns a fixed vector and records every call."""

    def __init__(self, vector: Sequence[float] = (0.1, 0.2, 0.3), error: Exception | None = None):
        self.vector = list(vector)
        self.error = error
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)


class StubSparseEmbedder(SparseEmbeddingProvider):
    """Returns a fixed sparse vector and records every call."""

    def __init__(self, vector: SparseVector | None = None, error: Exception | None = None):
        self.vector = vector if vector is not None else SparseVector((10, 20), (0.5, 0.8))
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def embed(self, text: str, input_type: str = "query") -> SparseVector:
        self.calls.append((text, input_type))
        if self.error is not None:
            raise self.error
        return self.vector


class ScriptedIndex(VectorIndex):
    """
    Blending index whose ranking is a function of alpha.

    ``ranking`` maps alpha to the ordered result ids; scores descend from 1.0.
    ``fail_at`` makes queries at those alphas raise.
    """

    def __init__(self, ranking: Callable[[float], list[str]], fail_at: Sequence[float] = (), error: Exception | None = None):
        self.ranking = ranking
        self.fail_at = [round(a, 4) for a in fail_at]
        self.error = error or RuntimeError("index unavailable")
        self.requests: list[IndexQuery] = []

    @property
    def supports_alpha(self) -> bool:
        return True

    async def query(self, request: IndexQuery) -> list[Candidate]:
        self.requests.append(request)
        if request.alpha is not None and round(request.alpha, 4) in self.fail_at:
            raise self.error
        ids = self.ranking(request.alpha)[: request.top_k]
        return [Candidate(id=doc_id, score=1.0 - i * 0.1, metadata={"rank": i + 1}) for i, doc_id in enumerate(ids)]


class SeparateIndex(VectorIndex):
    """Non-blending index: answers dense-only and sparse-only queries separately."""

    def __init__(self, dense_matches: list[Candidate], sparse_matches: list[Candidate]):
        self.dense_matches = dense_matches
        self.sparse_matches = sparse_matches
        self.requests: list[IndexQuery] = []

    @property
    def supports_alpha(self) -> bool:
        return False

    async def query(self, request: IndexQuery) -> list[Candidate]:
        self.requests.append(request)
        if request.dense is not None:
            return list(self.dense_matches)
        return list(self.sparse_matches)


def constant_ranking(ids: list[str]) -> Callable[[float], list[str]]:
    return lambda alpha: list(ids)


def jwt_ranking(alpha: float) -> list[str]:
    """doc-42 ranks first for pure lexical search and drops as alpha rises."""
    if alpha <= 0.0:
        return ["doc-42", "doc-7", "doc-9"]
    if alpha < 1.0:
        return ["doc-7", "doc-42", "doc-9"]
    return ["doc-7", "doc-9", "doc-42"]



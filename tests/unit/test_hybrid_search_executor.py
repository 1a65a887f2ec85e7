"""
Unit tests for the hybrid search executor.

Uses stub providers; no network access.
"""

import pytest

from calibration_stubs import ScriptedIndex, SeparateIndex, StubDenseEmbedder, StubSparseEmbedder, constant_ranking
from hybrid_calibration.models.calibration import Candidate, SparseVector
from hybrid_calibration.providers.base import ProviderError
from hybrid_calibration.services.hybrid_search import HybridSearchExecutor, RetrievalError, fuse_scores

# =============================================================================
# Score Fusion Tests
# =============================================================================


class TestFuseScores:
    """Tests for fuse_scores function."""

    def test_convex_combination(self):
        """Fused score is alpha * dense + (1 - alpha) * sparse."""
        dense = [Candidate("a", 0.8), Candidate("b", 0.4)]
        sparse = [Candidate("b", 1.0), Candidate("c", 0.6)]
        fused = fuse_scores(dense, sparse, alpha=0.5, top_k=10)
        scores = {c.id: c.score for c in fused}
        assert scores["a"] == pytest.approx(0.4)
        assert scores["b"] == pytest.approx(0.7)
        assert scores["c"] == pytest.approx(0.3)
        assert [c.id for c in fused] == ["b", "a", "c"]

    def test_pure_dense(self):
        """Alpha 1.0 ignores sparse scores."""
        fused = fuse_scores([Candidate("a", 0.2)], [Candidate("b", 0.9)], alpha=1.0, top_k=10)
        assert [c.id for c in fused] == ["a", "b"]
        assert fused[1].score == 0.0

    def test_pure_sparse(self):
        """Alpha 0.0 ignores dense scores."""
        fused = fuse_scores([Candidate("a", 0.9)], [Candidate("b", 0.2)], alpha=0.0, top_k=10)
        assert [c.id for c in fused] == ["b", "a"]

    def test_truncates_to_top_k(self):
        """Only top_k candidates are kept."""
        dense = [Candidate(str(i), 1.0 - i / 10) for i in range(5)]
        assert len(fuse_scores(dense, [], alpha=0.5, top_k=2)) == 2

    def test_metadata_preserved(self):
        """Metadata passes through from whichever side has it."""
        fused = fuse_scores([Candidate("a", 0.5)], [Candidate("a", 0.5, {"title": "A"})], alpha=0.5, top_k=1)
        assert fused[0].metadata == {"title": "A"}


# =============================================================================
# Executor Tests
# =============================================================================


class TestHybridSearchExecutor:
    """Tests for HybridSearchExecutor.search."""

    @pytest.mark.asyncio
    async def test_index_blending(self, dense_embedder, sparse_embedder):
        """Blending index receives both vectors, alpha and the data type filter."""
        index = ScriptedIndex(constant_ranking(["a", "b", "c"]))
        executor = HybridSearchExecutor(dense_embedder, sparse_embedder, index)

        outcome = await executor.search("JWT token expiry bug", 0.3, top_k=2, data_type="error")

        assert outcome.ids == ["a", "b"]
        assert outcome.fusion == "index"
        assert outcome.sparse_terms_count == 2
        assert outcome.timing_ms >= 0
        request = index.requests[0]
        assert request.alpha == 0.3
        assert request.top_k == 2
        assert request.dense == [0.1, 0.2, 0.3]
        assert request.sparse == SparseVector((10, 20), (0.5, 0.8))
        assert request.filter == {"data_type": "error"}
        assert sparse_embedder.calls == [("JWT token expiry bug", "query")]

    @pytest.mark.asyncio
    async def test_no_filter_without_data_type(self, dense_embedder, sparse_embedder):
        """Without a data type the index query carries no filter."""
        index = ScriptedIndex(constant_ranking(["a"]))
        executor = HybridSearchExecutor(dense_embedder, sparse_embedder, index)
        await executor.search("query", 0.5, top_k=5)
        assert index.requests[0].filter is None

    @pytest.mark.asyncio
    async def test_client_fusion(self, dense_embedder, sparse_embedder):
        """Non-blending index gets separate queries fused on the client."""
        index = SeparateIndex(
            dense_matches=[Candidate("a", 0.9), Candidate("b", 0.1)],
            sparse_matches=[Candidate("b", 0.9), Candidate("c", 0.5)],
        )
        executor = HybridSearchExecutor(dense_embedder, sparse_embedder, index)

        outcome = await executor.search("query", 0.2, top_k=3)

        assert outcome.fusion == "client"
        assert outcome.ids == ["b", "c", "a"]
        assert len(index.requests) == 2
        assert all(request.alpha is None for request in index.requests)

    @pytest.mark.asyncio
    async def test_client_fusion_empty_sparse(self, dense_embedder):
        """An empty sparse vector skips the sparse-only query."""
        index = SeparateIndex(dense_matches=[Candidate("a", 0.9)], sparse_matches=[Candidate("z", 1.0)])
        executor = HybridSearchExecutor(dense_embedder, StubSparseEmbedder(SparseVector()), index)

        outcome = await executor.search("query", 0.5, top_k=3)

        assert outcome.ids == ["a"]
        assert len(index.requests) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("alpha", [-0.1, 1.1])
    async def test_rejects_alpha_out_of_range(self, dense_embedder, sparse_embedder, alpha):
        """Invalid alpha fails before any provider call."""
        executor = HybridSearchExecutor(dense_embedder, sparse_embedder, ScriptedIndex(constant_ranking([])))
        with pytest.raises(ValueError):
            await executor.search("query", alpha, top_k=5)
        assert dense_embedder.calls == []

    @pytest.mark.asyncio
    async def test_rejects_non_positive_top_k(self, dense_embedder, sparse_embedder):
        """top_k must be at least 1."""
        executor = HybridSearchExecutor(dense_embedder, sparse_embedder, ScriptedIndex(constant_ranking([])))
        with pytest.raises(ValueError):
            await executor.search("query", 0.5, top_k=0)

    @pytest.mark.asyncio
    async def test_dense_failure(self, sparse_embedder):
        """Dense provider errors surface as RetrievalError naming the stage."""
        dense = StubDenseEmbedder(error=ProviderError("openai", "rate limited", 429))
        executor = HybridSearchExecutor(dense, sparse_embedder, ScriptedIndex(constant_ranking(["a"])))

        with pytest.raises(RetrievalError) as exc_info:
            await executor.search("query", 0.5, top_k=5)

        assert exc_info.value.stage == "dense_embedding"
        assert "rate limited" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_sparse_failure(self, dense_embedder):
        """Sparse provider errors surface as RetrievalError."""
        sparse = StubSparseEmbedder(error=ProviderError("pinecone", "bad model"))
        executor = HybridSearchExecutor(dense_embedder, sparse, ScriptedIndex(constant_ranking(["a"])))

        with pytest.raises(RetrievalError) as exc_info:
            await executor.search("query", 0.5, top_k=5)

        assert exc_info.value.stage == "sparse_embedding"

    @pytest.mark.asyncio
    async def test_index_failure(self, dense_embedder, sparse_embedder):
        """Index errors surface as RetrievalError and are not retried."""
        index = ScriptedIndex(constant_ranking(["a"]), fail_at=[0.5])
        executor = HybridSearchExecutor(dense_embedder, sparse_embedder, index)

        with pytest.raises(RetrievalError) as exc_info:
            await executor.search("query", 0.5, top_k=5)

        assert exc_info.value.stage == "index_query"
        assert len(index.requests) == 1

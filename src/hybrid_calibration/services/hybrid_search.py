# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Hybrid Search Executor

Runs one hybrid retrieval: embeds the query densely and sparsely, queries the
index with both vectors, and returns the ranked candidates with timing.

When the index blends natively, alpha is handed to the index. Otherwise the
executor issues a dense-only and a sparse-only query and fuses the scores as
alpha * dense + (1 - alpha) * sparse.

No retries and no caching: every failure surfaces as a RetrievalError.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Sequence
from typing import TypeVar

from ..models.calibration import Candidate, IndexQuery, SearchOutcome, SparseVector
from ..providers.base import DenseEmbeddingProvider, SparseEmbeddingProvider, VectorIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetrievalError(Exception):
    """An embedding or index call failed during a hybrid search."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"{stage} failed: {message}")


def fuse_scores(
    dense_matches: Sequence[Candidate],
    sparse_matches: Sequence[Candidate],
    alpha: float,
    top_k: int,
) -> list[Candidate]:
    """
    Blend separately retrieved dense and sparse matches.

    Formula: score = alpha * dense_score + (1 - alpha) * sparse_score, with a
    missing side contributing 0. Results are sorted by fused score descending
    (stable, so dense order breaks ties) and truncated to top_k.

    Args:
        dense_matches: Matches from the dense-only query
        sparse_matches: Matches from the sparse-only query
        alpha: Dense weight (0.0 to 1.0)
        top_k: Number of candidates to keep

    Returns:
        Fused candidates, best first
    """
    scores: dict[str, float] = {}
    metadata: dict[str, dict | None] = {}

    for match in dense_matches:
        scores[match.id] = alpha * match.score
        metadata[match.id] = match.metadata

    for match in sparse_matches:
        scores[match.id] = scores.get(match.id, 0.0) + (1.0 - alpha) * match.score
        if metadata.get(match.id) is None:
            metadata[match.id] = match.metadata

    fused = [Candidate(id=doc_id, score=score, metadata=metadata[doc_id]) for doc_id, score in scores.items()]
    fused.sort(key=lambda c: c.score, reverse=True)
    return fused[:top_k]


class HybridSearchExecutor:
    """Executes dense + sparse retrieval against one index."""

    def __init__(
        self,
        dense_provider: DenseEmbeddingProvider,
        sparse_provider: SparseEmbeddingProvider,
        index: VectorIndex,
    ):
        self.dense_provider = dense_provider
        self.sparse_provider = sparse_provider
        self.index = index

    @staticmethod
    async def _run_stage(stage: str, call: Awaitable[T]) -> tuple[T, float]:
        """Await one external call, timing it and wrapping failures."""
        started = time.perf_counter()
        try:
            result = await call
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(stage, str(e)) from e
        return result, (time.perf_counter() - started) * 1000

    async def _query_separately(
        self,
        dense_vector: list[float],
        sparse_vector: SparseVector,
        alpha: float,
        top_k: int,
        query_filter: dict | None,
    ) -> list[Candidate]:
        dense_request = IndexQuery(top_k=top_k, dense=dense_vector, filter=query_filter)
        dense_call = self.index.query(dense_request)

        if sparse_vector.is_empty:
            dense_matches, _ = await self._run_stage("index_query", dense_call)
            sparse_matches: list[Candidate] = []
        else:
            sparse_request = IndexQuery(top_k=top_k, sparse=sparse_vector, filter=query_filter)
            (dense_matches, _), (sparse_matches, _) = await asyncio.gather(
                self._run_stage("index_query", dense_call),
                self._run_stage("index_query", self.index.query(sparse_request)),
            )

        return fuse_scores(dense_matches, sparse_matches, alpha, top_k)

    async def search(
        self,
        query: str,
        alpha: float,
        top_k: int,
        data_type: str | None = None,
    ) -> SearchOutcome:
        """
        Run one hybrid search.

        Args:
            query: Query text
            alpha: Dense weight, 1.0 = pure dense, 0.0 = pure sparse
            top_k: Maximum candidates to return
            data_type: Optional category filter applied by the index

        Returns:
            SearchOutcome with ranked candidates and elapsed milliseconds

        Raises:
            ValueError: If alpha or top_k is out of range
            RetrievalError: If an embedding provider or the index fails
        """
        if not 0.0 <= alpha <= 1.0:
            raise ValueError(f"alpha must be between 0 and 1, got {alpha}")
        if top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {top_k}")

        started = time.perf_counter()

        (dense_vector, dense_ms), (sparse_vector, sparse_ms) = await asyncio.gather(
            self._run_stage("dense_embedding", self.dense_provider.embed(query)),
            self._run_stage("sparse_embedding", self.sparse_provider.embed(query, input_type="query")),
        )

        query_filter = {"data_type": data_type} if data_type else None

        query_started = time.perf_counter()
        if self.index.supports_alpha:
            request = IndexQuery(
                top_k=top_k,
                dense=dense_vector,
                sparse=sparse_vector,
                filter=query_filter,
                alpha=alpha,
            )
            candidates, _ = await self._run_stage("index_query", self.index.query(request))
            candidates = list(candidates)[:top_k]
            fusion = "index"
        else:
            candidates = await self._query_separately(dense_vector, sparse_vector, alpha, top_k, query_filter)
            fusion = "client"
        query_ms = (time.perf_counter() - query_started) * 1000

        timing_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Hybrid search alpha={alpha} top_k={top_k} returned {len(candidates)} candidates "
            f"in {timing_ms:.1f}ms (dense={dense_ms:.1f}ms, sparse={sparse_ms:.1f}ms, query={query_ms:.1f}ms)"
        )

        return SearchOutcome(
            candidates=candidates,
            timing_ms=timing_ms,
            dense_embedding_ms=dense_ms,
            sparse_embedding_ms=sparse_ms,
            query_ms=query_ms,
            sparse_terms_count=len(sparse_vector.indices),
            fusion=fusion,
        )

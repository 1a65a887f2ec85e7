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
Retrieval Quality Metrics

Pure functions computing information-retrieval metrics from a ranked list of
result ids and a ground-truth set of relevant ids. Every function is a fresh
computation over its inputs; none of them raise on empty inputs.

Definitions:
- Reciprocal rank: 1 / position of the first relevant result (0 if none)
- Precision@K: relevant hits in the top K, divided by K
- Recall@K: relevant hits in the top K, divided by the number of relevant ids
- NDCG@K: binary-relevance DCG normalized by the ideal DCG
"""

from __future__ import annotations

import math
from collections.abc import Collection, Sequence

from ..models.calibration import RetrievalMetrics

PRECISION_K = 5
RECALL_K = 10
NDCG_K = 10


def _top_k_hits(result_ids: Sequence[str], relevant_ids: Collection[str], k: int) -> int:
    """Count distinct relevant ids among the first k results."""
    relevant = set(relevant_ids)
    return len(set(result_ids[:k]) & relevant)


def reciprocal_rank(result_ids: Sequence[str], relevant_ids: Collection[str]) -> float:
    """
    Calculate the reciprocal rank of the first relevant result.

    For a single query this is the MRR; averaging across queries is left to
    the caller.

    Args:
        result_ids: Ranked result ids, most relevant first
        relevant_ids: Ground-truth relevant ids

    Returns:
        1 / position (1-indexed) of the first relevant id, or 0.0 if none match
    """
    rank = first_relevant_rank(result_ids, relevant_ids)
    return 1.0 / rank if rank is not None else 0.0


def precision_at_k(result_ids: Sequence[str], relevant_ids: Collection[str], k: int) -> float:
    """
    Calculate Precision@K.

    Missing slots (fewer than K results) count as non-relevant, so the
    denominator is always K.
    """
    if k <= 0:
        return 0.0
    return _top_k_hits(result_ids, relevant_ids, k) / k


def recall_at_k(result_ids: Sequence[str], relevant_ids: Collection[str], k: int) -> float:
    """
    Calculate Recall@K.

    Returns 0.0 when there are no relevant ids.
    """
    relevant = set(relevant_ids)
    if not relevant or k <= 0:
        return 0.0
    return _top_k_hits(result_ids, relevant, k) / len(relevant)


def ndcg_at_k(result_ids: Sequence[str], relevant_ids: Collection[str], k: int) -> float:
    """
    Calculate Normalized Discounted Cumulative Gain @K.

    Uses binary relevance (1 if relevant, 0 otherwise). Position i (0-indexed)
    is discounted by log2(i + 2) so the first position has weight 1.

    Args:
        result_ids: Ranked result ids, most relevant first
        relevant_ids: Ground-truth relevant ids
        k: Cutoff

    Returns:
        DCG / IDCG, or 0.0 when IDCG is 0
    """
    relevant = set(relevant_ids)
    if k <= 0:
        return 0.0

    # A repeated id only earns gain at its first position
    seen: set[str] = set()
    dcg = 0.0
    for i, result_id in enumerate(result_ids[:k]):
        if result_id in relevant and result_id not in seen:
            dcg += 1.0 / math.log2(i + 2)
        seen.add(result_id)

    ideal_dcg = sum(1.0 / math.log2(i + 2) for i in range(min(k, len(relevant))))

    return dcg / ideal_dcg if ideal_dcg > 0 else 0.0


def first_relevant_rank(result_ids: Sequence[str], relevant_ids: Collection[str]) -> int | None:
    """Return the 1-indexed position of the first relevant id, or None if absent."""
    relevant = set(relevant_ids)
    for position, result_id in enumerate(result_ids, start=1):
        if result_id in relevant:
            return position
    return None


def compute_metrics(result_ids: Sequence[str], relevant_ids: Collection[str]) -> RetrievalMetrics:
    """Compute MRR, Precision@5, Recall@10 and NDCG@10 for one ranked list."""
    result_ids = list(result_ids)
    return RetrievalMetrics(
        mrr=reciprocal_rank(result_ids, relevant_ids),
        precision_at_5=precision_at_k(result_ids, relevant_ids, PRECISION_K),
        recall_at_10=recall_at_k(result_ids, relevant_ids, RECALL_K),
        ndcg=ndcg_at_k(result_ids, relevant_ids, NDCG_K),
    )


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0.0 for an empty sequence."""
    return sum(values) / len(values) if values else 0.0

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
Value types for hybrid retrieval and alpha calibration.

Everything here is created per request and discarded after the response,
except AlphaConfig, which is built once at process start and never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Literal, Mapping

if TYPE_CHECKING:
    from ..config import AlphaSettings

AlphaSource = Literal["explicit", "data_type", "auto_tuned", "default"]
FusionMode = Literal["index", "client"]


def _check_alpha(alpha: float, label: str) -> float:
    alpha = float(alpha)
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"{label} must be between 0 and 1, got {alpha}")
    return alpha


@dataclass(frozen=True)
class AlphaConfig:
    """
    Process-wide blend weight table.

    alpha = 1.0 is pure dense (semantic) search, alpha = 0.0 pure sparse
    (lexical) search. The per data_type table is wrapped in a read-only
    mapping so concurrent readers never observe a mutation.
    """

    default_alpha: float = 0.5
    category_alpha: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "default_alpha", _check_alpha(self.default_alpha, "default_alpha"))
        checked = {key: _check_alpha(value, f"alpha for data_type '{key}'") for key, value in self.category_alpha.items()}
        object.__setattr__(self, "category_alpha", MappingProxyType(checked))

    @classmethod
    def from_settings(cls, alpha_settings: AlphaSettings) -> AlphaConfig:
        """Build the immutable table from loaded settings."""
        return cls(
            default_alpha=alpha_settings.default_alpha,
            category_alpha=dict(alpha_settings.alpha_by_data_type),
        )

    @property
    def data_types(self) -> list[str]:
        return list(self.category_alpha.keys())


@dataclass(frozen=True)
class Candidate:
    """A scored match returned by the index. Metadata is passed through untouched."""

    id: str
    score: float
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "score": self.score, "metadata": self.metadata}


@dataclass(frozen=True)
class SparseVector:
    """Index/value pairs describing lexical term importance."""

    indices: tuple[int, ...] = ()
    values: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if len(self.indices) != len(self.values):
            raise ValueError(f"Sparse vector has {len(self.indices)} indices but {len(self.values)} values")
        object.__setattr__(self, "indices", tuple(int(i) for i in self.indices))
        object.__setattr__(self, "values", tuple(float(v) for v in self.values))

    @property
    def is_empty(self) -> bool:
        return not self.indices

    def scaled(self, factor: float) -> SparseVector:
        return SparseVector(self.indices, tuple(v * factor for v in self.values))

    def to_dict(self) -> dict[str, list]:
        return {"indices": list(self.indices), "values": list(self.values)}


@dataclass(frozen=True)
class IndexQuery:
    """
    A single retrieval request against the vector index.

    Either vector may be absent (dense-only or sparse-only queries used by
    client-side fusion). ``alpha`` is only set when the index blends natively.
    """

    top_k: int
    dense: list[float] | None = None
    sparse: SparseVector | None = None
    filter: dict[str, Any] | None = None
    alpha: float | None = None


@dataclass(frozen=True)
class SearchOutcome:
    """Ranked candidates from one hybrid search plus timing breakdown."""

    candidates: list[Candidate]
    timing_ms: float
    dense_embedding_ms: float = 0.0
    sparse_embedding_ms: float = 0.0
    query_ms: float = 0.0
    sparse_terms_count: int = 0
    fusion: FusionMode = "index"

    @property
    def ids(self) -> list[str]:
        return [c.id for c in self.candidates]


@dataclass(frozen=True)
class RetrievalMetrics:
    """Quality metrics of one ranked list against one relevance judgment."""

    mrr: float
    precision_at_5: float
    recall_at_10: float
    ndcg: float

    def to_dict(self) -> dict[str, float]:
        return {
            "mrr": self.mrr,
            "precision_at_5": self.precision_at_5,
            "recall_at_10": self.recall_at_10,
            "ndcg": self.ndcg,
        }


@dataclass(frozen=True)
class SweepResult:
    """One row of an alpha sweep."""

    alpha: float
    mrr: float
    precision_at_5: float
    recall_at_10: float
    ndcg: float
    first_relevant_rank: int | None
    results: list[str]
    timing_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "alpha": self.alpha,
            "mrr": self.mrr,
            "precision_at_5": self.precision_at_5,
            "recall_at_10": self.recall_at_10,
            "first_relevant_rank": self.first_relevant_rank,
            "ndcg": self.ndcg,
            "results": list(self.results),
            "timing_ms": self.timing_ms,
        }


@dataclass(frozen=True)
class CalibrationReport:
    """Aggregated sweep output for one query/data_type pair."""

    data_type: str
    query: str
    relevant_ids: list[str]
    results: list[SweepResult]
    best_alpha: float
    best_mrr: float
    current_default: float
    default_mrr: float
    improvement_vs_default: float
    default_in_grid: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_type": self.data_type,
            "query": self.query,
            "relevant_ids": list(self.relevant_ids),
            "results": [row.to_dict() for row in self.results],
            "best_alpha": self.best_alpha,
            "best_mrr": self.best_mrr,
            "current_default": self.current_default,
            "default_mrr": self.default_mrr,
            "improvement_vs_default": self.improvement_vs_default,
            "default_in_grid": self.default_in_grid,
        }


@dataclass(frozen=True)
class SingleResult:
    """Outcome of a single-alpha search; metrics are None when no ground truth was supplied."""

    query: str
    alpha: float
    data_type: str
    metrics: RetrievalMetrics | None
    results: list[Candidate]
    timing_ms: float


@dataclass(frozen=True)
class LexicalSignals:
    """Exact-match indicators extracted from a raw query."""

    has_boost_keywords: bool
    acronym_count: int
    has_code_patterns: bool
    is_question: bool

    @property
    def is_lexical(self) -> bool:
        return self.has_boost_keywords or self.acronym_count > 0 or self.has_code_patterns

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_boost_keywords": self.has_boost_keywords,
            "acronym_count": self.acronym_count,
            "has_code_patterns": self.has_code_patterns,
            "is_question": self.is_question,
        }


@dataclass(frozen=True)
class QueryAnalysis:
    """Result of analysing a query without touching the index."""

    query: str
    data_type: str | None
    base_alpha: float
    auto_tuned_alpha: float
    auto_tune_triggered: bool
    analysis: LexicalSignals
    factors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AlphaDecision:
    """The alpha chosen for a serve-time search and where it came from."""

    alpha: float
    source: AlphaSource
    keyword_boost_applied: bool = False

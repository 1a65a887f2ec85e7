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
Calibration Service - Alpha sweeps and query analysis.

Drives the hybrid search executor across a grid of alpha values, scores each
ranked list against caller-supplied ground truth, and reports which alpha
ranks the first relevant document highest.

Grid points are independent: they run as separate tasks, bounded by a
semaphore, and are joined before aggregation. A sweep either completes every
grid point or fails as a whole; there is no partial report.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from ..models.calibration import (
    AlphaConfig,
    AlphaDecision,
    CalibrationReport,
    QueryAnalysis,
    SearchOutcome,
    SingleResult,
    SweepResult,
)
from ..utils.alpha_policy import AlphaPolicy
from ..utils.metrics import compute_metrics, first_relevant_rank
from .hybrid_search import HybridSearchExecutor

logger = logging.getLogger(__name__)

# 0.0, 0.1, ..., 1.0
DEFAULT_ALPHA_VALUES: tuple[float, ...] = tuple(round(step / 10, 1) for step in range(11))

# Grid values this close to the configured default count as the default
DEFAULT_MATCH_TOLERANCE = 0.01

TOP_RESULT_IDS = 5

RECOMMENDATION = "Run sweep tests for each data_type to find optimal values"


def describe_configuration(config: AlphaConfig) -> dict[str, Any]:
    """Configuration report: default alpha, per data_type overrides and a recommendation."""
    return {
        "current_configuration": {
            "default_alpha": config.default_alpha,
            "alpha_by_data_type": dict(config.category_alpha),
        },
        "data_types": config.data_types,
        "recommendation": RECOMMENDATION,
    }


class CalibrationService:
    """
    Alpha calibration over a hybrid search executor.

    The service holds no per-request state; the alpha policy it reads from is
    immutable, so one instance serves concurrent requests.
    """

    def __init__(
        self,
        executor: HybridSearchExecutor,
        policy: AlphaPolicy,
        default_top_k: int = 10,
        max_concurrency: int = 4,
    ):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.executor = executor
        self.policy = policy
        self.default_top_k = default_top_k
        self.max_concurrency = max_concurrency

    # -------------------------------------------------------------------------
    # Validation helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _require_query(query: str) -> str:
        if not query or not query.strip():
            raise ValueError("query must be a non-empty string")
        return query

    def _resolve_top_k(self, top_k: int | None) -> int:
        top_k = self.default_top_k if top_k is None else top_k
        if top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {top_k}")
        return top_k

    @staticmethod
    def _validate_grid(alpha_values: Iterable[float] | None) -> list[float]:
        grid = list(DEFAULT_ALPHA_VALUES if alpha_values is None else alpha_values)
        if not grid:
            raise ValueError("alpha_values must contain at least one value")
        for alpha in grid:
            if not 0.0 <= alpha <= 1.0:
                raise ValueError(f"alpha_values must be between 0 and 1, got {alpha}")
        return [float(alpha) for alpha in grid]

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    async def _evaluate_alpha(
        self,
        semaphore: asyncio.Semaphore,
        query: str,
        alpha: float,
        relevant_ids: Sequence[str],
        top_k: int,
        data_type: str | None,
    ) -> SweepResult:
        async with semaphore:
            outcome = await self.executor.search(query, alpha, top_k, data_type)

        result_ids = outcome.ids
        metrics = compute_metrics(result_ids, relevant_ids)
        logger.debug(f"alpha={alpha}: mrr={metrics.mrr:.3f} ndcg={metrics.ndcg:.3f} in {outcome.timing_ms:.1f}ms")

        return SweepResult(
            alpha=alpha,
            mrr=metrics.mrr,
            precision_at_5=metrics.precision_at_5,
            recall_at_10=metrics.recall_at_10,
            ndcg=metrics.ndcg,
            first_relevant_rank=first_relevant_rank(result_ids, relevant_ids),
            results=result_ids[:TOP_RESULT_IDS],
            timing_ms=outcome.timing_ms,
        )

    async def _run_grid(
        self,
        query: str,
        alphas: Sequence[float],
        relevant_ids: Sequence[str],
        top_k: int,
        data_type: str | None,
    ) -> list[SweepResult]:
        """Evaluate every alpha concurrently; any failure cancels the rest and propagates."""
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(self._evaluate_alpha(semaphore, query, alpha, relevant_ids, top_k, data_type))
            for alpha in alphas
        ]

        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def sweep(
        self,
        query: str,
        relevant_ids: Sequence[str],
        data_type: str | None = None,
        alpha_values: Iterable[float] | None = None,
        top_k: int | None = None,
    ) -> CalibrationReport:
        """
        Run an alpha sweep for one query.

        Args:
            query: Query text
            relevant_ids: Ground-truth relevant ids (at least one)
            data_type: Optional category; selects the current default alpha and filters the index
            alpha_values: Grid to test (default: 0.0 to 1.0 in steps of 0.1)
            top_k: Candidates retrieved per grid point

        Returns:
            CalibrationReport with one row per tested alpha

        Raises:
            ValueError: On invalid input, before any retrieval
            RetrievalError: If any grid point fails
        """
        self._require_query(query)
        relevant = list(dict.fromkeys(relevant_ids))
        if not relevant:
            raise ValueError("relevant_ids must contain at least one id")
        grid = self._validate_grid(alpha_values)
        top_k = self._resolve_top_k(top_k)

        current_default = self.policy.resolve_base_alpha(data_type)
        logger.info(f"Starting alpha sweep: {len(grid)} points, data_type={data_type or 'all'}, top_k={top_k}")
        rows = await self._run_grid(query, grid, relevant, top_k, data_type)

        # Strictly greater keeps the first (lowest grid position) alpha on ties
        best = rows[0]
        for row in rows[1:]:
            if row.mrr > best.mrr:
                best = row

        # A default outside the grid is not measured; its MRR counts as 0
        default_row = next((row for row in rows if abs(row.alpha - current_default) < DEFAULT_MATCH_TOLERANCE), None)
        default_in_grid = default_row is not None
        default_mrr = default_row.mrr if default_row is not None else 0.0
        improvement = (best.mrr - default_mrr) / default_mrr * 100 if default_mrr > 0 else 0.0

        logger.info(
            f"Sweep complete: best_alpha={best.alpha} (mrr={best.mrr:.3f}), "
            f"default={current_default} (mrr={default_mrr:.3f}), improvement={improvement:.1f}%"
        )

        return CalibrationReport(
            data_type=data_type or "all",
            query=query,
            relevant_ids=relevant,
            results=rows,
            best_alpha=best.alpha,
            best_mrr=best.mrr,
            current_default=current_default,
            default_mrr=default_mrr,
            improvement_vs_default=improvement,
            default_in_grid=default_in_grid,
        )

    # -------------------------------------------------------------------------
    # Single alpha, analysis, report
    # -------------------------------------------------------------------------

    async def single(
        self,
        query: str,
        alpha: float,
        data_type: str | None = None,
        relevant_ids: Sequence[str] | None = None,
        top_k: int | None = None,
    ) -> SingleResult:
        """
        Run exactly one search at a caller-chosen alpha.

        Metrics are computed only when relevant_ids is non-empty; otherwise
        they are None rather than zero.
        """
        self._require_query(query)
        if not 0.0 <= alpha <= 1.0:
            raise ValueError(f"alpha must be between 0 and 1, got {alpha}")
        top_k = self._resolve_top_k(top_k)

        outcome = await self.executor.search(query, alpha, top_k, data_type)
        metrics = compute_metrics(outcome.ids, relevant_ids) if relevant_ids else None

        return SingleResult(
            query=query,
            alpha=alpha,
            data_type=data_type or "all",
            metrics=metrics,
            results=outcome.candidates,
            timing_ms=outcome.timing_ms,
        )

    def analyze(self, query: str, data_type: str | None = None) -> QueryAnalysis:
        """Report base and auto-tuned alpha for a query. Never touches the network."""
        self._require_query(query)
        return self.policy.analyze(query, data_type)

    def report(self) -> dict[str, Any]:
        """Describe the active alpha configuration."""
        return describe_configuration(self.policy.config)

    async def search(
        self,
        query: str,
        data_type: str | None = None,
        alpha: float | None = None,
        top_k: int | None = None,
        auto_tune: bool = True,
    ) -> tuple[SearchOutcome, AlphaDecision]:
        """Serve-time hybrid search with alpha chosen by the policy unless given."""
        self._require_query(query)
        decision = self.policy.resolve(query, data_type=data_type, explicit_alpha=alpha, auto_tune=auto_tune)
        outcome = await self.executor.search(query, decision.alpha, self._resolve_top_k(top_k), data_type)
        logger.info(f"Search alpha={decision.alpha} ({decision.source}) returned {len(outcome.candidates)} candidates")
        return outcome, decision

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
Alpha Policy

Chooses the dense/sparse blend weight for a query. The base value comes from
an injected AlphaConfig (per data_type override, else the default); the
auto-tune step then lowers it when the query shows exact-match intent.

Contract: auto-tuned alpha is never above the base alpha, and equals it
exactly when the query carries no lexical signal.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..config import AutoTuneSettings
from ..models.calibration import AlphaConfig, AlphaDecision, AlphaSource, QueryAnalysis
from .query_analysis import (
    BOOST_KEYWORDS,
    analyze_query,
    find_acronyms,
    find_boost_keywords,
)

logger = logging.getLogger(__name__)


class AlphaPolicy:
    """Resolves and auto-tunes alpha from a read-only AlphaConfig."""

    def __init__(
        self,
        config: AlphaConfig,
        tuning: AutoTuneSettings | None = None,
        boost_keywords: Iterable[str] | None = None,
    ):
        self.config = config
        self.tuning = tuning if tuning is not None else AutoTuneSettings()
        self.boost_keywords = frozenset(boost_keywords) if boost_keywords is not None else BOOST_KEYWORDS

    @property
    def default_alpha(self) -> float:
        return self.config.default_alpha

    def resolve_base_alpha(self, data_type: str | None = None) -> float:
        """Return the data_type override if one exists, else the default alpha."""
        if data_type is not None and data_type in self.config.category_alpha:
            return self.config.category_alpha[data_type]
        return self.config.default_alpha

    def _lexical_shift(self, query: str) -> tuple[float, str | None]:
        """
        Size of the downward shift for a query, with a description of why.

        The first matching signal wins: technical keywords, then acronyms,
        then code patterns.
        """
        if not analyze_query(query, self.boost_keywords).is_lexical:
            return 0.0, None

        keywords = find_boost_keywords(query, self.boost_keywords)
        if keywords:
            return self.tuning.keyword_shift, f"Query contains technical keywords ({', '.join(keywords)}) - reducing alpha"

        acronyms = find_acronyms(query)
        if acronyms:
            shift = min(self.tuning.max_acronym_shift, len(acronyms) * self.tuning.acronym_shift)
            return shift, f"Found {len(acronyms)} acronym(s): {', '.join(acronyms)} - reducing alpha"

        return self.tuning.code_pattern_shift, "Query contains code patterns - reducing alpha"

    def auto_tune(self, query: str, base_alpha: float) -> float:
        """
        Lower alpha for queries with exact-match intent.

        Args:
            query: Raw user query
            base_alpha: Alpha before tuning

        Returns:
            base_alpha minus the signal's shift, floored at tuning.floor and
            never above base_alpha; base_alpha unchanged without signals
        """
        shift, _reason = self._lexical_shift(query)
        if shift <= 0:
            return base_alpha
        tuned = round(max(self.tuning.floor, base_alpha - shift), 4)
        return min(base_alpha, tuned)

    def explain(self, query: str, data_type: str | None = None) -> list[str]:
        """Human-readable factors behind the alpha chosen for a query."""
        factors: list[str] = []
        base_alpha = self.resolve_base_alpha(data_type)

        if data_type is not None and data_type in self.config.category_alpha:
            factors.append(f'Data type "{data_type}" suggests alpha={base_alpha}')
        else:
            factors.append(f"Using default alpha={base_alpha}")

        _shift, reason = self._lexical_shift(query)
        if reason:
            factors.append(reason)

        # Questions are reported but never move alpha
        if analyze_query(query, self.boost_keywords).is_question:
            factors.append("Query is phrased as a question")

        return factors

    def analyze(self, query: str, data_type: str | None = None) -> QueryAnalysis:
        """Analyse a query without any retrieval."""
        base_alpha = self.resolve_base_alpha(data_type)
        tuned_alpha = self.auto_tune(query, base_alpha)
        return QueryAnalysis(
            query=query,
            data_type=data_type,
            base_alpha=base_alpha,
            auto_tuned_alpha=tuned_alpha,
            auto_tune_triggered=tuned_alpha != base_alpha,
            analysis=analyze_query(query, self.boost_keywords),
            factors=self.explain(query, data_type),
        )

    def resolve(
        self,
        query: str,
        data_type: str | None = None,
        explicit_alpha: float | None = None,
        auto_tune: bool = True,
    ) -> AlphaDecision:
        """
        Pick the alpha for a serve-time search.

        Precedence: explicit alpha, then data_type override, then default.
        Auto-tune applies only when alpha was not given explicitly.
        """
        if explicit_alpha is not None:
            if not 0.0 <= explicit_alpha <= 1.0:
                raise ValueError(f"alpha must be between 0 and 1, got {explicit_alpha}")
            return AlphaDecision(alpha=explicit_alpha, source="explicit")

        source: AlphaSource = "data_type" if data_type in self.config.category_alpha else "default"
        alpha = self.resolve_base_alpha(data_type)

        if auto_tune:
            tuned = self.auto_tune(query, alpha)
            if tuned != alpha:
                logger.debug(f"Auto-tuned alpha {alpha} -> {tuned} for query '{query[:50]}'")
                return AlphaDecision(
                    alpha=tuned,
                    source="auto_tuned",
                    keyword_boost_applied=bool(find_boost_keywords(query, self.boost_keywords)),
                )

        return AlphaDecision(alpha=alpha, source=source)

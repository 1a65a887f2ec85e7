"""
Unit tests for retrieval quality metrics.

Tests the pure functions: reciprocal rank, precision, recall, NDCG and the
combined metric bundle.
"""

import math

from hybrid_calibration.utils.metrics import (
    compute_metrics,
    first_relevant_rank,
    mean,
    ndcg_at_k,
    precision_at_k,
    recall_at_k,
    reciprocal_rank,
)

# =============================================================================
# Reciprocal Rank Tests
# =============================================================================


class TestReciprocalRank:
    """Tests for reciprocal_rank function."""

    def test_relevant_at_position_two(self):
        """First relevant id at position 2 gives 1/2."""
        assert reciprocal_rank(["a", "b", "c"], {"b"}) == 0.5

    def test_relevant_at_first_position(self):
        """First relevant id at position 1 gives 1.0."""
        assert reciprocal_rank(["a", "b"], {"a", "b"}) == 1.0

    def test_no_relevant_result(self):
        """No match gives 0, not an error."""
        assert reciprocal_rank(["a", "b"], {"z"}) == 0.0

    def test_empty_results(self):
        """Empty result list gives 0."""
        assert reciprocal_rank([], {"a"}) == 0.0

    def test_only_first_match_counts(self):
        """Later relevant ids do not change the score."""
        assert reciprocal_rank(["x", "a", "b"], {"a", "b"}) == 0.5


# =============================================================================
# Precision and Recall Tests
# =============================================================================


class TestPrecisionAtK:
    """Tests for precision_at_k function."""

    def test_fewer_results_than_k(self):
        """Missing slots count as non-relevant: 1 hit in 2 results is 1/5 at K=5."""
        assert precision_at_k(["a", "b"], {"a"}, 5) == 0.2

    def test_all_relevant(self):
        """Every slot relevant gives 1.0."""
        assert precision_at_k(["a", "b"], {"a", "b"}, 2) == 1.0

    def test_hits_beyond_k_ignored(self):
        """Relevant ids after position K are not counted."""
        assert precision_at_k(["x", "y", "a"], {"a"}, 2) == 0.0

    def test_zero_k(self):
        """K of zero gives 0 instead of dividing by zero."""
        assert precision_at_k(["a"], {"a"}, 0) == 0.0


class TestRecallAtK:
    """Tests for recall_at_k function."""

    def test_empty_ground_truth(self):
        """Empty relevant set gives 0, never a division error."""
        assert recall_at_k(["a", "b"], set(), 10) == 0.0

    def test_partial_recall(self):
        """One of two relevant ids found gives 0.5."""
        assert recall_at_k(["a", "x"], {"a", "b"}, 10) == 0.5

    def test_full_recall(self):
        """All relevant ids in the top K gives 1.0."""
        assert recall_at_k(["b", "a"], {"a", "b"}, 10) == 1.0

    def test_duplicate_results_counted_once(self):
        """A repeated id is one hit."""
        assert recall_at_k(["a", "a"], {"a", "b"}, 10) == 0.5


# =============================================================================
# NDCG Tests
# =============================================================================


class TestNDCG:
    """Tests for ndcg_at_k function."""

    def test_perfect_ranking(self):
        """All relevant ids at the top gives exactly 1.0."""
        assert ndcg_at_k(["a", "b"], {"a", "b"}, 2) == 1.0

    def test_no_relevant(self):
        """No relevant results gives 0."""
        assert ndcg_at_k(["x", "y"], {"a"}, 10) == 0.0

    def test_empty_ground_truth(self):
        """Empty relevant set gives 0."""
        assert ndcg_at_k(["a"], set(), 10) == 0.0

    def test_relevant_at_second_position(self):
        """Single relevant id at position 2 gives 1/log2(3)."""
        assert math.isclose(ndcg_at_k(["x", "a"], {"a"}, 10), 1 / math.log2(3), rel_tol=1e-9)

    def test_duplicates_do_not_exceed_one(self):
        """A repeated relevant id earns gain only once."""
        assert ndcg_at_k(["a", "a", "a"], {"a"}, 10) == 1.0

    def test_more_relevant_than_k(self):
        """Ideal DCG is capped at K positions."""
        assert ndcg_at_k(["a", "b"], {"a", "b", "c"}, 2) == 1.0


# =============================================================================
# Combined Metrics Tests
# =============================================================================


class TestComputeMetrics:
    """Tests for compute_metrics and helpers."""

    def test_bundle_values(self):
        """Bundle uses P@5, R@10 and NDCG@10."""
        metrics = compute_metrics(["a", "b", "c"], ["b"])
        assert metrics.mrr == 0.5
        assert metrics.precision_at_5 == 0.2
        assert metrics.recall_at_10 == 1.0
        assert math.isclose(metrics.ndcg, 1 / math.log2(3), rel_tol=1e-9)

    def test_to_dict_keys(self):
        """Serialized metrics carry the four documented keys."""
        assert set(compute_metrics(["a"], ["a"]).to_dict()) == {"mrr", "precision_at_5", "recall_at_10", "ndcg"}

    def test_first_relevant_rank(self):
        """Rank is 1-indexed; absence is None."""
        assert first_relevant_rank(["x", "y", "a"], {"a"}) == 3
        assert first_relevant_rank(["x"], {"a"}) is None

    def test_mean_of_empty(self):
        """Mean of nothing is 0."""
        assert mean([]) == 0.0
        assert mean([0.5, 1.0]) == 0.75

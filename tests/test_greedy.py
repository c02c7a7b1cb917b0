"""
Test suite for greedy caliper matching in calipermatch.matching.greedy.

These tests exercise matching of a single stratum with a fixed threshold.
"""

import numpy as np
import pytest

from calipermatch.matching.greedy import greedy_match_stratum
from calipermatch.matching.stratify import stratify


class TestGreedyMatching:
    """Test suite for the per-stratum greedy matcher."""

    @pytest.fixture
    def example_stratum(self, make_table, example_rows):
        table = make_table(example_rows)
        strata = stratify(table, [])
        return strata[()]

    def test_reference_scenario(self, example_stratum):
        """T1-C1 and T2-C2 pair up, T3 and C3 stay unmatched."""
        match = greedy_match_stratum(example_stratum, threshold=0.3)

        assert [(p.treated_id, p.control_id) for p in match.pairs] == [("T1", "C1"), ("T2", "C2")]
        np.testing.assert_allclose([p.distance for p in match.pairs], [0.1, 0.2], atol=1e-9)
        assert match.unmatched_treated == ["T3"]
        assert match.unmatched_control == ["C3"]

    def test_distances_within_threshold(self, example_stratum):
        match = greedy_match_stratum(example_stratum, threshold=0.15)

        assert all(p.distance <= 0.15 for p in match.pairs)
        assert [(p.treated_id, p.control_id) for p in match.pairs] == [("T1", "C1")]
        assert match.unmatched_treated == ["T2", "T3"]
        assert match.unmatched_control == ["C2", "C3"]

    def test_without_replacement(self, make_table):
        """Every treated subject prefers C1, but C1 is used once."""
        table = make_table([
            ("T1", 1, 0.0),
            ("T2", 1, 0.05),
            ("T3", 1, 0.1),
            ("C1", 0, 0.02),
            ("C2", 0, 0.5),
            ("C3", 0, 0.9),
        ])
        match = greedy_match_stratum(stratify(table, [])[()], threshold=10.0)

        controls = [p.control_id for p in match.pairs]
        assert len(controls) == len(set(controls)) == 3
        assert match.pairs[0].control_id == "C1"

    def test_ties_go_to_lowest_control_id(self, make_table):
        table = make_table([
            ("T1", 1, 1.0),
            ("C2", 0, 1.5),
            ("C1", 0, 1.5),
        ])
        match = greedy_match_stratum(stratify(table, [])[()], threshold=1.0)

        assert match.pairs[0].control_id == "C1"
        assert match.unmatched_control == ["C2"]

    def test_treated_processed_by_ascending_id(self, make_table):
        """Input order does not matter: T1 is served before T2."""
        rows = [
            ("T2", 1, 0.1),
            ("T1", 1, 0.2),
            ("C1", 0, 0.1),
        ]
        match = greedy_match_stratum(stratify(make_table(rows), [])[()], threshold=1.0)

        assert [(p.treated_id, p.control_id) for p in match.pairs] == [("T1", "C1")]
        assert match.unmatched_treated == ["T2"]

    def test_largest_first_order(self, make_table):
        rows = [
            ("T1", 1, 0.2),
            ("T2", 1, 0.9),
            ("C1", 0, 0.5),
        ]
        match = greedy_match_stratum(stratify(make_table(rows), [])[()], threshold=1.0, order="largest")

        assert match.pairs[0].treated_id == "T2"

    def test_smallest_first_order(self, make_table):
        rows = [
            ("T1", 1, 0.9),
            ("T2", 1, 0.2),
            ("C1", 0, 0.5),
        ]
        match = greedy_match_stratum(stratify(make_table(rows), [])[()], threshold=1.0, order="smallest")

        assert match.pairs[0].treated_id == "T2"

    def test_random_order_is_reproducible(self, make_table):
        rows = [(f"T{i}", 1, 0.1 * i) for i in range(8)] + [(f"C{i}", 0, 0.1 * i + 0.05) for i in range(4)]
        stratum = stratify(make_table(rows), [])[()]

        first = greedy_match_stratum(stratum, 1.0, order="random", rng=np.random.RandomState(7))
        second = greedy_match_stratum(stratum, 1.0, order="random", rng=np.random.RandomState(7))

        assert first == second

    def test_random_order_requires_rng(self, example_stratum):
        with pytest.raises(ValueError, match="random state"):
            greedy_match_stratum(example_stratum, 1.0, order="random")

    def test_unknown_order(self, example_stratum):
        with pytest.raises(ValueError, match="order must be one of"):
            greedy_match_stratum(example_stratum, 1.0, order="sideways")

    def test_no_controls(self, make_table):
        table = make_table([("T1", 1, 0.1), ("T2", 1, 0.2)])
        match = greedy_match_stratum(stratify(table, [])[()], threshold=1.0)

        assert match.pairs == []
        assert match.unmatched_treated == ["T1", "T2"]
        assert match.unmatched_control == []

    def test_no_treated(self, make_table):
        table = make_table([("C1", 0, 0.1)])
        match = greedy_match_stratum(stratify(table, [])[()], threshold=1.0)

        assert match.pairs == []
        assert match.unmatched_control == ["C1"]

    def test_zero_threshold_matches_identical_scores_only(self, make_table):
        table = make_table([("T1", 1, 0.3), ("T2", 1, 0.4), ("C1", 0, 0.3), ("C2", 0, 0.41)])
        match = greedy_match_stratum(stratify(table, [])[()], threshold=0.0)

        assert [(p.treated_id, p.control_id) for p in match.pairs] == [("T1", "C1")]

"""
Test suite for the Matcher class.

These tests cover caliper scaling, the invariants of a matching run,
determinism, parallel execution and failure handling.
"""

import threading
import warnings
from collections import Counter

import numpy as np
import pandas as pd
import pytest

import calipermatch.matcher as matcher_module
from calipermatch import Matcher, MatcherConfig, match_subjects
from calipermatch.exceptions import (
    EmptyStratumWarning,
    InvalidCaliperError,
    MatchingAborted,
    MissingKeyError,
)
from calipermatch.subjects import SubjectTable


class TestMatcher:
    """Test suite for Matcher."""

    def test_reference_scenario_with_pooled_sd(self, make_table, example_rows):
        """A width of 0.3 / pooled SD reproduces a 0.3 logit threshold."""
        table = make_table(example_rows)
        pooled_sd = np.std([row[2] for row in example_rows])
        config = MatcherConfig(caliper_width=0.3 / pooled_sd)

        result = Matcher(table, config).match().get_results()

        np.testing.assert_allclose(result.pooled_sd, pooled_sd)
        np.testing.assert_allclose(result.threshold, 0.3)
        assert [(p.treated_id, p.control_id) for p in result.pairs] == [("T1", "C1"), ("T2", "C2")]
        assert result.unmatched_treated == ("T3",)
        assert result.unmatched_control == ("C3",)
        assert result.realized_ratio == 1.0

    def test_strata_never_cross(self, make_table):
        """Closer cross-stratum partners are ignored."""
        table = make_table([
            ("T1", 1, 0.00, "north"),
            ("C1", 0, 0.01, "south"),
            ("T2", 1, 1.00, "south"),
            ("C2", 0, 1.01, "north"),
        ], exact_keys=["region"])
        config = MatcherConfig(exact_keys=["region"], caliper_width=100.0, calculate_balance=False)

        result = match_subjects(table, config)

        assert {(p.treated_id, p.control_id) for p in result.pairs} == {("T1", "C2"), ("T2", "C1")}
        regions = {s.id: s.covariates["region"] for s in table}
        for pair in result.pairs:
            assert regions[pair.treated_id] == regions[pair.control_id]

    @pytest.mark.parametrize("width", [0, -0.2, float("nan"), float("inf")])
    def test_invalid_caliper_raises_before_any_work(self, make_table, example_rows, monkeypatch, width):
        calls = []
        monkeypatch.setattr(matcher_module, "stratify", lambda *a, **k: calls.append(a))

        with pytest.raises(InvalidCaliperError):
            Matcher(make_table(example_rows), MatcherConfig(caliper_width=width)).match()
        assert calls == []

    def test_invalid_caliper_is_value_error(self, make_table, example_rows):
        with pytest.raises(ValueError):
            Matcher(make_table(example_rows), MatcherConfig(caliper_width=0))

    def test_ratio_other_than_one_rejected(self, make_table, example_rows):
        with pytest.raises(ValueError, match="1:1"):
            Matcher(make_table(example_rows), MatcherConfig(ratio=2))

    def test_unknown_strategy_rejected(self, make_table, example_rows):
        with pytest.raises(ValueError, match="Unknown matching strategy"):
            Matcher(make_table(example_rows), MatcherConfig(strategy="optimal"))

    def test_random_strategy_requires_seed(self, make_table, example_rows):
        with pytest.raises(ValueError, match="random_seed"):
            Matcher(make_table(example_rows), MatcherConfig(strategy="greedy_random"))

    def test_undeclared_exact_key_rejected(self, make_table, example_rows):
        with pytest.raises(ValueError, match="not declared"):
            Matcher(make_table(example_rows), MatcherConfig(exact_keys=["blood_type"]))

    def test_exact_keys_must_match_the_table(self, logit_schema):
        """A table loaded with exact keys cannot be matched on other keys."""
        data = pd.DataFrame({
            "id": ["T1", "T2", "C1", "C2"],
            "treated": [1, 1, 0, 0],
            "logit": [0.1, 0.2, 0.15, 0.25],
            "region": ["north", None, "north", "south"],
            "smoker": [False, False, True, False],
        })
        table = SubjectTable.from_frame(data, logit_schema, exact_keys=["region"])

        with pytest.raises(ValueError, match="differ from the exact-match keys"):
            match_subjects(table, MatcherConfig(exact_keys=[], caliper_width=5.0))
        with pytest.raises(ValueError, match="differ from the exact-match keys"):
            match_subjects(table, MatcherConfig(exact_keys=["smoker"], caliper_width=5.0))

        # Without exact keys the same frame fails at load time
        with pytest.raises(ValueError, match="missing values"):
            SubjectTable.from_frame(data, logit_schema)

    def test_get_results_before_match(self, make_table, example_rows):
        with pytest.raises(ValueError, match="No matching has been performed"):
            Matcher(make_table(example_rows), MatcherConfig()).get_results()

    def test_missing_key_aborts_run(self, logit_schema):
        data = pd.DataFrame({
            "id": [1, 2, 3],
            "treated": [1, 0, 0],
            "logit": [0.1, 0.2, 0.3],
            "region": ["north", "north", None],
            "smoker": [False, False, True],
        })
        table = SubjectTable.from_frame(data, logit_schema, exact_keys=["region"])
        matcher = Matcher(table, MatcherConfig(exact_keys=["region"]))

        with pytest.raises(MissingKeyError):
            matcher.match()
        assert matcher.results is None

    def test_run_invariants(self, population):
        config = MatcherConfig(exact_keys=["region"], caliper_width=0.2)
        result = match_subjects(population, config)

        # Distances within the caliper
        assert all(p.distance <= result.threshold for p in result.pairs)

        # Without replacement
        control_counts = Counter(p.control_id for p in result.pairs)
        assert max(control_counts.values()) == 1
        assert len(set(result.matched_treated_ids)) == result.n_pairs

        # Per-stratum bound and totals
        per_stratum = Counter(p.stratum for p in result.pairs)
        for key, (n_treated, n_control) in result.strata_sizes.items():
            assert per_stratum.get(key, 0) <= min(n_treated, n_control)
        assert sum(per_stratum.values()) == result.n_pairs

        # Every subject accounted for exactly once
        accounted = list(result.matched_ids) + list(result.unmatched_treated) + list(result.unmatched_control)
        assert sorted(accounted) == sorted(population.ids)

        # Pair distance is the logit difference
        for pair in result.pairs[:20]:
            expected = abs(
                population.get(pair.treated_id).logit_propensity
                - population.get(pair.control_id).logit_propensity
            )
            assert pair.distance == pytest.approx(expected)

    def test_determinism(self, population_frame, population_schema):
        config = MatcherConfig(exact_keys=["region"], caliper_width=0.1)
        table = SubjectTable.from_frame(population_frame, population_schema, exact_keys=["region"])
        shuffled = SubjectTable.from_frame(
            population_frame.sample(frac=1.0, random_state=3),
            population_schema,
            exact_keys=["region"],
        )

        first = match_subjects(table, config)
        second = match_subjects(table, config)
        reordered = match_subjects(shuffled, config)

        assert first == second
        assert first == reordered

    @pytest.mark.parametrize("strategy", ["greedy", "greedy_random"])
    def test_parallel_matches_sequential(self, population, strategy):
        base = dict(exact_keys=["region"], caliper_width=0.2, strategy=strategy, random_seed=11)
        sequential = match_subjects(population, MatcherConfig(n_jobs=1, **base))
        parallel = match_subjects(population, MatcherConfig(n_jobs=4, **base))

        assert sequential == parallel

    def test_widening_caliper_never_loses_matches(self, population):
        sizes = []
        for width in [0.01, 0.05, 0.1, 0.2, 0.5, 1.0, 5.0]:
            config = MatcherConfig(exact_keys=["region"], caliper_width=width, calculate_balance=False)
            sizes.append(match_subjects(population, config).n_pairs)

        assert sizes == sorted(sizes)

    def test_empty_stratum_warning(self, make_table):
        table = make_table([
            ("T1", 1, 0.1, "north"),
            ("C1", 0, 0.1, "north"),
            ("T2", 1, 0.2, "east"),
        ], exact_keys=["region"])

        with pytest.warns(EmptyStratumWarning):
            result = match_subjects(table, MatcherConfig(exact_keys=["region"], caliper_width=1.0))

        assert result.empty_strata == (("east",),)
        assert "T2" in result.unmatched_treated
        assert result.n_pairs == 1

    def test_no_warning_when_all_strata_complete(self, make_table, example_rows):
        with warnings.catch_warnings():
            warnings.simplefilter("error", EmptyStratumWarning)
            match_subjects(make_table(example_rows), MatcherConfig(caliper_width=1.0))

    def test_cancelled_run_returns_nothing(self, population):
        cancel = threading.Event()
        cancel.set()
        matcher = Matcher(population, MatcherConfig(exact_keys=["region"]))

        with pytest.raises(MatchingAborted):
            matcher.match(cancel_event=cancel)
        assert matcher.results is None

    def test_balance_attached(self, population):
        result = match_subjects(population, MatcherConfig(exact_keys=["region"]))

        assert result.balance is not None
        assert list(result.balance.table["covariate"].unique()) == ["region", "smoker", "age"]

    def test_balance_can_be_skipped(self, population):
        result = match_subjects(population, MatcherConfig(exact_keys=["region"], calculate_balance=False))
        assert result.balance is None

    def test_summary_and_frames(self, make_table, example_rows):
        result = match_subjects(make_table(example_rows), MatcherConfig(caliper_width=0.3 / np.std([r[2] for r in example_rows])))

        summary = result.get_match_summary()
        assert summary["n_treatment_orig"] == 3
        assert summary["n_control_orig"] == 3
        assert summary["n_pairs"] == 2
        assert summary["match_ratio"] == 1.0

        matched = result.to_frame()
        assert list(matched.columns) == ["subject_id", "treatment", "pair_id", "distance", "stratum"]
        assert matched["pair_id"].tolist() == [1, 1, 2, 2]
        assert matched["subject_id"].tolist() == ["T1", "C1", "T2", "C2"]

        pairs = result.get_match_pairs()
        assert pairs["treatment_id"].tolist() == ["T1", "T2"]

        unmatched = result.unmatched_frame()
        assert unmatched["subject_id"].tolist() == ["T3", "C3"]
        assert unmatched["treatment"].tolist() == [1, 0]

    def test_no_pairs(self, make_table):
        table = make_table([("T1", 1, -3.0), ("C1", 0, 3.0)])
        result = match_subjects(table, MatcherConfig(caliper_width=0.1))

        assert result.n_pairs == 0
        assert result.realized_ratio == 0.0
        assert result.to_frame().empty

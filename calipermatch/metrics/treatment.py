"""
Treatment effect estimation on a matched set.

This module provides a simple effect-estimation collaborator for the
sensitivity runner: the mean outcome difference across matched pairs, with a
t-test for significance and an optional percentile bootstrap CI.
"""

from typing import Any, Dict, Mapping, Optional

import numpy as np
import pandas as pd
from scipy import stats

from calipermatch.datatypes import MatchResult
from calipermatch.subjects import SubjectTable
from calipermatch.utils.logging import get_logger

# Create a logger for this module
logger = get_logger(__name__)

EFFECT_METHODS = ("paired", "mean_difference")


def estimate_matched_effect(
    result: MatchResult,
    outcomes: pd.Series,
    method: str = "paired",
    bootstrap_iterations: int = 0,
    confidence_level: float = 0.95,
    random_state: Optional[int] = None,
) -> Dict[str, Any]:
    """Estimate the treatment effect on the treated from matched pairs.

    Args:
        result: Matching result
        outcomes: Outcome values indexed by subject id
        method: 'paired' (paired t-test on pair differences) or
            'mean_difference' (Welch's t-test between matched groups)
        bootstrap_iterations: Number of pair-level bootstrap resamples for
            the CI, 0 to skip
        confidence_level: Confidence level for the CI
        random_state: Random state for the bootstrap

    Returns:
        Dictionary with effect, std_error, t_statistic, p_value, ci_lower,
        ci_upper, n_pairs and method

    Raises:
        ValueError: On an unknown method, bad confidence level or outcomes
            missing for matched subjects
    """
    if method not in EFFECT_METHODS:
        raise ValueError(
            f"Unknown estimation method: {method}. Must be one of: {', '.join(EFFECT_METHODS)}"
        )
    if not 0 < confidence_level < 1:
        raise ValueError(
            f"Confidence level must be between 0 and 1, got {confidence_level}"
        )

    missing = [i for i in result.matched_ids if i not in outcomes.index]
    if missing:
        raise ValueError(f"Outcomes missing for matched subjects: {missing[:10]}")

    treat_vals = outcomes.loc[list(result.matched_treated_ids)].to_numpy(dtype=float)
    control_vals = outcomes.loc[list(result.matched_control_ids)].to_numpy(dtype=float)
    n_pairs = len(treat_vals)

    estimate = {
        "effect": np.nan,
        "std_error": np.nan,
        "t_statistic": np.nan,
        "p_value": np.nan,
        "ci_lower": np.nan,
        "ci_upper": np.nan,
        "n_pairs": n_pairs,
        "method": method,
    }
    if n_pairs < 2:
        logger.warning(f"Only {n_pairs} matched pairs; treatment effect cannot be estimated")
        return estimate

    differences = treat_vals - control_vals
    estimate["effect"] = float(differences.mean())

    if method == "paired":
        estimate["std_error"] = float(differences.std(ddof=1) / np.sqrt(n_pairs))
        t_stat, p_value = stats.ttest_rel(treat_vals, control_vals)
    else:
        estimate["std_error"] = float(np.sqrt(
            treat_vals.var(ddof=1) / n_pairs + control_vals.var(ddof=1) / n_pairs
        ))
        t_stat, p_value = stats.ttest_ind(treat_vals, control_vals, equal_var=False)  # Welch's t-test
    estimate["t_statistic"] = float(t_stat)
    estimate["p_value"] = float(p_value)

    if bootstrap_iterations > 0:
        ci_lower, ci_upper = _bootstrap_confidence_interval(
            differences, bootstrap_iterations, confidence_level, random_state
        )
        estimate["ci_lower"] = ci_lower
        estimate["ci_upper"] = ci_upper

    logger.debug(
        f"Estimated effect over {n_pairs} pairs: {estimate['effect']:.3f}, p={estimate['p_value']:.3f}"
    )
    return estimate


def _bootstrap_confidence_interval(
    differences: np.ndarray,
    bootstrap_iterations: int,
    confidence_level: float,
    random_state: Optional[int],
):
    """Percentile CI of the mean pair difference, resampling pairs."""
    rng = np.random.RandomState(random_state)
    n = len(differences)
    samples = rng.randint(0, n, size=(bootstrap_iterations, n))
    bootstrap_estimates = differences[samples].mean(axis=1)

    alpha = 1 - confidence_level
    ci_lower = np.percentile(bootstrap_estimates, alpha / 2 * 100)
    ci_upper = np.percentile(bootstrap_estimates, (1 - alpha / 2) * 100)
    return float(ci_lower), float(ci_upper)


class MatchedEffectEstimator:
    """Effect-estimation collaborator for run_sensitivity.

    Called as ``estimator(subjects, result)``; the subject table is accepted
    for interface compatibility with other estimators and is not used.
    """

    def __init__(
        self,
        outcomes: Mapping[Any, float],
        method: str = "paired",
        bootstrap_iterations: int = 0,
        confidence_level: float = 0.95,
        random_state: Optional[int] = None,
    ):
        if method not in EFFECT_METHODS:
            raise ValueError(
                f"Unknown estimation method: {method}. Must be one of: {', '.join(EFFECT_METHODS)}"
            )
        self.outcomes = outcomes if isinstance(outcomes, pd.Series) else pd.Series(dict(outcomes))
        self.method = method
        self.bootstrap_iterations = bootstrap_iterations
        self.confidence_level = confidence_level
        self.random_state = random_state

    def __call__(self, subjects: SubjectTable, result: MatchResult) -> Dict[str, Any]:
        return estimate_matched_effect(
            result,
            self.outcomes,
            method=self.method,
            bootstrap_iterations=self.bootstrap_iterations,
            confidence_level=self.confidence_level,
            random_state=self.random_state,
        )

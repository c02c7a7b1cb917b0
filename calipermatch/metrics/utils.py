"""
Utility functions for caliper-based propensity score matching.

This module provides helper functions shared by the matcher, the balance
diagnostics and the sensitivity runner.
"""

from typing import Iterable, Sequence

import numpy as np

from calipermatch.datatypes import Subject
from calipermatch.utils.logging import get_logger
from calipermatch.validation import validate_caliper_width

# Set up logger
logger = get_logger(__name__)


def pooled_logit_sd(subjects: Iterable[Subject]) -> float:
    """Standard deviation of logit propensity across the whole population.

    Computed over all subjects regardless of treatment or stratum, using the
    population formula (ddof=0).

    Args:
        subjects: All subjects entering the matching run

    Returns:
        Pooled standard deviation of the logit propensity scores

    Raises:
        ValueError: If no subjects are given
    """
    # Sorted so the result does not depend on input order
    logits = np.sort(np.array([s.logit_propensity for s in subjects], dtype=float))
    if logits.size == 0:
        raise ValueError("Cannot compute pooled SD of an empty population")

    sd = float(np.std(logits))
    if sd == 0:
        logger.warning("Pooled SD of logit propensity is 0; only identical scores can be matched")
    logger.debug(f"Pooled SD of logit propensity over {logits.size} subjects: {sd:.4f}")
    return sd


def caliper_threshold(caliper_width: float, pooled_sd: float) -> float:
    """Convert a caliper width in pooled-SD units to an absolute logit distance.

    Args:
        caliper_width: Caliper in standard deviations of the pooled logit propensity
        pooled_sd: Pooled standard deviation of the logit propensity

    Returns:
        Maximum allowed |logit_t - logit_c| for a matched pair

    Raises:
        InvalidCaliperError: If the caliper width is non-positive or non-finite
    """
    validate_caliper_width(caliper_width)
    threshold = caliper_width * pooled_sd
    logger.info(f"Caliper: {caliper_width} x SD of logit propensity ({pooled_sd:.4f}) = {threshold:.4f}")
    return threshold


def standardized_difference(
    treat_vals: Sequence[float], control_vals: Sequence[float]
) -> float:
    """Signed standardized mean difference between two groups.

    Uses the pooled standard deviation sqrt((s_t^2 + s_c^2) / 2) with sample
    variances. A group with fewer than two members contributes variance 0.

    Args:
        treat_vals: Values for the treated group
        control_vals: Values for the control group

    Returns:
        (mean_t - mean_c) / pooled_sd; 0 when the means are equal, +/-inf
        when the pooled SD is 0 but the means differ, NaN for an empty group
    """
    treat_vals = np.asarray(treat_vals, dtype=float)
    control_vals = np.asarray(control_vals, dtype=float)
    if treat_vals.size == 0 or control_vals.size == 0:
        return np.nan

    treat_mean = treat_vals.mean()
    control_mean = control_vals.mean()
    diff = treat_mean - control_mean
    if diff == 0:
        return 0.0

    treat_var = treat_vals.var(ddof=1) if treat_vals.size > 1 else 0.0
    control_var = control_vals.var(ddof=1) if control_vals.size > 1 else 0.0
    pooled_std = np.sqrt((treat_var + control_var) / 2)

    if pooled_std == 0:
        return np.inf if diff > 0 else -np.inf

    return float(diff / pooled_std)

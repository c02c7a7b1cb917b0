"""
Caliper sensitivity sweeps.

Re-runs stratification and matching from scratch for every caliper width
(and strategy) of a grid. Runs share only the read-only subject table, so
no control used in one run can affect another, and runs may execute
concurrently without changing the result.
"""

import dataclasses
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

from calipermatch.datatypes import MatcherConfig, MatchResult, SensitivitySweepResult, SweepEntry
from calipermatch.exceptions import MatchingAborted
from calipermatch.matcher import match_subjects
from calipermatch.subjects import SubjectTable
from calipermatch.utils.logging import get_logger
from calipermatch.validation import validate_caliper_grid, validate_matcher_config

logger = get_logger(__name__)

EffectEstimator = Callable[[SubjectTable, MatchResult], Mapping[str, Any]]


def run_sensitivity(
    subjects: SubjectTable,
    config: MatcherConfig,
    caliper_widths: Sequence[float],
    strategies: Optional[Sequence[str]] = None,
    effect_estimator: Optional[EffectEstimator] = None,
    n_jobs: int = 1,
    cancel_event: Optional[threading.Event] = None,
) -> SensitivitySweepResult:
    """Match the population once per caliper width (and strategy).

    The whole grid is validated before the first run. The sweep does not
    judge robustness; it only collects comparable results.

    Args:
        subjects: Subject table shared read-only by all runs
        config: Base configuration; caliper_width and strategy are replaced
            per run
        caliper_widths: Widths in pooled logit-SD units, in report order
        strategies: Strategy names to sweep; defaults to config.strategy
        effect_estimator: Optional callable (subjects, result) -> mapping
            with at least 'effect' and 'p_value'
        n_jobs: Number of runs executed concurrently
        cancel_event: Optional event checked before each run and between strata

    Returns:
        SensitivitySweepResult ordered by strategy, then by caliper width as given

    Raises:
        InvalidCaliperError: If any width is invalid
        ValueError: If any other part of the grid is invalid
        MatchingAborted: If cancel_event is set before the sweep completes
    """
    caliper_widths = list(caliper_widths)
    strategies = [config.strategy] if strategies is None else list(strategies)
    if not strategies:
        raise ValueError("strategies must contain at least one value")
    if len(set(strategies)) != len(strategies):
        raise ValueError(f"strategies contains duplicate values: {strategies}")
    if not isinstance(n_jobs, int) or n_jobs < 1:
        raise ValueError(f"n_jobs must be a positive integer, got {n_jobs}")

    validate_caliper_grid(caliper_widths)
    grid = [(s, w) for s in strategies for w in caliper_widths]
    configs = [dataclasses.replace(config, strategy=s, caliper_width=w) for s, w in grid]
    for run_config in configs:
        validate_matcher_config(
            run_config,
            available_keys=subjects.schema.covariate_names,
            table_keys=subjects.exact_key_names,
        )

    logger.info(
        f"Running sensitivity sweep over {len(caliper_widths)} caliper widths "
        f"and {len(strategies)} strategies"
    )

    def run_one(run_config: MatcherConfig) -> SweepEntry:
        if cancel_event is not None and cancel_event.is_set():
            raise MatchingAborted("Sensitivity sweep was cancelled")
        result = match_subjects(subjects, run_config, cancel_event=cancel_event)
        effect = None
        if effect_estimator is not None:
            effect = dict(effect_estimator(subjects, result))
        logger.info(
            f"Caliper {run_config.caliper_width} ({run_config.strategy}): "
            f"{result.n_pairs} pairs"
        )
        return SweepEntry(
            caliper_width=run_config.caliper_width,
            strategy=run_config.strategy,
            result=result,
            effect=effect,
        )

    if n_jobs > 1 and len(configs) > 1:
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            entries: Tuple[SweepEntry, ...] = tuple(executor.map(run_one, configs))
    else:
        entries = tuple(run_one(c) for c in configs)

    return SensitivitySweepResult(entries=entries)

"""
Matcher implementation for calipermatch.

This module provides the main Matcher class: it validates the configuration,
computes the pooled logit-propensity SD and the caliper threshold once,
stratifies subjects on the exact-match keys, matches each stratum
independently and assembles an immutable MatchResult.
"""

import dataclasses
import threading
import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from calipermatch.datatypes import MatcherConfig, MatchResult, Stratum
from calipermatch.exceptions import EmptyStratumWarning, MatchingAborted
from calipermatch.matching.greedy import StratumMatch
from calipermatch.matching.strategies import get_strategy
from calipermatch.matching.stratify import stratify
from calipermatch.metrics.balance import calculate_balance
from calipermatch.metrics.utils import caliper_threshold, pooled_logit_sd
from calipermatch.subjects import SubjectTable
from calipermatch.utils.logging import get_logger
from calipermatch.validation import validate_matcher_config

# Create a logger for this module
logger = get_logger(__name__)


class Matcher:
    """Stratified caliper nearest-neighbor matcher."""

    def __init__(self, subjects: SubjectTable, config: MatcherConfig):
        """Initialize matcher with subjects and configuration.

        Args:
            subjects: Subject table to match
            config: Configuration settings

        Raises:
            InvalidCaliperError: If the caliper width is invalid
            ValueError: If the configuration or subject table is invalid
        """
        validate_matcher_config(
            config,
            available_keys=subjects.schema.covariate_names,
            table_keys=subjects.exact_key_names,
        )
        if len(subjects) == 0:
            raise ValueError("Cannot match an empty subject table")

        self.subjects = subjects
        self.config = config
        self.results: Optional[MatchResult] = None

        logger.info(f"Initialized Matcher with {len(subjects)} subjects")
        logger.debug(
            f"Treatment counts: {len(subjects.treated)} treated, {len(subjects.controls)} control"
        )

    def match(self, cancel_event: Optional[threading.Event] = None) -> "Matcher":
        """Perform matching according to configuration.

        Either the whole population is matched or an exception is raised;
        no partial result is ever stored.

        Args:
            cancel_event: Optional event checked between strata; when set the
                run stops with MatchingAborted

        Returns:
            Self, for method chaining
        """
        config = self.config
        strategy = get_strategy(config.strategy)
        logger.info(f"Starting matching with strategy: {config.strategy}")

        # Step 1: caliper from the pooled SD over the whole population
        pooled_sd = pooled_logit_sd(self.subjects)
        threshold = caliper_threshold(config.caliper_width, pooled_sd)

        # Step 2: exact-match strata
        strata = stratify(self.subjects, config.exact_keys)
        rngs = _stratum_random_states(config.random_seed, len(strata))

        # Step 3: match each stratum independently
        def match_stratum(item: Tuple[Stratum, Optional[np.random.RandomState]]) -> StratumMatch:
            stratum, rng = item
            _check_cancelled(cancel_event)
            return strategy(stratum, threshold, rng)

        tasks = list(zip(strata.values(), rngs))
        if config.n_jobs > 1 and len(tasks) > 1:
            logger.debug(f"Matching {len(tasks)} strata on {config.n_jobs} threads")
            with ThreadPoolExecutor(max_workers=config.n_jobs) as executor:
                outputs = list(executor.map(match_stratum, tasks))
        else:
            outputs = [match_stratum(task) for task in tasks]

        # Step 4: assemble in stratum order
        result = self._assemble(strata, outputs, pooled_sd, threshold)

        # Step 5: balance diagnostics
        if config.calculate_balance:
            logger.info("Calculating balance statistics")
            balance = calculate_balance(
                self.subjects, result, covariates=config.balance_covariates
            )
            result = dataclasses.replace(result, balance=balance)

        self.results = result
        return self

    def get_results(self) -> MatchResult:
        """Get the results of matching.

        Raises:
            ValueError: If no matching has been performed yet
        """
        if self.results is None:
            raise ValueError("No matching has been performed yet.")
        return self.results

    def save_results(self, directory: str, prefix: str = "") -> "Matcher":
        """Save the matched set, unmatched ids and balance table as CSV files.

        Returns:
            Self, for method chaining
        """
        from calipermatch.reporting import export_tables

        export_tables(self.get_results(), output_dir=directory, prefix=prefix)
        return self

    def _assemble(
        self,
        strata: Dict[Tuple[Any, ...], Stratum],
        outputs: List[StratumMatch],
        pooled_sd: float,
        threshold: float,
    ) -> MatchResult:
        pairs = []
        unmatched_treated = []
        unmatched_control = []
        empty_strata = []

        for (key, stratum), output in zip(strata.items(), outputs):
            if stratum.has_empty_side:
                empty_strata.append(key)
                message = (
                    f"Stratum {key} has {len(stratum.treated)} treated and "
                    f"{len(stratum.control)} control subjects; all are left unmatched"
                )
                logger.warning(message)
                warnings.warn(message, EmptyStratumWarning, stacklevel=3)
            pairs.extend(output.pairs)
            unmatched_treated.extend(output.unmatched_treated)
            unmatched_control.extend(output.unmatched_control)

        control_ids = [p.control_id for p in pairs]
        if len(set(control_ids)) != len(control_ids):
            raise RuntimeError("A control subject was matched more than once")

        result = MatchResult(
            pairs=tuple(pairs),
            unmatched_treated=tuple(unmatched_treated),
            unmatched_control=tuple(unmatched_control),
            caliper_width=float(self.config.caliper_width),
            pooled_sd=pooled_sd,
            threshold=threshold,
            strategy=self.config.strategy,
            strata_sizes={k: (len(s.treated), len(s.control)) for k, s in strata.items()},
            empty_strata=tuple(empty_strata),
        )

        summary = result.get_match_summary()
        logger.info(
            f"Matching complete: {summary['n_treatment_matched']}/{summary['n_treatment_orig']} "
            f"treated matched to {summary['n_control_matched']} controls across "
            f"{summary['n_strata']} strata"
        )
        if pairs:
            distances = [p.distance for p in pairs]
            logger.debug(
                f"Match distances - min: {min(distances):.4f}, "
                f"mean: {np.mean(distances):.4f}, max: {max(distances):.4f}"
            )
        else:
            logger.warning("No matching pairs found")
        return result


def match_subjects(
    subjects: SubjectTable,
    config: MatcherConfig,
    cancel_event: Optional[threading.Event] = None,
) -> MatchResult:
    """Run one matching pass and return its result."""
    return Matcher(subjects, config).match(cancel_event=cancel_event).get_results()


def _stratum_random_states(
    random_seed: Optional[int], n_strata: int
) -> List[Optional[np.random.RandomState]]:
    # One independent stream per stratum position, so results do not depend
    # on which thread matches which stratum
    if random_seed is None:
        return [None] * n_strata
    children = np.random.SeedSequence(random_seed).spawn(n_strata)
    return [np.random.RandomState(int(child.generate_state(1)[0])) for child in children]


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise MatchingAborted("Matching run was cancelled")

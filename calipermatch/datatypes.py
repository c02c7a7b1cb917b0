"""
Datatypes for calipermatch.

This module defines the data structures used by the calipermatch package:
the subject record, strata, matched pairs, the matching configuration and
the immutable result containers produced by matching, balance diagnostics
and sensitivity sweeps.
"""

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy.special import expit, logit

from calipermatch.exceptions import InvalidPropensityError


@dataclass(frozen=True)
class Subject:
    """A single subject of the population.

    Attributes:
        id: Unique subject identifier (str or int)
        treatment: Treatment indicator
        exact_keys: Values of the exact-match covariates, in the key order the
            subject table was loaded with; this tuple is the stratum key
        covariates: Covariate name to value, used for balance reporting
        propensity: Externally estimated probability of treatment, in (0, 1)
        logit_propensity: log(p / (1 - p)); derived from propensity unless
            given. A given logit is authoritative: use from_logit when the
            scores arrive on the logit scale, since propensities of large
            logits round to 0 or 1 in floating point.
    """
    id: Any
    treatment: bool
    exact_keys: Tuple[Any, ...]
    covariates: Mapping[str, Any]
    propensity: float
    logit_propensity: Optional[float] = None

    def __post_init__(self):
        p = self.propensity
        if self.logit_propensity is None:
            if not _is_real(p) or not math.isfinite(p) or not 0 < p < 1:
                raise InvalidPropensityError(
                    f"Propensity score for subject {self.id!r} must be finite and strictly "
                    f"between 0 and 1, got {p!r}",
                    subject_id=self.id,
                )
            log_odds = float(logit(p))
        else:
            log_odds = self.logit_propensity
            if not _is_real(log_odds) or not math.isfinite(log_odds):
                raise InvalidPropensityError(
                    f"Logit propensity for subject {self.id!r} must be finite, got {log_odds!r}",
                    subject_id=self.id,
                )
            # Saturated propensities are allowed here, the logit carries the score
            if not _is_real(p) or not 0 <= p <= 1:
                raise InvalidPropensityError(
                    f"Propensity score for subject {self.id!r} must be between 0 and 1, "
                    f"got {p!r}",
                    subject_id=self.id,
                )
        object.__setattr__(self, "treatment", bool(self.treatment))
        object.__setattr__(self, "exact_keys", tuple(self.exact_keys))
        object.__setattr__(self, "covariates", MappingProxyType(dict(self.covariates)))
        object.__setattr__(self, "propensity", float(p))
        object.__setattr__(self, "logit_propensity", float(log_odds))

    @classmethod
    def from_logit(
        cls,
        id: Any,
        treatment: bool,
        exact_keys: Tuple[Any, ...],
        covariates: Mapping[str, Any],
        logit_propensity: float,
    ) -> "Subject":
        """Build a subject whose score is given on the logit scale."""
        propensity = float(expit(logit_propensity)) if _is_real(logit_propensity) else logit_propensity
        return cls(
            id=id,
            treatment=treatment,
            exact_keys=exact_keys,
            covariates=covariates,
            propensity=propensity,
            logit_propensity=logit_propensity,
        )


def _is_real(value) -> bool:
    return isinstance(value, (int, float, np.floating, np.integer)) and not isinstance(value, bool)


@dataclass(frozen=True)
class Stratum:
    """Subjects sharing identical exact-match key values."""
    key: Tuple[Any, ...]
    treated: Tuple[Subject, ...]
    control: Tuple[Subject, ...]

    @property
    def size(self) -> int:
        return len(self.treated) + len(self.control)

    @property
    def has_empty_side(self) -> bool:
        return not self.treated or not self.control


@dataclass(frozen=True)
class MatchedPair:
    """A treated subject paired with a control subject."""
    treated_id: Any
    control_id: Any
    distance: float
    stratum: Tuple[Any, ...] = ()


@dataclass
class MatcherConfig:
    """Configuration for a single matching run.

    The caliper is expressed in standard deviations of the pooled logit
    propensity across the whole population.
    """
    # Stratification
    exact_keys: List[str] = field(default_factory=list)

    # Matching parameters
    caliper_width: float = 0.2
    ratio: int = 1
    random_seed: Optional[int] = None
    strategy: str = "greedy"  # "greedy", "greedy_largest", "greedy_smallest", "greedy_random"
    n_jobs: int = 1

    # Balance parameters
    calculate_balance: bool = True
    balance_covariates: Optional[List[str]] = None  # display order, None = schema order


@dataclass(frozen=True)
class BalanceReport:
    """Standardized mean differences before and after matching.

    One row per covariate (numeric or boolean) or covariate level
    (categorical), in the caller's covariate order.
    """
    table: pd.DataFrame = field(compare=False)
    n_treated_before: int = 0
    n_control_before: int = 0
    n_treated_after: int = 0
    n_control_after: int = 0

    def get_table(self) -> pd.DataFrame:
        return self.table.copy()

    def get_smd(self, variable: str, when: str = "after") -> float:
        """Look up the SMD for a row by its variable label (e.g. 'region=north')."""
        if when not in ("before", "after"):
            raise ValueError(f"when must be 'before' or 'after', got {when}")
        rows = self.table.loc[self.table["variable"] == variable, f"smd_{when}"]
        if rows.empty:
            raise KeyError(variable)
        return float(rows.iloc[0])

    def summary(self, threshold: float = 0.1) -> Dict[str, float]:
        """Summarize absolute SMDs across all rows.

        Args:
            threshold: Absolute SMD below which a row counts as balanced

        Returns:
            Dictionary with mean/max absolute SMD and proportion balanced,
            before and after matching
        """
        before = self.table["smd_before"].abs()
        after = self.table["smd_after"].abs()
        has_after = not after.isna().all()
        return {
            "n_variables": len(self.table),
            "mean_abs_smd_before": before.mean(),
            "max_abs_smd_before": before.max(),
            "prop_balanced_before": (before < threshold).mean() if len(before) else np.nan,
            "mean_abs_smd_after": after.mean() if has_after else np.nan,
            "max_abs_smd_after": after.max() if has_after else np.nan,
            "prop_balanced_after": (after < threshold).mean() if has_after else np.nan,
        }


@dataclass(frozen=True)
class MatchResult:
    """Container for the outcome of one matching run.

    Attributes:
        pairs: Matched pairs, ordered by stratum key then processing order
        unmatched_treated: Ids of treated subjects left without a control
        unmatched_control: Ids of control subjects never used
        caliper_width: Caliper in pooled logit-SD units
        pooled_sd: Population SD of logit propensity used for the caliper
        threshold: Absolute logit-distance bound (caliper_width * pooled_sd)
        strategy: Name of the matching strategy
        strata_sizes: Stratum key to (n_treated, n_control)
        empty_strata: Keys of strata missing treated or control subjects
        balance: Balance report, when requested
    """
    pairs: Tuple[MatchedPair, ...]
    unmatched_treated: Tuple[Any, ...]
    unmatched_control: Tuple[Any, ...]
    caliper_width: float
    pooled_sd: float
    threshold: float
    strategy: str = "greedy"
    strata_sizes: Mapping[Tuple[Any, ...], Tuple[int, int]] = field(default_factory=dict)
    empty_strata: Tuple[Tuple[Any, ...], ...] = ()
    balance: Optional[BalanceReport] = field(default=None, compare=False)

    def __iter__(self) -> Iterator[MatchedPair]:
        return iter(self.pairs)

    def __len__(self) -> int:
        return len(self.pairs)

    @property
    def n_pairs(self) -> int:
        return len(self.pairs)

    @property
    def matched_treated_ids(self) -> Tuple[Any, ...]:
        return tuple(p.treated_id for p in self.pairs)

    @property
    def matched_control_ids(self) -> Tuple[Any, ...]:
        return tuple(p.control_id for p in self.pairs)

    @property
    def matched_ids(self) -> Tuple[Any, ...]:
        return self.matched_treated_ids + self.matched_control_ids

    @property
    def realized_ratio(self) -> float:
        """Matched controls per matched treated subject."""
        n_treated = len(set(self.matched_treated_ids))
        if n_treated == 0:
            return 0.0
        return len(set(self.matched_control_ids)) / n_treated

    def get_match_summary(self) -> Dict[str, Union[int, float]]:
        """Get summary statistics about the matching.

        Returns:
            Dictionary with match summary statistics
        """
        n_treatment_matched = len(set(self.matched_treated_ids))
        n_control_matched = len(set(self.matched_control_ids))
        return {
            "n_treatment_orig": n_treatment_matched + len(self.unmatched_treated),
            "n_control_orig": n_control_matched + len(self.unmatched_control),
            "n_treatment_matched": n_treatment_matched,
            "n_control_matched": n_control_matched,
            "n_pairs": len(self.pairs),
            "match_ratio": self.realized_ratio,
            "n_strata": len(self.strata_sizes),
            "n_empty_strata": len(self.empty_strata),
        }

    def get_match_pairs(self) -> pd.DataFrame:
        """Get matched pairs as a DataFrame with one row per pair.

        Returns:
            DataFrame with columns 'pair_id', 'treatment_id', 'control_id', 'distance'
        """
        rows = [
            {
                "pair_id": i + 1,
                "treatment_id": pair.treated_id,
                "control_id": pair.control_id,
                "distance": pair.distance,
            }
            for i, pair in enumerate(self.pairs)
        ]
        return pd.DataFrame(rows, columns=["pair_id", "treatment_id", "control_id", "distance"])

    def to_frame(self) -> pd.DataFrame:
        """Get the matched set with one row per matched subject.

        Returns:
            DataFrame with columns 'subject_id', 'treatment', 'pair_id',
            'distance' and 'stratum'
        """
        rows = []
        for i, pair in enumerate(self.pairs):
            for subject_id, treatment in ((pair.treated_id, 1), (pair.control_id, 0)):
                rows.append({
                    "subject_id": subject_id,
                    "treatment": treatment,
                    "pair_id": i + 1,
                    "distance": pair.distance,
                    "stratum": _stratum_label(pair.stratum),
                })
        return pd.DataFrame(rows, columns=["subject_id", "treatment", "pair_id", "distance", "stratum"])

    def unmatched_frame(self) -> pd.DataFrame:
        """Get the residual list of unmatched subject ids."""
        rows = [{"subject_id": s, "treatment": 1} for s in self.unmatched_treated]
        rows += [{"subject_id": s, "treatment": 0} for s in self.unmatched_control]
        return pd.DataFrame(rows, columns=["subject_id", "treatment"])


@dataclass(frozen=True)
class SweepEntry:
    """One parameter setting of a sensitivity sweep and its outcome."""
    caliper_width: float
    strategy: str
    result: MatchResult
    effect: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class SensitivitySweepResult:
    """Ordered sweep entries keyed by (strategy, caliper width)."""
    entries: Tuple[SweepEntry, ...]

    def __iter__(self) -> Iterator[SweepEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> SweepEntry:
        return self.entries[index]

    def get(self, caliper_width: float, strategy: Optional[str] = None) -> SweepEntry:
        """Return the entry for a caliper width (and strategy, if several were swept)."""
        matches = [
            e for e in self.entries
            if e.caliper_width == caliper_width and (strategy is None or e.strategy == strategy)
        ]
        if not matches:
            raise KeyError((caliper_width, strategy))
        if len(matches) > 1:
            raise KeyError(
                f"Caliper width {caliper_width} was swept under several strategies; "
                f"pass one of {[e.strategy for e in matches]}"
            )
        return matches[0]

    def to_frame(self) -> pd.DataFrame:
        """Sensitivity report with one row per swept parameter value."""
        columns = [
            "strategy", "caliper_width", "threshold", "n_treated_matched",
            "n_control_matched", "n_pairs", "matched_sample_size",
            "realized_ratio", "max_abs_smd_after", "effect", "p_value",
        ]
        rows = []
        for entry in self.entries:
            summary = entry.result.get_match_summary()
            balance = entry.result.balance
            effect = entry.effect or {}
            rows.append({
                "strategy": entry.strategy,
                "caliper_width": entry.caliper_width,
                "threshold": entry.result.threshold,
                "n_treated_matched": summary["n_treatment_matched"],
                "n_control_matched": summary["n_control_matched"],
                "n_pairs": summary["n_pairs"],
                "matched_sample_size": summary["n_treatment_matched"] + summary["n_control_matched"],
                "realized_ratio": summary["match_ratio"],
                "max_abs_smd_after": balance.summary()["max_abs_smd_after"] if balance is not None else np.nan,
                "effect": effect.get("effect", np.nan),
                "p_value": effect.get("p_value", np.nan),
            })
        return pd.DataFrame(rows, columns=columns)


def _stratum_label(key: Tuple[Any, ...]) -> str:
    return "|".join(str(v) for v in key)

"""calipermatch: stratified caliper propensity score matching.

This package pairs treated and control subjects one-to-one within exact-match
strata, bounded by a caliper on the logit propensity score, and reports
covariate balance and caliper sensitivity.
"""

__version__ = "0.1.0"

from calipermatch.utils.logging import configure_logging

# Configure default logging (INFO level, to stdout)
logger = configure_logging()

# Import and expose key classes and functions
from calipermatch.datatypes import (
    BalanceReport,
    MatchedPair,
    MatcherConfig,
    MatchResult,
    SensitivitySweepResult,
    Stratum,
    Subject,
    SweepEntry,
)
from calipermatch.exceptions import (
    EmptyStratumWarning,
    InvalidCaliperError,
    InvalidPropensityError,
    MatchingAborted,
    MatchingError,
    MissingKeyError,
    UnknownLevelError,
)
from calipermatch.matcher import Matcher, match_subjects
from calipermatch.matching.strategies import available_strategies, register_strategy
from calipermatch.matching.stratify import stratify
from calipermatch.metrics.balance import calculate_balance
from calipermatch.metrics.treatment import MatchedEffectEstimator, estimate_matched_effect
from calipermatch.reporting import export_tables
from calipermatch.sensitivity import run_sensitivity
from calipermatch.subjects import CovariateSpec, SubjectSchema, SubjectTable

__all__ = [
    "BalanceReport",
    "CovariateSpec",
    "EmptyStratumWarning",
    "InvalidCaliperError",
    "InvalidPropensityError",
    "MatchResult",
    "MatchedEffectEstimator",
    "MatchedPair",
    "Matcher",
    "MatcherConfig",
    "MatchingAborted",
    "MatchingError",
    "MissingKeyError",
    "SensitivitySweepResult",
    "Stratum",
    "Subject",
    "SubjectSchema",
    "SubjectTable",
    "SweepEntry",
    "UnknownLevelError",
    "available_strategies",
    "calculate_balance",
    "configure_logging",
    "estimate_matched_effect",
    "export_tables",
    "match_subjects",
    "register_strategy",
    "run_sensitivity",
    "stratify",
]

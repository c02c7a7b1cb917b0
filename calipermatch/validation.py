"""Data validation utilities for calipermatch.

This module provides centralized validation functions to ensure input data
and configuration meet the requirements for matching. Every check fails fast:
nothing is dropped or coerced silently.
"""

import math
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from calipermatch.exceptions import InvalidCaliperError, InvalidPropensityError
from calipermatch.utils.logging import get_logger

# Create a logger for this module
logger = get_logger(__name__)


def validate_subject_ids(ids: pd.Series) -> None:
    """Validate that subject ids have an acceptable type and are unique.

    Args:
        ids: Subject identifiers

    Raises:
        TypeError: If ids have mixed types or unsupported types
        ValueError: If ids are missing or not unique
    """
    if ids.empty:
        return

    if ids.isna().any():
        raise ValueError(f"Subject id column '{ids.name}' contains missing values")

    id_types = set(type(v) for v in ids.tolist())

    # Check if there are mixed types
    if len(id_types) > 1:
        raise TypeError(
            f"Subject ids have mixed types: {id_types}. All ids must be of the same type."
        )

    id_type = next(iter(id_types))
    if not issubclass(id_type, (str, int, np.integer)) or issubclass(id_type, bool):
        raise TypeError(
            f"Subject ids have unsupported type: {id_type}. Supported types are str and int."
        )

    if not ids.is_unique:
        duplicates = ids[ids.duplicated()].unique().tolist()
        raise ValueError(f"Subject ids must be unique, duplicated: {duplicates[:10]}")


def validate_treatment_column(data: pd.DataFrame, treatment_col: str) -> None:
    """Validate that treatment column contains only binary values (0/1).

    Args:
        data: DataFrame containing the data
        treatment_col: Name of the treatment indicator column

    Raises:
        ValueError: If treatment column validation fails
    """
    values = data[treatment_col]
    if values.isna().any():
        raise ValueError(
            f"Treatment column '{treatment_col}' contains {values.isna().sum()} missing values"
        )

    treatment_values = values.unique()
    if not set(treatment_values).issubset({0, 1}):
        raise ValueError(
            f"Treatment column '{treatment_col}' must contain only binary values (0/1), "
            f"found: {sorted(treatment_values, key=str)}"
        )

    logger.debug(
        f"Treatment column '{treatment_col}': {int((values == 1).sum())} treated, "
        f"{int((values == 0).sum())} control"
    )


def validate_columns_exist(data: pd.DataFrame, columns: Iterable[str]) -> None:
    """Validate that all required columns exist.

    Raises:
        ValueError: If any column is absent
    """
    missing = [col for col in columns if col not in data.columns]
    if missing:
        raise ValueError(f"Columns not found in data: {missing}")


def validate_numeric_columns(data: pd.DataFrame, columns: List[str]) -> None:
    """Validate that columns contain only numeric data.

    Args:
        data: DataFrame containing the data
        columns: List of column names to check

    Raises:
        ValueError: If any column contains non-numeric data
    """
    for col in columns:
        if not np.issubdtype(data[col].dtype, np.number):
            raise ValueError(
                f"Column '{col}' must contain only numeric values, "
                f"but has dtype {data[col].dtype}"
            )


def validate_no_missing_values(data: pd.DataFrame, columns: List[str]) -> None:
    """Validate that columns have no missing values.

    Args:
        data: DataFrame containing the data
        columns: List of column names to check

    Raises:
        ValueError: If any column contains missing values
    """
    for col in columns:
        if data[col].isna().any():
            n_missing = data[col].isna().sum()
            raise ValueError(
                f"Column '{col}' contains {n_missing} missing values. "
                f"Please handle missing values before matching."
            )


def invalid_propensity_mask(scores: pd.Series) -> pd.Series:
    """Boolean mask of scores that are missing, non-finite or outside (0, 1)."""
    values = pd.to_numeric(scores, errors="coerce").astype(float)
    return ~(np.isfinite(values) & (values > 0) & (values < 1))


def validate_propensity_scores(scores: pd.Series, ids: Optional[pd.Series] = None) -> None:
    """Validate that propensity scores are finite and strictly inside (0, 1).

    Args:
        scores: Propensity scores
        ids: Subject ids aligned with scores, used in the error message

    Raises:
        InvalidPropensityError: On the first invalid score
    """
    bad = invalid_propensity_mask(scores)
    if bad.any():
        position = int(np.flatnonzero(bad.to_numpy())[0])
        subject_id = ids.iloc[position] if ids is not None else scores.index[position]
        raise InvalidPropensityError(
            f"Propensity score for subject {subject_id!r} must be finite and strictly "
            f"between 0 and 1, got {scores.iloc[position]!r} "
            f"({int(bad.sum())} invalid scores in total)",
            subject_id=subject_id,
        )


def validate_logit_scores(logits: pd.Series, ids: Optional[pd.Series] = None) -> None:
    """Validate that logit propensity scores are finite.

    Raises:
        InvalidPropensityError: On the first missing or infinite logit
    """
    bad = ~np.isfinite(pd.to_numeric(logits, errors="coerce").astype(float))
    if bad.any():
        position = int(np.flatnonzero(bad.to_numpy())[0])
        subject_id = ids.iloc[position] if ids is not None else logits.index[position]
        raise InvalidPropensityError(
            f"Logit propensity for subject {subject_id!r} must be finite, "
            f"got {logits.iloc[position]!r} ({int(bad.sum())} invalid scores in total)",
            subject_id=subject_id,
        )


def validate_caliper_width(caliper_width) -> None:
    """Validate a caliper width in pooled-SD units.

    Raises:
        InvalidCaliperError: If the width is not a positive finite number
    """
    if isinstance(caliper_width, bool) or not isinstance(caliper_width, (int, float, np.integer, np.floating)):
        raise InvalidCaliperError(f"caliper_width must be a number, got {caliper_width!r}")
    if not math.isfinite(caliper_width) or caliper_width <= 0:
        raise InvalidCaliperError(
            f"caliper_width must be positive and finite, got {caliper_width}"
        )


def validate_caliper_grid(caliper_widths: Sequence[float]) -> None:
    """Validate every width of a sensitivity grid before any run starts.

    Raises:
        ValueError: If the grid is empty or has duplicate widths
        InvalidCaliperError: If any width is invalid
    """
    if len(caliper_widths) == 0:
        raise ValueError("caliper_widths must contain at least one value")
    for width in caliper_widths:
        validate_caliper_width(width)
    if len(set(caliper_widths)) != len(caliper_widths):
        raise ValueError(f"caliper_widths contains duplicate values: {list(caliper_widths)}")


def validate_matcher_config(
    config,
    available_keys: Optional[Sequence[str]] = None,
    table_keys: Optional[Sequence[str]] = None,
) -> None:
    """Validate MatcherConfig for required fields and proper values.

    Args:
        config: MatcherConfig object to validate
        available_keys: Covariate names that exact-match keys may refer to
        table_keys: Exact-match keys the subject table was loaded with; the
            configured keys must equal them, in order

    Raises:
        InvalidCaliperError: If the caliper width is invalid
        ValueError: If configuration fails any other check
    """
    # Imported here: the strategy registry imports the matching modules
    from calipermatch.matching.strategies import get_strategy

    logger.debug("Validating matcher configuration")

    validate_caliper_width(config.caliper_width)

    exact_keys = list(config.exact_keys)
    if len(set(exact_keys)) != len(exact_keys):
        raise ValueError(f"exact_keys contains duplicate names: {exact_keys}")
    if available_keys is not None:
        unknown = [k for k in exact_keys if k not in available_keys]
        if unknown:
            raise ValueError(f"Exact-match keys not declared in the subject schema: {unknown}")
    if table_keys is not None and tuple(exact_keys) != tuple(table_keys):
        raise ValueError(
            f"exact_keys {exact_keys} differ from the exact-match keys the subject "
            f"table was loaded with: {list(table_keys)}"
        )

    if config.ratio != 1:
        raise ValueError(f"Only 1:1 matching is supported, got ratio {config.ratio}")

    # Raises ValueError for unknown names
    get_strategy(config.strategy)
    if config.strategy == "greedy_random" and config.random_seed is None:
        raise ValueError("strategy 'greedy_random' requires random_seed")

    if not isinstance(config.n_jobs, int) or config.n_jobs < 1:
        raise ValueError(f"n_jobs must be a positive integer, got {config.n_jobs}")

    logger.debug("Matcher configuration validation successful")

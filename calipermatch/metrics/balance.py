"""
Balance assessment metrics for calipermatch.

This module computes standardized mean differences between treated and
control subjects for the full population before matching and for the
matched set after matching. Categorical covariates are expanded into one
binary indicator per declared level.
"""

from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from calipermatch.datatypes import BalanceReport, MatchResult
from calipermatch.metrics.utils import standardized_difference
from calipermatch.subjects import CovariateSpec, SubjectTable
from calipermatch.utils.logging import get_logger

# Create a logger for this module
logger = get_logger(__name__)

BALANCE_COLUMNS = ["covariate", "level", "variable", "smd_before", "smd_after"]


def calculate_balance(
    subjects: SubjectTable,
    result: MatchResult,
    covariates: Optional[Sequence[str]] = None,
) -> BalanceReport:
    """Calculate SMDs before and after matching.

    Args:
        subjects: Full subject table the result was matched from
        result: Matching result
        covariates: Covariates to report, in display order; defaults to the
            schema's declaration order

    Returns:
        BalanceReport with one row per covariate or covariate level

    Raises:
        ValueError: If a covariate is not declared or an id is unknown
    """
    schema = subjects.schema
    if covariates is None:
        covariates = schema.covariate_names
    else:
        unknown = [c for c in covariates if c not in schema.covariate_names]
        if unknown:
            raise ValueError(f"Balance covariates not declared in the schema: {unknown}")

    data = subjects.to_frame()
    missing_ids = [i for i in result.matched_ids if i not in data.index]
    if missing_ids:
        raise ValueError(f"Matched ids not found in the subject table: {missing_ids[:10]}")
    matched_data = data.loc[list(result.matched_ids)]

    if matched_data.empty:
        logger.warning("No matches found. Balance statistics after matching cannot be calculated.")

    before_mask = data["treatment"] == 1
    after_mask = matched_data["treatment"] == 1

    rows = []
    for name in covariates:
        spec = schema.get_covariate(name)
        for level, label, before, after in _indicators(spec, data, matched_data):
            rows.append({
                "covariate": name,
                "level": level,
                "variable": label,
                "smd_before": standardized_difference(before[before_mask], before[~before_mask]),
                "smd_after": (
                    standardized_difference(after[after_mask], after[~after_mask])
                    if not matched_data.empty else np.nan
                ),
            })

    report = BalanceReport(
        table=pd.DataFrame(rows, columns=BALANCE_COLUMNS),
        n_treated_before=int(before_mask.sum()),
        n_control_before=int((~before_mask).sum()),
        n_treated_after=int(after_mask.sum()),
        n_control_after=int((~after_mask).sum()),
    )

    if len(report.table):
        summary = report.summary()
        logger.info(
            f"Mean |SMD| before: {summary['mean_abs_smd_before']:.3f}, "
            f"after: {summary['mean_abs_smd_after']:.3f}"
        )
    return report


def _indicators(
    spec: CovariateSpec, data: pd.DataFrame, matched_data: pd.DataFrame
) -> Iterator[Tuple[Optional[str], str, pd.Series, pd.Series]]:
    """Yield (level, label, values before, values after) rows for a covariate."""
    if spec.kind == "categorical":
        for level in spec.levels:
            yield (
                level,
                f"{spec.name}={level}",
                (data[spec.name] == level).astype(float),
                (matched_data[spec.name] == level).astype(float),
            )
    elif spec.kind == "boolean":
        yield (
            None,
            spec.name,
            data[spec.name].astype(float),
            matched_data[spec.name].astype(float),
        )
    else:
        yield (
            None,
            spec.name,
            pd.to_numeric(data[spec.name]).astype(float),
            pd.to_numeric(matched_data[spec.name]).astype(float),
        )


def balance_comparison(reports: Dict[str, BalanceReport], when: str = "after") -> pd.DataFrame:
    """Side-by-side SMDs of several balance reports.

    Args:
        reports: Label (e.g. caliper width) to report; all must share rows
        when: 'before' or 'after'

    Returns:
        DataFrame indexed by variable with one column per label
    """
    if when not in ("before", "after"):
        raise ValueError(f"when must be 'before' or 'after', got {when}")
    columns: List[pd.Series] = []
    for label, report in reports.items():
        series = report.table.set_index("variable")[f"smd_{when}"]
        series.name = label
        columns.append(series)
    if not columns:
        return pd.DataFrame()
    return pd.concat(columns, axis=1)

"""
Reporting functionality for calipermatch.

This module exports matching results as CSV tables: the matched set, the
residual unmatched ids, the balance report and the sensitivity report.
"""

import os
from datetime import datetime
from typing import Dict, Optional

from calipermatch.datatypes import MatchResult, SensitivitySweepResult
from calipermatch.utils.logging import get_logger

# Set up logger
logger = get_logger(__name__)


def export_tables(
    results: Optional[MatchResult],
    output_dir: str,
    prefix: str = "",
    sweep: Optional[SensitivitySweepResult] = None,
    timestamp: bool = True,
) -> Dict[str, str]:
    """Export tables from matching results to CSV files.

    Args:
        results: MatchResult to export, or None to export only the sweep
        output_dir: Directory where tables will be saved
        prefix: Prefix to add to filenames
        sweep: Optional sensitivity sweep to export as a report table
        timestamp: Append a timestamp to filenames

    Returns:
        Dictionary mapping table names to file paths
    """
    suffix = f"_{datetime.now().strftime('%Y%m%d_%H%M%S')}" if timestamp else ""
    if prefix:
        prefix = f"{prefix}_"

    os.makedirs(output_dir, exist_ok=True)

    def path_for(name: str) -> str:
        return os.path.join(output_dir, f"{prefix}{name}{suffix}.csv")

    table_paths = {}

    if results is not None:
        # 1. Matched set
        table_paths["matched_set"] = path_for("matched_set")
        results.to_frame().to_csv(table_paths["matched_set"], index=False)

        # 2. Unmatched ids
        table_paths["unmatched"] = path_for("unmatched")
        results.unmatched_frame().to_csv(table_paths["unmatched"], index=False)

        # 3. Balance report
        if results.balance is not None:
            table_paths["balance"] = path_for("balance")
            results.balance.table.to_csv(table_paths["balance"], index=False)

    # 4. Sensitivity report
    if sweep is not None:
        table_paths["sensitivity"] = path_for("sensitivity")
        sweep.to_frame().to_csv(table_paths["sensitivity"], index=False)

    logger.info(f"Exported {len(table_paths)} tables to {output_dir}")
    return table_paths

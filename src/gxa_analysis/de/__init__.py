"""Differential expression: reading per-contrast engine output and merging
it into one results table per platform.
"""

from gxa_analysis.de.aggregation import (
    MICROARRAY_STATISTICS,
    RNASEQ_STATISTICS,
    aggregate_results,
    check_results_file,
    results_filename,
)
from gxa_analysis.de.results import read_contrast_tables
from gxa_analysis.de.runner import DEOutcome, run_differential_expression

__all__ = [
    "MICROARRAY_STATISTICS",
    "RNASEQ_STATISTICS",
    "DEOutcome",
    "aggregate_results",
    "check_results_file",
    "read_contrast_tables",
    "results_filename",
    "run_differential_expression",
]

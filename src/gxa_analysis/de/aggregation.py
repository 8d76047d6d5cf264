"""
Merging of per-contrast statistics into one results table per platform.

Each contrast contributes a sparse table mapping feature id (probe set or
gene) to a fixed-width tuple of statistic strings. The merged table has one
row per feature seen in any contrast, sorted by feature id, and one block of
columns per contrast in the configured contrast order::

    Design Element  g1_g2.p-value  g1_g2.t-statistic  g1_g2.log2foldchange  g1_g3.p-value ...

Values are copied through verbatim. Features a contrast has no row for get
``NA`` for every statistic of that contrast.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple, Union

import pandas as pd

from ..errors import MalformedStatistic, StatisticsEngineFailure
from ..experiment.model import RNASEQ_PLATFORM
from ..settings import MISSING_VALUE

logger = logging.getLogger(__name__)

MICROARRAY_STATISTICS = ("p-value", "t-statistic", "log2foldchange")
# RNA-seq p-values are the adjusted ones; there is no t-statistic.
RNASEQ_STATISTICS = ("p-value", "log2foldchange")

MICROARRAY_FEATURE_COLUMN = "Design Element"
RNASEQ_FEATURE_COLUMN = "Gene ID"

RESULTS_SUFFIX = "-analytics.tsv.undecorated"

ContrastTable = Dict[str, Tuple[str, ...]]


def statistics_for(is_rnaseq: bool) -> Tuple[str, ...]:
    return RNASEQ_STATISTICS if is_rnaseq else MICROARRAY_STATISTICS


def feature_column(is_rnaseq: bool) -> str:
    return RNASEQ_FEATURE_COLUMN if is_rnaseq else MICROARRAY_FEATURE_COLUMN


def results_filename(accession: str, platform: str) -> str:
    """``E-MTAB-1066_A-AFFY-35-analytics.tsv.undecorated`` or ``E-GEOD-38400-analytics.tsv.undecorated``."""
    if platform == RNASEQ_PLATFORM:
        return f"{accession}{RESULTS_SUFFIX}"
    return f"{accession}_{platform}{RESULTS_SUFFIX}"


def is_numeric_or_missing(value: str) -> bool:
    if not isinstance(value, str):
        return False
    if value == MISSING_VALUE:
        return True
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def check_statistics(
    feature_id: str,
    contrast_id: str,
    values: Sequence[str],
    statistics: Sequence[str],
) -> Tuple[str, ...]:
    """Return ``values`` as a tuple, raising MalformedStatistic on a bad slot."""
    if len(values) != len(statistics):
        raise MalformedStatistic(
            feature_id, contrast_id, "statistics", "\t".join(str(v) for v in values)
        )
    for statistic, value in zip(statistics, values):
        if not is_numeric_or_missing(value):
            raise MalformedStatistic(feature_id, contrast_id, statistic, value)
    return tuple(values)


def results_columns(contrast_ids: Iterable[str], is_rnaseq: bool) -> List[str]:
    columns = [feature_column(is_rnaseq)]
    for contrast_id in contrast_ids:
        columns.extend(f"{contrast_id}.{statistic}" for statistic in statistics_for(is_rnaseq))
    return columns


def aggregate_results(
    contrast_ids: Sequence[str],
    tables: Mapping[str, ContrastTable],
    is_rnaseq: bool,
) -> pd.DataFrame:
    """
    Merge per-contrast tables into one dense results table.

    Args:
        contrast_ids: Surviving contrasts of the platform, in configured order
        tables: Contrast id to sparse feature table
        is_rnaseq: Selects the statistics tuple and the feature column name

    Returns:
        DataFrame of strings with the feature column first

    Raises:
        MalformedStatistic: if any value is neither numeric nor ``NA``
    """
    statistics = statistics_for(is_rnaseq)
    missing = (MISSING_VALUE,) * len(statistics)

    for contrast_id in tables:
        if contrast_id not in contrast_ids:
            logger.info(f"Ignoring results for contrast {contrast_id}, not in this platform")

    checked: Dict[str, ContrastTable] = {}
    for contrast_id in contrast_ids:
        table = tables.get(contrast_id)
        if table is None:
            logger.warning(f"No results for contrast {contrast_id}, writing {MISSING_VALUE}s")
            table = {}
        checked[contrast_id] = {
            feature_id: check_statistics(feature_id, contrast_id, values, statistics)
            for feature_id, values in table.items()
        }

    features = sorted(set().union(*(table.keys() for table in checked.values())))

    rows = []
    for feature_id in features:
        row = [feature_id]
        for contrast_id in contrast_ids:
            row.extend(checked[contrast_id].get(feature_id, missing))
        rows.append(row)

    return pd.DataFrame(rows, columns=results_columns(contrast_ids, is_rnaseq), dtype=str)


def write_results_table(frame: pd.DataFrame, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, sep="\t", index=False, encoding="utf-8")
    logger.info(f"Results written to {path}")
    return path


def has_non_na_pvalues(results_file: Union[str, Path]) -> bool:
    """True if any ``.p-value`` column of a results table holds a value other than NA."""
    try:
        df = pd.read_csv(results_file, sep="\t", dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        return False
    except pd.errors.ParserError as e:
        raise StatisticsEngineFailure(f"Could not parse results file {results_file}: {e}") from e
    pvalue_columns = [c for c in df.columns if str(c).endswith(".p-value")]
    if not pvalue_columns:
        return False
    values = df[pvalue_columns]
    return bool(((values != MISSING_VALUE) & (values != "")).any().any())


def check_results_file(results_file: Union[str, Path]) -> None:
    """
    Raise StatisticsEngineFailure unless the results table has a usable p-value.

    All-NA p-values mean the engine ran but produced nothing worth loading.
    """
    if not has_non_na_pvalues(results_file):
        raise StatisticsEngineFailure(f"No non-NA p-values found in {results_file}")
    logger.info(f"{results_file} has non-NA p-values")

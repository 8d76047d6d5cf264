"""
Readers for the per-contrast files the DE engine writes to the temp directory.

For every contrast the engine writes ``<accession>.<contrast id>.analytics.tsv``
and ``<accession>.<contrast id>.plotdata.tsv``.

Microarray (limma) tables have a ``designElements`` header and the columns
p-value, t-statistic and log2 fold change in that order. RNA-seq (DESeq)
tables have an ``id`` header; the adjusted p-value and log2 fold change are
found by the column names ``padj`` and ``log2FoldChange``.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Union

import pandas as pd

from ..errors import StatisticsEngineFailure
from .aggregation import MICROARRAY_STATISTICS, ContrastTable

logger = logging.getLogger(__name__)

_CONTRAST_FILE_RE = re.compile(r"\.(g\d+_g\d+)\.(analytics|plotdata)\.tsv$")


def analytics_file(temp_dir: Union[str, Path], accession: str, contrast_id: str) -> Path:
    return Path(temp_dir) / f"{accession}.{contrast_id}.analytics.tsv"


def plotdata_file(temp_dir: Union[str, Path], accession: str, contrast_id: str) -> Path:
    return Path(temp_dir) / f"{accession}.{contrast_id}.plotdata.tsv"


def find_contrast_files(
    temp_dir: Union[str, Path],
    accession: str,
    kind: str = "analytics",
) -> Dict[str, Path]:
    """Map contrast id to the engine's ``analytics`` or ``plotdata`` file for it."""
    files: Dict[str, Path] = {}
    for path in sorted(Path(temp_dir).glob(f"{accession}.g*_g*.{kind}.tsv")):
        match = _CONTRAST_FILE_RE.search(path.name)
        if match and match.group(2) == kind:
            files[match.group(1)] = path
    return files


def _read_table(path: Path) -> pd.DataFrame:
    try:
        return pd.read_csv(path, sep="\t", dtype=str, keep_default_na=False)
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise StatisticsEngineFailure(
            f"Could not parse differential expression results file {path}: {e}",
            output=path.read_text(encoding="utf-8", errors="replace"),
        ) from e


def _add_row(table: ContrastTable, path: Path, feature_id: str, values) -> None:
    if feature_id in table:
        raise StatisticsEngineFailure(f"{path}: feature {feature_id!r} appears more than once")
    table[feature_id] = tuple(values)


def read_microarray_table(path: Union[str, Path]) -> ContrastTable:
    """Read a limma per-contrast table, taking statistics by column position."""
    path = Path(path)
    df = _read_table(path)
    if len(df.columns) < 1 + len(MICROARRAY_STATISTICS) or df.columns[0] != "designElements":
        raise StatisticsEngineFailure(
            f"{path}: expected a designElements column followed by "
            f"{len(MICROARRAY_STATISTICS)} statistics, got {list(df.columns)}"
        )

    table: ContrastTable = {}
    width = len(MICROARRAY_STATISTICS)
    for row in df.itertuples(index=False, name=None):
        _add_row(table, path, row[0], row[1:1 + width])
    return table


def read_rnaseq_table(path: Union[str, Path]) -> ContrastTable:
    """Read a DESeq per-contrast table, taking ``padj`` and ``log2FoldChange`` by name."""
    path = Path(path)
    df = _read_table(path)
    missing = [c for c in ("padj", "log2FoldChange") if c not in df.columns]
    if not len(df.columns) or df.columns[0] != "id" or missing:
        raise StatisticsEngineFailure(
            f"{path}: expected an id column with padj and log2FoldChange, got {list(df.columns)}"
        )

    table: ContrastTable = {}
    for feature_id, padj, log_fc in zip(df["id"], df["padj"], df["log2FoldChange"]):
        _add_row(table, path, feature_id, (padj, log_fc))
    return table


def read_contrast_tables(
    temp_dir: Union[str, Path],
    accession: str,
    is_rnaseq: bool,
    remove: bool = True,
) -> Dict[str, ContrastTable]:
    """
    Read every per-contrast results file the engine left for ``accession``.

    Args:
        temp_dir: Directory the engine writes to
        accession: Experiment accession
        is_rnaseq: Selects the DESeq or limma file layout
        remove: Delete each file once read

    Values are returned as read; ``aggregate_results`` checks them.

    Raises:
        StatisticsEngineFailure: if no results files are found, or one has
            an unexpected header
    """
    files = find_contrast_files(temp_dir, accession, "analytics")
    if not files:
        raise StatisticsEngineFailure(f"No differential expression results files found in {temp_dir}")

    reader = read_rnaseq_table if is_rnaseq else read_microarray_table
    tables: Dict[str, ContrastTable] = {}
    for contrast_id, path in files.items():
        logger.info(f"Reading file {path} ...")
        tables[contrast_id] = reader(path)
        if remove:
            logger.info(f"Finished with {path}, deleting...")
            path.unlink()
    return tables

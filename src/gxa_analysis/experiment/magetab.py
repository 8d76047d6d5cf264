"""
MAGE-TAB reader producing the raw-assay catalogue.

Reads the IDF (Investigation Description Format) file to find the SDRF
(Sample and Data Relationship Format) file(s), then reads one raw assay
record per hybridization channel from the SDRF:

- Assay Name (or Hybridization Name)
- Array Design REF
- Label (Cy3/Cy5 for two-colour data)
- Array Data File
- Factor Value[...] columns
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from ..errors import MalformedConfig
from .model import Assay

logger = logging.getLogger(__name__)

ASSAY_NAME_COLUMNS = ["Assay Name", "Hybridization Name"]
ARRAY_DESIGN_COLUMN = "Array Design REF"
LABEL_COLUMN = "Label"
DATA_FILE_COLUMN = "Array Data File"

_FACTOR_RE = re.compile(r"^Factor\s*Value\s*\[\s*(.+?)\s*\]")
_TWO_COLOUR_LABEL_RE = re.compile(r"^Cy\d$")


def idf_path(load_dir: Union[str, Path], accession: str) -> Path:
    return Path(load_dir) / f"{accession}.idf.txt"


def parse_idf_file(idf_file: Union[str, Path]) -> List[str]:
    """
    Find the SDRF files an IDF file refers to.

    Args:
        idf_file: Path to the IDF file (e.g., E-MTAB-1066.idf.txt)

    Returns:
        SDRF file names from the ``SDRF File`` row, in order
    """
    sdrf_files: List[str] = []

    with open(idf_file, "r", encoding="utf-8") as f:
        for line in f:
            parts = line.rstrip("\r\n").split("\t")
            if len(parts) < 2 or parts[0].strip() != "SDRF File":
                continue
            sdrf_files.extend(p.strip().strip('"') for p in parts[1:] if p.strip())

    return sdrf_files


def _find_column(columns: List[str], candidates: List[str]) -> Optional[str]:
    for candidate in candidates:
        if candidate in columns:
            return candidate
    return None


def _factor_columns(columns: List[str]) -> List[Tuple[str, str]]:
    """(column, factor name) pairs, first occurrence of each factor only."""
    seen = set()
    result = []
    for column in columns:
        match = _FACTOR_RE.match(column)
        if not match:
            continue
        factor = match.group(1)
        if factor in seen:
            continue
        seen.add(factor)
        result.append((column, factor))
    return result


def parse_sdrf_file(
    sdrf_file: Union[str, Path],
    load_dir: Optional[Union[str, Path]] = None,
    two_colour: bool = False,
) -> List[Assay]:
    """
    Read raw assay records from an SDRF file.

    Rows belonging to the same assay (and label) are merged; factor values
    are collected across them. For two-colour data each channel becomes its
    own record named ``<assay name>.<label>``.

    Args:
        sdrf_file: Path to the SDRF file
        load_dir: Directory raw data file names are relative to
        two_colour: Whether to suffix assay names with their Cy3/Cy5 label

    Returns:
        List of Assay records in SDRF order
    """
    df = pd.read_csv(sdrf_file, sep="\t", dtype=str, keep_default_na=False)
    df.columns = [str(c).strip() for c in df.columns]
    columns = list(df.columns)

    name_col = _find_column(columns, ASSAY_NAME_COLUMNS)
    if name_col is None:
        raise MalformedConfig(f"{sdrf_file}: no Assay Name or Hybridization Name column")
    array_col = _find_column(columns, [ARRAY_DESIGN_COLUMN])
    label_col = _find_column(columns, [LABEL_COLUMN])
    file_col = _find_column(columns, [DATA_FILE_COLUMN])
    factor_cols = _factor_columns(columns)

    records: Dict[str, Dict[str, Any]] = {}

    for _, row in df.iterrows():
        base_name = row[name_col].strip()
        if not base_name:
            continue

        label = row[label_col].strip() if label_col else ""
        name = base_name
        if two_colour and _TWO_COLOUR_LABEL_RE.match(label):
            name = f"{base_name}.{label}"

        record = records.setdefault(name, {
            "array_design": "",
            "label": label or None,
            "data_file": "",
            "factors": {factor: [] for _, factor in factor_cols},
        })

        if array_col and not record["array_design"]:
            record["array_design"] = row[array_col].strip()
        if file_col and not record["data_file"]:
            record["data_file"] = row[file_col].strip()

        for column, factor in factor_cols:
            value = row[column].strip()
            if value and value not in record["factors"][factor]:
                record["factors"][factor].append(value)

    assays = []
    for name, record in records.items():
        data_file = record["data_file"]
        if data_file and load_dir is not None:
            data_file = str(Path(load_dir) / data_file)
        assays.append(Assay(
            name=name,
            array_design=record["array_design"],
            factors=tuple(
                (factor, tuple(values))
                for factor, values in record["factors"].items()
                if values
            ),
            label=record["label"],
            data_file=data_file,
        ))

    return assays


def load_raw_assays(
    load_dir: Union[str, Path],
    accession: str,
    two_colour: bool = False,
) -> List[Assay]:
    """
    Load the raw-assay catalogue for an experiment from its load directory.

    Args:
        load_dir: Directory holding the IDF, SDRF and raw data files
        accession: Experiment accession
        two_colour: Whether the experiment uses two-colour arrays

    Returns:
        List of Assay records from all SDRF files referenced by the IDF
    """
    load_dir = Path(load_dir)
    idf_file = idf_path(load_dir, accession)
    if not idf_file.exists():
        raise MalformedConfig(f"Could not find IDF file {idf_file}")

    logger.info(f"Reading MAGE-TAB from \"{idf_file}\"...")
    sdrf_files = parse_idf_file(idf_file)
    if not sdrf_files:
        raise MalformedConfig(f"{idf_file} does not reference an SDRF file")

    assays: List[Assay] = []
    for sdrf_name in sdrf_files:
        sdrf_file = load_dir / sdrf_name
        if not sdrf_file.exists():
            raise MalformedConfig(f"Could not find SDRF file {sdrf_file}")
        assays.extend(parse_sdrf_file(sdrf_file, load_dir, two_colour))

    logger.info(f"Successfully read MAGE-TAB: {len(assays)} assays")
    return assays

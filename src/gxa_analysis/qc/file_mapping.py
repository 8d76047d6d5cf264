"""
Mapping of configured assays to raw data files, per array design.

Raw assay records come from MAGE-TAB; only assays named in the experiment
configuration are kept. Surviving records are sorted by array design and,
within that, by factor value(s)::

    {
        <array design 1>: {
            <factor value(s) 1>: {<assay name 1>: <file 1>, <assay name 2>: <file 2>},
            <factor value(s) 2>: {<assay name 3>: <file 3>},
        },
        <array design 2>: {...},
    }

The factor-value key is for display in the engine's annotation table only;
several assays can share one.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

import pandas as pd

from ..experiment.model import Assay, ColourMode, ExperimentConfig
from .technology import Technology, classify_technology, split_label

logger = logging.getLogger(__name__)

TechnologyLookup = Callable[[str], str]

_MIRBASE_FILE_RE = re.compile(r".*(A-\w{4}-\d+)\.tsv$")


def factor_value_key(assay: Assay) -> str:
    """Join all factor values, sorted by factor name then value, with ", "."""
    values: List[str] = []
    factors = assay.factor_dict
    for factor in sorted(factors):
        values.extend(sorted(factors[factor]))
    return ", ".join(values)


@dataclass
class TwoColourRecord:
    """Both channels of one two-colour hybridization."""

    assay_name: str
    cy3: str = ""
    cy5: str = ""
    data_file: str = ""


@dataclass
class PlatformFiles:
    """Raw data files for one array design, keyed by factor value then assay."""

    array_design: str
    technology: Technology
    files: Dict[str, Dict[str, str]] = field(default_factory=dict)

    @property
    def assay_count(self) -> int:
        return sum(len(assays) for assays in self.files.values())

    def assay_files(self) -> Dict[str, str]:
        """Label-stripped assay name to raw data file."""
        result: Dict[str, str] = {}
        for factor_value in sorted(self.files):
            for assay_name, data_file in sorted(self.files[factor_value].items()):
                result[split_label(assay_name)[0]] = data_file
        return dict(sorted(result.items()))

    def two_colour_records(self) -> List[TwoColourRecord]:
        """Fold Cy3/Cy5 channel records into one record per hybridization."""
        records: Dict[str, TwoColourRecord] = {}
        for factor_value in sorted(self.files):
            for assay_name in sorted(self.files[factor_value]):
                name, label = split_label(assay_name)
                record = records.setdefault(name, TwoColourRecord(assay_name=name))
                if label == "Cy3":
                    record.cy3 = factor_value
                elif label == "Cy5":
                    record.cy5 = factor_value
                else:
                    logger.warning(
                        f"Assay \"{assay_name}\" on {self.array_design} has no Cy3/Cy5 label"
                    )
                record.data_file = self.files[factor_value][assay_name]
        return [records[name] for name in sorted(records)]

    def annotation_frame(self) -> pd.DataFrame:
        """Annotation table the QC engine reads."""
        if self.technology.is_two_colour:
            rows = [
                {"AssayName": r.assay_name, "Cy3": r.cy3, "Cy5": r.cy5, "FileName": r.data_file}
                for r in self.two_colour_records()
            ]
            return pd.DataFrame(rows, columns=["AssayName", "Cy3", "Cy5", "FileName"])

        rows = []
        for factor_value in sorted(self.files):
            for assay_name in sorted(self.files[factor_value]):
                rows.append({
                    "AssayName": assay_name,
                    "FactorValue": factor_value,
                    "FileName": self.files[factor_value][assay_name],
                })
        return pd.DataFrame(rows, columns=["AssayName", "FactorValue", "FileName"])

    def normalization_frame(self) -> pd.DataFrame:
        """Assay to file table the normalization engine reads."""
        rows = [
            {"AssayName": name, "Filename": data_file}
            for name, data_file in self.assay_files().items()
        ]
        return pd.DataFrame(rows, columns=["AssayName", "Filename"])


def select_configured_assays(
    config: ExperimentConfig,
    raw_assays: Iterable[Assay],
) -> List[Assay]:
    """Keep raw assays whose name, or label-stripped name, is in the configuration."""
    known = set(config.all_assay_names())
    selected = []
    for assay in raw_assays:
        if assay.name in known or split_label(assay.name)[0] in known:
            selected.append(assay)
        else:
            logger.info(
                f"Assay \"{assay.name}\" not found in XML config, not including in analysis."
            )
    return selected


def build_platform_files(
    array_design: str,
    assays: Iterable[Assay],
    colour_mode: ColourMode,
    technology_lookup: TechnologyLookup,
) -> PlatformFiles:
    """
    Build the factor value / assay / file mapping for one array design.

    Raises:
        UnknownTechnology: if the array design cannot be classified
    """
    if colour_mode is ColourMode.TWO_COLOUR:
        technology = classify_technology(array_design, None, colour_mode)
    else:
        technology = classify_technology(
            array_design, technology_lookup(array_design), colour_mode
        )

    platform_files = PlatformFiles(array_design=array_design, technology=technology)
    for assay in assays:
        key = factor_value_key(assay)
        platform_files.files.setdefault(key, {})[assay.name] = assay.data_file
    return platform_files


def group_by_array_design(assays: Iterable[Assay]) -> Dict[str, List[Assay]]:
    grouped: Dict[str, List[Assay]] = {}
    for assay in assays:
        grouped.setdefault(assay.array_design, []).append(assay)
    return {array_design: grouped[array_design] for array_design in sorted(grouped)}


def build_file_mappings(
    config: ExperimentConfig,
    raw_assays: Iterable[Assay],
    technology_lookup: TechnologyLookup,
) -> Dict[str, PlatformFiles]:
    """
    Build PlatformFiles for every array design with configured assays.

    Raises on the first array design that cannot be classified; callers that
    want per-platform isolation use ``group_by_array_design`` and
    ``build_platform_files`` directly.
    """
    colour_mode = config.experiment_type.colour_mode or ColourMode.ONE_COLOUR
    grouped = group_by_array_design(select_configured_assays(config, raw_assays))
    return {
        array_design: build_platform_files(array_design, assays, colour_mode, technology_lookup)
        for array_design, assays in grouped.items()
    }


def write_table(frame: pd.DataFrame, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, sep="\t", index=False)
    return path


def find_mirbase_mappings(directory: Optional[Union[str, Path]]) -> Dict[str, Path]:
    """Map array design accessions to microRNA mapping files in ``directory``."""
    if directory is None:
        return {}
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning(f"miRBase mapping directory {directory} not found")
        return {}

    mappings: Dict[str, Path] = {}
    for path in sorted(directory.glob("*.A-*.tsv")):
        match = _MIRBASE_FILE_RE.match(path.name)
        if match:
            mappings[match.group(1)] = path
    return mappings

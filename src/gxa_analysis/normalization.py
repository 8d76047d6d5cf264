"""
Normalization orchestrator for microarray experiments.

Per array design the normalization engine gets a two-column
``AssayName<TAB>Filename`` table and writes
``<accession>_<array design>-normalized-expressions.tsv.undecorated``.
Two-colour runs produce log fold changes plus an ``.A-values`` side file,
which are renamed to the log-fold-changes and average-intensities files.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from .engine import StatisticsEngine
from .errors import EXIT_OK, MalformedConfig, PipelineError, StatisticsEngineFailure, exit_code_for
from .experiment.config_xml import parse_configuration_xml
from .experiment.magetab import load_raw_assays
from .experiment.model import ColourMode
from .qc.file_mapping import (
    PlatformFiles,
    TechnologyLookup,
    build_platform_files,
    find_mirbase_mappings,
    group_by_array_design,
    select_configured_assays,
    write_table,
)
from .qc.technology import Technology
from .settings import PipelineOptions

logger = logging.getLogger(__name__)


def normalized_file(atlas_dir: Union[str, Path], accession: str, array_design: str) -> Path:
    return Path(atlas_dir) / f"{accession}_{array_design}-normalized-expressions.tsv.undecorated"


def log_fold_changes_file(atlas_dir: Union[str, Path], accession: str, array_design: str) -> Path:
    return Path(atlas_dir) / f"{accession}_{array_design}-log-fold-changes.tsv.undecorated"


def average_intensities_file(atlas_dir: Union[str, Path], accession: str, array_design: str) -> Path:
    return Path(atlas_dir) / f"{accession}_{array_design}-average-intensities.tsv.undecorated"


@dataclass
class PlatformNormalizationResult:
    platform: str
    technology: Optional[str] = None
    outputs: List[Path] = field(default_factory=list)
    error: Optional[PipelineError] = None


@dataclass
class NormalizationOutcome:
    accession: str
    platforms: List[PlatformNormalizationResult] = field(default_factory=list)

    @property
    def errors(self) -> List[PipelineError]:
        return [result.error for result in self.platforms if result.error is not None]

    @property
    def exit_code(self) -> int:
        errors = self.errors
        if errors:
            return max(exit_code_for(error) for error in errors)
        return EXIT_OK


def normalize_platform(
    accession: str,
    platform_files: PlatformFiles,
    atlas_dir: Path,
    options: PipelineOptions,
    engine: StatisticsEngine,
    mirbase_file: Optional[Path] = None,
) -> List[Path]:
    """
    Normalize one array design's raw data.

    Returns:
        Paths of the files written

    Raises:
        StatisticsEngineFailure: if the engine fails or mentions an error
    """
    array_design = platform_files.array_design
    assay_table = Path(options.temp_dir) / f"{accession}_{array_design}.{os.getpid()}.tsv"
    write_table(platform_files.normalization_frame(), assay_table)
    output = normalized_file(atlas_dir, accession, array_design)

    logger.info(f"Running normalization in R for {accession}, array design {array_design}...")
    try:
        result = engine.run(
            options.normalization_script,
            assay_table,
            platform_files.technology.value,
            output,
            mirbase_file if mirbase_file is not None else 0,
        )
    finally:
        assay_table.unlink(missing_ok=True)

    # The engine does not always exit non-zero when it fails.
    if not result.ok or "error" in result.output.lower():
        raise StatisticsEngineFailure(
            f"Error encountered during normalization of {accession} on array {array_design}",
            output=result.output,
            returncode=result.returncode,
        )

    if platform_files.technology is Technology.AGIL2:
        log_fc = log_fold_changes_file(atlas_dir, accession, array_design)
        intensities = average_intensities_file(atlas_dir, accession, array_design)
        try:
            output.replace(log_fc)
            output.with_name(output.name + ".A-values").replace(intensities)
        except OSError as e:
            raise StatisticsEngineFailure(
                f"Two-colour normalization outputs for {array_design} are missing: {e}",
                output=result.output,
            ) from e
        outputs = [log_fc, intensities]
    else:
        outputs = [output]

    logger.info(f"Normalization for array design {array_design} completed.")
    return outputs


def run_normalization(
    config_file: Union[str, Path],
    load_dir: Union[str, Path],
    options: PipelineOptions,
    technology_lookup: TechnologyLookup,
    engine: Optional[StatisticsEngine] = None,
    atlas_dir: Optional[Union[str, Path]] = None,
) -> NormalizationOutcome:
    """
    Normalize every array design of a microarray experiment.

    Raises:
        MalformedConfig: if the configuration or MAGE-TAB cannot be read, or
            the experiment is not a microarray experiment
    """
    config_file = Path(config_file)
    atlas_dir = Path(atlas_dir) if atlas_dir is not None else config_file.parent
    engine = engine or StatisticsEngine(cwd=atlas_dir)

    config = parse_configuration_xml(config_file, min_replicates=options.min_replicates)
    if not config.experiment_type.is_microarray:
        raise MalformedConfig(
            f"This does not look like a microarray experiment. "
            f"Experiment type is \"{config.experiment_type.name}\""
        )

    colour_mode = config.experiment_type.colour_mode or ColourMode.ONE_COLOUR
    raw_assays = load_raw_assays(
        load_dir, config.accession, two_colour=colour_mode is ColourMode.TWO_COLOUR
    )
    by_array_design = group_by_array_design(select_configured_assays(config, raw_assays))
    mirbase_files = find_mirbase_mappings(options.mirbase_dir)
    Path(options.temp_dir).mkdir(parents=True, exist_ok=True)

    logger.info(f"Found {len(by_array_design)} array designs")
    for array_design, assays in by_array_design.items():
        logger.info(f"\t{array_design}: {len(assays)} assays.")

    outcome = NormalizationOutcome(accession=config.accession)
    for array_design, assays in by_array_design.items():
        result = PlatformNormalizationResult(platform=array_design)
        outcome.platforms.append(result)
        mirbase_file = mirbase_files.get(array_design)
        if mirbase_file is not None:
            logger.info(f"{array_design} is a microRNA array design.")

        try:
            platform_files = build_platform_files(
                array_design, assays, colour_mode, technology_lookup
            )
            result.technology = platform_files.technology.value
            logger.info(f"The normalization mode is {result.technology}.")
            result.outputs = normalize_platform(
                config.accession, platform_files, atlas_dir, options, engine, mirbase_file
            )
        except PipelineError as e:
            logger.error(f"{config.accession}: normalization failed for {array_design}: {e}")
            result.error = e

    return outcome

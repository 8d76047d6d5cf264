"""
QC orchestrator for microarray experiments.

For each array design with configured assays: write the annotation table,
run the QC engine, and apply any rejections to the design. A failure on one
array design is recorded and the others still run. If QC changed the design,
the configuration file is rewritten and the previous version kept as an
audit copy.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from ..engine import StatisticsEngine
from ..errors import (
    EXIT_ASSAYS_REJECTED,
    EXIT_OK,
    MalformedConfig,
    PipelineError,
    exit_code_for,
)
from ..experiment.config_xml import parse_configuration_xml, persist_reconciled_config
from ..experiment.magetab import load_raw_assays
from ..experiment.model import ColourMode, ExperimentConfig
from ..settings import PipelineOptions
from .file_mapping import (
    PlatformFiles,
    TechnologyLookup,
    build_platform_files,
    find_mirbase_mappings,
    group_by_array_design,
    select_configured_assays,
    write_table,
)
from .reconcile import parse_rejected_assays, reconcile
from .technology import strip_label

logger = logging.getLogger(__name__)


@dataclass
class PlatformQCResult:
    """What happened to one array design during QC."""

    platform: str
    technology: Optional[str] = None
    rejected: List[str] = field(default_factory=list)
    removed_groups: List[str] = field(default_factory=list)
    removed_contrasts: List[str] = field(default_factory=list)
    error: Optional[PipelineError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class QCOutcome:
    """Result of a QC run over all array designs of an experiment."""

    accession: str
    config: ExperimentConfig
    platforms: List[PlatformQCResult] = field(default_factory=list)
    changed: bool = False
    backup: Optional[Path] = None

    @property
    def rejected(self) -> List[str]:
        return [name for result in self.platforms for name in result.rejected]

    @property
    def errors(self) -> List[PipelineError]:
        return [result.error for result in self.platforms if result.error is not None]

    @property
    def exit_code(self) -> int:
        errors = self.errors
        if errors:
            return max(exit_code_for(error) for error in errors)
        if self.rejected:
            return EXIT_ASSAYS_REJECTED
        return EXIT_OK


def report_dir_name(accession: str, array_design: str) -> str:
    return f"{accession}_{array_design}_QM"


def configured_names_for(config: ExperimentConfig, rejected: List[str], platform: str) -> List[str]:
    """Map engine assay names to configured names.

    Two-colour tables carry label-stripped names, so one rejected
    hybridization can stand for both its Cy3 and Cy5 channels.
    """
    element = config.analytics_element(platform)
    configured = element.assay_names() if element is not None else []
    names: List[str] = []
    for name in rejected:
        matches = [a for a in configured if a == name or strip_label(a) == name]
        for match in matches or [name]:
            if match not in names:
                names.append(match)
    return names


def run_platform_qc(
    config: ExperimentConfig,
    platform_files: PlatformFiles,
    options: PipelineOptions,
    engine: StatisticsEngine,
    output_dir: Path,
    mirbase_file: Optional[Path] = None,
) -> List[str]:
    """
    Run the QC engine for one array design.

    Returns:
        Names of assays the engine rejected (as reported by the engine)

    Raises:
        StatisticsEngineFailure: if the engine exits non-zero
    """
    accession = config.accession
    array_design = platform_files.array_design
    annotation_file = Path(options.temp_dir) / f"{accession}_{array_design}.{os.getpid()}.tsv"
    write_table(platform_files.annotation_frame(), annotation_file)

    try:
        result = engine.run_checked(
            options.qc_script,
            annotation_file,
            platform_files.technology.value,
            accession,
            array_design,
            output_dir / report_dir_name(accession, array_design),
            mirbase_file if mirbase_file is not None else 0,
            action=f"quality metrics calculation for array {array_design}",
        )
    finally:
        annotation_file.unlink(missing_ok=True)

    logger.info("R process successful.")
    return parse_rejected_assays(result.output)


def run_qc(
    config_file: Union[str, Path],
    load_dir: Union[str, Path],
    options: PipelineOptions,
    technology_lookup: TechnologyLookup,
    engine: Optional[StatisticsEngine] = None,
    output_dir: Optional[Union[str, Path]] = None,
) -> QCOutcome:
    """
    Run QC over every array design of a microarray experiment.

    Args:
        config_file: Path to ``<accession>-configuration.xml``
        load_dir: Directory with the MAGE-TAB and raw data files
        options: Pipeline options
        technology_lookup: Array design to technology text
        engine: Statistics engine (defaults to one running in ``output_dir``)
        output_dir: Where QC reports go (defaults to the config file's directory)

    Returns:
        QCOutcome; ``exit_code`` gives the process exit status

    Raises:
        MalformedConfig: if the configuration or MAGE-TAB cannot be read
    """
    config_file = Path(config_file)
    output_dir = Path(output_dir) if output_dir is not None else config_file.parent
    engine = engine or StatisticsEngine(cwd=output_dir)

    logger.info(f"Reading XML config from \"{config_file}\"...")
    config = parse_configuration_xml(config_file, min_replicates=options.min_replicates)
    logger.info("Successfully read XML config.")

    if not config.experiment_type.is_microarray:
        raise MalformedConfig(
            f"{config.accession} is not a microarray experiment "
            f"({config.experiment_type.name}), QC does not apply"
        )

    colour_mode = config.experiment_type.colour_mode or ColourMode.ONE_COLOUR
    raw_assays = load_raw_assays(
        load_dir, config.accession, two_colour=colour_mode is ColourMode.TWO_COLOUR
    )
    mirbase_files = find_mirbase_mappings(options.mirbase_dir)
    Path(options.temp_dir).mkdir(parents=True, exist_ok=True)

    logger.info("Collecting factor values and raw data filenames for assays listed in XML config only...")
    by_array_design = group_by_array_design(select_configured_assays(config, raw_assays))

    original = config
    outcome = QCOutcome(accession=config.accession, config=config)

    for array_design, assays in by_array_design.items():
        result = PlatformQCResult(platform=array_design)
        outcome.platforms.append(result)
        logger.info(f"Running QC in R for array design \"{array_design}\"...")

        try:
            platform_files = build_platform_files(
                array_design, assays, colour_mode, technology_lookup
            )
            result.technology = platform_files.technology.value
            rejected = run_platform_qc(
                config,
                platform_files,
                options,
                engine,
                output_dir,
                mirbase_files.get(array_design),
            )
        except PipelineError as e:
            logger.error(f"{config.accession}: QC failed for array design {array_design}: {e}")
            result.error = e
            continue

        if not rejected:
            logger.info(f"All assays for \"{array_design}\" passed QC.")
            continue

        for name in rejected:
            logger.info(
                f"{config.accession}: Assay \"{name}\" failed QC and will be removed from XML config."
            )
        reconciliation = reconcile(
            config, configured_names_for(config, rejected, array_design), platform=array_design
        )
        config = reconciliation.config
        result.rejected = list(rejected)
        result.removed_groups = list(reconciliation.removed_groups)
        result.removed_contrasts = list(reconciliation.removed_contrasts)
        logger.info(f"Successfully finished QC for \"{array_design}\"")

    outcome.config = config
    outcome.changed = config != original
    if outcome.changed:
        outcome.backup = persist_reconciled_config(config, config_file)
    return outcome

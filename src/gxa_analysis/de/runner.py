"""
Differential expression orchestrator.

The DE engine runs once per experiment (limma for microarray, DESeq for
RNA-seq) and leaves one results file and one plot-data file per contrast in
the temp directory. Results are then aggregated, plotted and written one
platform at a time; a failure on one platform does not stop the others.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..engine import StatisticsEngine
from ..errors import EXIT_OK, MalformedConfig, PipelineError, exit_code_for
from ..experiment.config_xml import parse_configuration_xml
from ..experiment.model import RNASEQ_PLATFORM, AnalyticsElement, ExperimentConfig
from ..settings import PipelineOptions
from .aggregation import (
    ContrastTable,
    aggregate_results,
    check_results_file,
    results_filename,
    write_results_table,
)
from .results import find_contrast_files, plotdata_file, read_contrast_tables

logger = logging.getLogger(__name__)


@dataclass
class PlatformDEResult:
    platform: str
    contrasts: List[str] = field(default_factory=list)
    results_file: Optional[Path] = None
    plots: List[Path] = field(default_factory=list)
    error: Optional[PipelineError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class DEOutcome:
    """Result of a differential expression run over all platforms."""

    accession: str
    platforms: List[PlatformDEResult] = field(default_factory=list)
    error: Optional[PipelineError] = None

    @property
    def errors(self) -> List[PipelineError]:
        errors = [result.error for result in self.platforms if result.error is not None]
        if self.error is not None:
            errors.insert(0, self.error)
        return errors

    @property
    def exit_code(self) -> int:
        errors = self.errors
        if errors:
            return max(exit_code_for(error) for error in errors)
        return EXIT_OK


def counts_matrix_file(atlas_dir: Union[str, Path], accession: str) -> Path:
    return Path(atlas_dir) / f"{accession}-raw-counts.tsv.undecorated"


def mva_plot_file(atlas_dir: Union[str, Path], accession: str, platform: str, contrast_id: str) -> Path:
    if platform == RNASEQ_PLATFORM:
        return Path(atlas_dir) / f"{accession}-{contrast_id}-mvaPlot.png"
    return Path(atlas_dir) / f"{accession}_{platform}-{contrast_id}-mvaPlot.png"


def run_de_engine(
    config: ExperimentConfig,
    atlas_dir: Path,
    options: PipelineOptions,
    engine: StatisticsEngine,
) -> None:
    """Run limma or DESeq for the whole experiment."""
    logger.info("Running differential expression analysis in R...")
    if config.experiment_type.is_rnaseq:
        engine.run_checked(
            options.deseq_script,
            config.accession,
            atlas_dir,
            counts_matrix_file(atlas_dir, config.accession),
            action="differential expression analysis",
        )
    else:
        engine.run_checked(
            options.limma_script,
            config.accession,
            atlas_dir,
            action="differential expression analysis",
        )
    logger.info("Differential expression analysis successful")


def make_mva_plots(
    config: ExperimentConfig,
    element: AnalyticsElement,
    atlas_dir: Path,
    options: PipelineOptions,
    engine: StatisticsEngine,
) -> List[Path]:
    """Render an MvA plot for each contrast of ``element`` that has plot data."""
    kind = "rnaseq" if element.is_rnaseq else "microarray"
    plots = []
    for contrast in element.contrasts:
        plot_data = plotdata_file(options.temp_dir, config.accession, contrast.id)
        if not plot_data.exists():
            logger.warning(f"No MvA plot data for contrast {contrast.id} in {options.temp_dir}")
            continue

        plot_file = mva_plot_file(atlas_dir, config.accession, element.platform, contrast.id)
        logger.info("Making MvA plot...")
        engine.run_checked(
            options.mva_script,
            plot_data,
            contrast.name,
            plot_file,
            kind,
            action="MvA plot creation",
        )
        plot_data.unlink()
        plots.append(plot_file)
    return plots


def _tables_for_platform(
    tables: Dict[str, ContrastTable],
    config: ExperimentConfig,
    platform: str,
) -> Dict[str, ContrastTable]:
    """Tables of this platform plus any whose contrast no platform claims."""
    owners = config.contrast_ids_to_platforms()
    return {
        contrast_id: table
        for contrast_id, table in tables.items()
        if owners.get(contrast_id, platform) == platform
    }


def process_platform(
    config: ExperimentConfig,
    element: AnalyticsElement,
    tables: Dict[str, ContrastTable],
    atlas_dir: Path,
    options: PipelineOptions,
    engine: StatisticsEngine,
) -> PlatformDEResult:
    """Aggregate, plot and write one platform's results.

    Raises:
        PipelineError: on malformed statistics or an engine failure
    """
    result = PlatformDEResult(
        platform=element.platform,
        contrasts=[contrast.id for contrast in element.contrasts],
    )
    frame = aggregate_results(
        result.contrasts,
        _tables_for_platform(tables, config, element.platform),
        is_rnaseq=element.is_rnaseq,
    )
    if options.make_plots:
        result.plots = make_mva_plots(config, element, atlas_dir, options, engine)

    results_file = atlas_dir / results_filename(config.accession, element.platform)
    result.results_file = write_results_table(frame, results_file)
    check_results_file(results_file)
    return result


def _discard_leftover_plot_data(temp_dir: Path, config: ExperimentConfig) -> None:
    known = config.contrast_ids_to_platforms()
    for contrast_id, path in find_contrast_files(temp_dir, config.accession, "plotdata").items():
        if contrast_id not in known:
            logger.info(f"Ignoring plot data for unknown contrast {contrast_id}, deleting {path}")
        path.unlink()


def run_differential_expression(
    config_file: Union[str, Path],
    options: PipelineOptions,
    engine: Optional[StatisticsEngine] = None,
    atlas_dir: Optional[Union[str, Path]] = None,
) -> DEOutcome:
    """
    Run differential expression for a differential experiment.

    Args:
        config_file: Path to ``<accession>-configuration.xml``
        options: Pipeline options
        engine: Statistics engine (defaults to one running in ``atlas_dir``)
        atlas_dir: Experiment processing directory where results are written
            (defaults to the config file's directory)

    Returns:
        DEOutcome with one entry per non-vestigial platform

    Raises:
        MalformedConfig: if the configuration cannot be read or the
            experiment is not differential
    """
    config_file = Path(config_file)
    atlas_dir = Path(atlas_dir) if atlas_dir is not None else config_file.parent
    engine = engine or StatisticsEngine(cwd=atlas_dir)

    logger.info(f"Reading XML config from \"{config_file}\"...")
    config = parse_configuration_xml(config_file, min_replicates=options.min_replicates)

    if config.experiment_type.is_baseline or not config.experiment_type.is_differential:
        raise MalformedConfig(
            f"{config.accession} is a {config.experiment_type.name} experiment; "
            f"differential expression only runs on differential experiments"
        )

    outcome = DEOutcome(accession=config.accession)
    elements = [element for element in config.analytics if not element.is_vestigial]
    for element in config.analytics:
        if element.is_vestigial:
            logger.info(f"No contrasts left for {element.platform}, skipping")

    if not elements:
        logger.warning(f"{config.accession}: no contrasts to analyse")
        return outcome

    temp_dir = Path(options.temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)

    try:
        run_de_engine(config, atlas_dir, options, engine)
        tables = read_contrast_tables(temp_dir, config.accession, config.experiment_type.is_rnaseq)
    except PipelineError as e:
        logger.error(f"{config.accession}: {e}")
        outcome.error = e
        return outcome

    for element in elements:
        try:
            result = process_platform(config, element, tables, atlas_dir, options, engine)
        except PipelineError as e:
            logger.error(f"{config.accession}: differential expression failed for {element.platform}: {e}")
            result = PlatformDEResult(
                platform=element.platform,
                contrasts=[contrast.id for contrast in element.contrasts],
                error=e,
            )
        outcome.platforms.append(result)

    _discard_leftover_plot_data(temp_dir, config)
    return outcome

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

import click

from gxa_analysis.de.aggregation import check_results_file
from gxa_analysis.de.runner import run_differential_expression
from gxa_analysis.errors import (
    EXIT_OK,
    PipelineError,
    StatisticsEngineFailure,
    exit_code_for,
)
from gxa_analysis.experiment.config_xml import config_path
from gxa_analysis.normalization import run_normalization
from gxa_analysis.qc.file_mapping import TechnologyLookup
from gxa_analysis.qc.runner import run_qc
from gxa_analysis.qc.technology import AdfTechnologyLookup, StaticTechnologyLookup
from gxa_analysis.settings import (
    DEFAULT_ADF_INFO_URL,
    MIN_REPLICATES,
    PipelineOptions,
)

LOG_FORMAT = "%(levelname)-5s - %(message)s"

DEFAULT_TEMP_DIR = Path.home() / "tmp"


def report_error(error: PipelineError) -> None:
    """Print the error classification and, for engine failures, its full output."""
    click.echo(f"{type(error).__name__}: {error}", err=True)
    if isinstance(error, StatisticsEngineFailure) and error.output:
        click.echo("------------", err=True)
        click.echo(error.output.rstrip("\n"), err=True)
        click.echo("------------", err=True)


def _technology_lookup(
    technology_file: Optional[Path],
    adf_info_url: str,
    timeout: int,
) -> TechnologyLookup:
    if technology_file is not None:
        return StaticTechnologyLookup.from_tsv(technology_file)
    return AdfTechnologyLookup(adf_info_url, timeout=timeout)


def _finish(errors: Iterable[PipelineError], exit_code: int) -> None:
    for error in errors:
        report_error(error)
    sys.exit(exit_code)


# Options shared by the commands that read raw data.
_experiment_dir_option = click.option(
    "--experiment-dir",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory holding <accession>-configuration.xml; outputs are written here.",
)
_load_dir_option = click.option(
    "--load-dir",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    required=True,
    help="Directory holding the MAGE-TAB IDF/SDRF and raw data files.",
)
_temp_dir_option = click.option(
    "--temp-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    envvar="GXA_TEMP_DIR",
    default=DEFAULT_TEMP_DIR,
    show_default=True,
    help="Directory for temporary engine inputs and outputs.",
)
_min_replicates_option = click.option(
    "--min-replicates",
    type=click.IntRange(1, 100),
    default=MIN_REPLICATES,
    show_default=True,
    help="Minimum number of assays an assay group needs to stay in a contrast.",
)
_technology_file_option = click.option(
    "--technology-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="TSV of array design to technology text; skips the ADF info lookup.",
)
_adf_info_url_option = click.option(
    "--adf-info-url",
    envvar="GXA_ADF_INFO_URL",
    default=DEFAULT_ADF_INFO_URL,
    show_default=True,
    help="URL prefix the array design accession is appended to for technology lookups.",
)
_mirbase_dir_option = click.option(
    "--mirbase-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    envvar="GXA_MIRBASE_DIR",
    default=None,
    help="Directory of microRNA mapping files named *.<array design>.tsv.",
)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """QC, normalization and differential expression for Expression Atlas experiments."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


@cli.command("qc")
@click.argument("accession")
@_experiment_dir_option
@_load_dir_option
@_temp_dir_option
@_min_replicates_option
@_technology_file_option
@_adf_info_url_option
@_mirbase_dir_option
@click.option(
    "--qc-script",
    default=PipelineOptions.qc_script,
    show_default=True,
    help="QC engine script.",
)
def qc_command(
    accession: str,
    experiment_dir: Path,
    load_dir: Path,
    temp_dir: Path,
    min_replicates: int,
    technology_file: Optional[Path],
    adf_info_url: str,
    mirbase_dir: Optional[Path],
    qc_script: str,
) -> None:
    """Run array QC for ACCESSION and remove assays that fail it from the configuration.

    Exits 0 if every assay passed, 1 if assays were rejected, 3 if the QC
    engine failed and 4 on any other error.
    """
    options = PipelineOptions(
        temp_dir=temp_dir,
        min_replicates=min_replicates,
        qc_script=qc_script,
        adf_info_url=adf_info_url,
        mirbase_dir=mirbase_dir,
    )
    try:
        lookup = _technology_lookup(technology_file, adf_info_url, options.request_timeout)
        outcome = run_qc(
            config_path(experiment_dir, accession),
            load_dir,
            options,
            lookup,
            output_dir=experiment_dir,
        )
    except PipelineError as e:
        _finish([e], exit_code_for(e))
        return

    for result in outcome.platforms:
        if result.failed:
            continue
        if result.rejected:
            click.echo(
                f"{result.platform}: {len(result.rejected)} assay(s) failed QC: "
                f"{', '.join(result.rejected)}"
            )
            if result.removed_contrasts:
                click.echo(f"{result.platform}: removed contrasts {', '.join(result.removed_contrasts)}")
        else:
            click.echo(f"{result.platform}: all assays passed QC")
    if outcome.backup is not None:
        click.echo(f"Configuration rewritten; previous version kept as {outcome.backup.name}")
    if outcome.rejected and not outcome.errors:
        click.echo(f"[QC] Quality control for {accession} has failed", err=True)

    _finish(outcome.errors, outcome.exit_code)


@cli.command("normalize")
@click.argument("accession")
@_experiment_dir_option
@_load_dir_option
@_temp_dir_option
@_technology_file_option
@_adf_info_url_option
@_mirbase_dir_option
@click.option(
    "--normalization-script",
    default=PipelineOptions.normalization_script,
    show_default=True,
    help="Normalization engine script.",
)
def normalize_command(
    accession: str,
    experiment_dir: Path,
    load_dir: Path,
    temp_dir: Path,
    technology_file: Optional[Path],
    adf_info_url: str,
    mirbase_dir: Optional[Path],
    normalization_script: str,
) -> None:
    """Normalize raw microarray data for ACCESSION, one file per array design."""
    options = PipelineOptions(
        temp_dir=temp_dir,
        normalization_script=normalization_script,
        adf_info_url=adf_info_url,
        mirbase_dir=mirbase_dir,
    )
    try:
        lookup = _technology_lookup(technology_file, adf_info_url, options.request_timeout)
        outcome = run_normalization(
            config_path(experiment_dir, accession),
            load_dir,
            options,
            lookup,
            atlas_dir=experiment_dir,
        )
    except PipelineError as e:
        _finish([e], exit_code_for(e))
        return

    for result in outcome.platforms:
        for output in result.outputs:
            click.echo(f"{result.platform}: wrote {output.name}")

    _finish(outcome.errors, outcome.exit_code)


@cli.command("de")
@click.argument("accession")
@_experiment_dir_option
@_temp_dir_option
@_min_replicates_option
@click.option("--plots/--no-plots", default=True, show_default=True, help="Render MvA plots.")
@click.option(
    "--limma-script",
    default=PipelineOptions.limma_script,
    show_default=True,
    help="Microarray differential expression script.",
)
@click.option(
    "--deseq-script",
    default=PipelineOptions.deseq_script,
    show_default=True,
    help="RNA-seq differential expression script.",
)
@click.option(
    "--mva-script",
    default=PipelineOptions.mva_script,
    show_default=True,
    help="MvA plot script.",
)
def de_command(
    accession: str,
    experiment_dir: Path,
    temp_dir: Path,
    min_replicates: int,
    plots: bool,
    limma_script: str,
    deseq_script: str,
    mva_script: str,
) -> None:
    """Run differential expression for ACCESSION and write one results table per platform."""
    options = PipelineOptions(
        temp_dir=temp_dir,
        min_replicates=min_replicates,
        limma_script=limma_script,
        deseq_script=deseq_script,
        mva_script=mva_script,
        make_plots=plots,
    )

    try:
        outcome = run_differential_expression(
            config_path(experiment_dir, accession),
            options,
            atlas_dir=experiment_dir,
        )
    except PipelineError as e:
        _finish([e], exit_code_for(e))
        return

    for result in outcome.platforms:
        if result.results_file is not None and not result.failed:
            click.echo(
                f"{result.platform}: {len(result.contrasts)} contrast(s) written to "
                f"{result.results_file.name}"
            )

    _finish(outcome.errors, outcome.exit_code)


@cli.command("check-results")
@click.argument(
    "results_files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def check_results_command(results_files: Iterable[Path]) -> None:
    """Check that each results table has at least one p-value that is not NA."""
    errors = []
    for results_file in results_files:
        try:
            check_results_file(results_file)
            click.echo(f"{results_file.name}: OK")
        except PipelineError as e:
            errors.append(e)

    _finish(errors, max((exit_code_for(e) for e in errors), default=EXIT_OK))


def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()

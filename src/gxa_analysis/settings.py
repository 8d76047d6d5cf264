"""Pipeline options passed explicitly into every component.

Nothing below the CLI reads environment variables; the CLI maps its options
(some of which accept environment variables) onto ``PipelineOptions``.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Minimum number of assays an assay group needs to take part in a contrast.
MIN_REPLICATES = 2

# Missing-value marker used in results tables and accepted in engine output.
MISSING_VALUE = "NA"

DEFAULT_ADF_INFO_URL = "http://peach.ebi.ac.uk:8480/api/array.txt?acc="


@dataclass
class PipelineOptions:
    """Configuration for QC, normalization and differential expression runs."""

    temp_dir: Path = Path.home() / "tmp"
    min_replicates: int = MIN_REPLICATES

    # External statistics engine scripts (resolved on PATH unless absolute).
    qc_script: str = "arrayQC.R"
    normalization_script: str = "arrayNormalization.R"
    limma_script: str = "diffAtlas_DE_limma.R"
    deseq_script: str = "diffAtlas_DE_deseq.R"
    mva_script: str = "diffAtlas_mvaPlot.R"

    # Technology lookup
    adf_info_url: str = DEFAULT_ADF_INFO_URL
    request_timeout: int = 30

    # Directory of microRNA probe mapping files named ``*.<array design>.tsv``
    mirbase_dir: Optional[Path] = None

    make_plots: bool = True

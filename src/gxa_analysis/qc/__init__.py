"""Array quality control: technology classification, raw file mapping and
propagation of QC rejections through the experiment design.

Usage::

    from gxa_analysis.qc import StaticTechnologyLookup, run_qc
    from gxa_analysis.settings import PipelineOptions

    outcome = run_qc(
        "E-MTAB-1066-configuration.xml",
        "/ae2/load/MTAB/E-MTAB-1066",
        PipelineOptions(),
        StaticTechnologyLookup({"A-AFFY-35": "Affymetrix GeneChip"}),
    )
    print(outcome.rejected, outcome.exit_code)
"""

from gxa_analysis.qc.file_mapping import PlatformFiles, build_file_mappings
from gxa_analysis.qc.reconcile import ReconciliationResult, parse_rejected_assays, reconcile
from gxa_analysis.qc.runner import QCOutcome, run_qc
from gxa_analysis.qc.technology import (
    AdfTechnologyLookup,
    StaticTechnologyLookup,
    Technology,
    classify_technology,
)

__all__ = [
    "AdfTechnologyLookup",
    "PlatformFiles",
    "QCOutcome",
    "ReconciliationResult",
    "StaticTechnologyLookup",
    "Technology",
    "build_file_mappings",
    "classify_technology",
    "parse_rejected_assays",
    "reconcile",
    "run_qc",
]

"""Experiment design model and its document formats.

Usage::

    from gxa_analysis.experiment import parse_configuration_xml

    config = parse_configuration_xml("E-MTAB-1066-configuration.xml")
    for contrast in config.contrasts_for_analytics_element("A-AFFY-35"):
        print(contrast.id, contrast.name)
"""

from gxa_analysis.experiment.config_xml import (
    config_path,
    parse_configuration_xml,
    persist_reconciled_config,
    write_configuration_xml,
)
from gxa_analysis.experiment.magetab import load_raw_assays
from gxa_analysis.experiment.model import (
    RNASEQ_PLATFORM,
    AnalyticsElement,
    Assay,
    AssayGroup,
    ColourMode,
    Contrast,
    ExperimentConfig,
    ExperimentConfigBuilder,
    ExperimentType,
)

__all__ = [
    "RNASEQ_PLATFORM",
    "AnalyticsElement",
    "Assay",
    "AssayGroup",
    "ColourMode",
    "Contrast",
    "ExperimentConfig",
    "ExperimentConfigBuilder",
    "ExperimentType",
    "config_path",
    "load_raw_assays",
    "parse_configuration_xml",
    "persist_reconciled_config",
    "write_configuration_xml",
]

"""
Reader and writer for the Atlas ``<accession>-configuration.xml`` file.

The file defines, per analytics element (one per array design, or one for
RNA-seq):

- the array design accession (absent for RNA-seq)
- assay groups (sets of assays with the same experimental condition)
- contrasts (comparisons between two assay groups)

Example::

    <configuration experimentType="microarray_1colour_mrna_differential">
      <analytics>
        <array_design>A-AFFY-35</array_design>
        <assay_groups>
          <assay_group id="g1" label="wild type">
            <assay>WT1</assay>
            <assay technical_replicate_id="t1">WT2</assay>
          </assay_group>
          ...
        </assay_groups>
        <contrasts>
          <contrast id="g1_g2">
            <name>'mutant' vs 'wild type'</name>
            <reference_assay_group>g1</reference_assay_group>
            <test_assay_group>g2</test_assay_group>
          </contrast>
        </contrasts>
      </analytics>
    </configuration>
"""

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional, Union

from ..errors import MalformedConfig
from ..settings import MIN_REPLICATES
from .model import (
    RNASEQ_PLATFORM,
    Assay,
    ExperimentConfig,
    ExperimentConfigBuilder,
    ExperimentType,
)

logger = logging.getLogger(__name__)

CONFIG_SUFFIX = "-configuration.xml"
BEFORE_QC_SUFFIX = ".beforeQC"

_ACCESSION_RE = re.compile(r"^(E-\w{4}-\d+)")


def config_path(directory: Union[str, Path], accession: str) -> Path:
    """Path of the configuration file for ``accession`` inside ``directory``."""
    return Path(directory) / f"{accession}{CONFIG_SUFFIX}"


def _text(elem: Optional[ET.Element]) -> str:
    if elem is None or not elem.text:
        return ""
    return elem.text.strip()


def parse_configuration_xml(
    config_file: Union[str, Path],
    accession: Optional[str] = None,
    min_replicates: int = MIN_REPLICATES,
) -> ExperimentConfig:
    """
    Parse an Atlas configuration.xml into an ExperimentConfig.

    Args:
        config_file: Path to the configuration file
        accession: Experiment accession; taken from the file name if omitted
        min_replicates: Replicate threshold for assay groups in contrasts

    Returns:
        ExperimentConfig

    Raises:
        MalformedConfig: if the file cannot be read or parsed, or references
            unknown assays or assay groups.
    """
    config_file = Path(config_file)
    if accession is None:
        match = _ACCESSION_RE.match(config_file.name)
        accession = match.group(1) if match else config_file.name.replace(CONFIG_SUFFIX, "")

    try:
        tree = ET.parse(config_file)
    except (ET.ParseError, OSError) as e:
        raise MalformedConfig(f"Could not read XML config {config_file}: {e}") from e

    root = tree.getroot()
    if root.tag != "configuration":
        raise MalformedConfig(
            f"{config_file}: root element is <{root.tag}>, expected <configuration>"
        )

    experiment_type = ExperimentType.parse(root.get("experimentType", ""))
    extra_attributes = [(k, v) for k, v in root.attrib.items() if k != "experimentType"]

    builder = ExperimentConfigBuilder(
        accession,
        experiment_type,
        min_replicates=min_replicates,
        attributes=extra_attributes,
    )

    for analytics in root.findall("analytics"):
        platform = _text(analytics.find("array_design"))
        if not platform:
            if experiment_type.is_microarray:
                raise MalformedConfig(
                    f"{config_file}: analytics element without <array_design> "
                    f"in a microarray experiment"
                )
            platform = RNASEQ_PLATFORM
        builder.add_analytics_element(platform)

        assay_groups_elem = analytics.find("assay_groups")
        if assay_groups_elem is not None:
            for group_elem in assay_groups_elem.findall("assay_group"):
                names = []
                for assay_elem in group_elem.findall("assay"):
                    name = _text(assay_elem)
                    if not name:
                        raise MalformedConfig(
                            f"Empty <assay> in assay group {group_elem.get('id', '')!r}"
                        )
                    if not builder.has_assay(name):
                        builder.add_assay(Assay(
                            name=name,
                            array_design="" if platform == RNASEQ_PLATFORM else platform,
                            technical_replicate_id=assay_elem.get("technical_replicate_id"),
                        ))
                    names.append(name)

                builder.add_assay_group(
                    platform,
                    group_elem.get("id", ""),
                    names,
                    label=group_elem.get("label", ""),
                )

        contrasts_elem = analytics.find("contrasts")
        if contrasts_elem is not None:
            for contrast_elem in contrasts_elem.findall("contrast"):
                reference = _text(contrast_elem.find("reference_assay_group"))
                test = _text(contrast_elem.find("test_assay_group"))
                attributes = [(k, v) for k, v in contrast_elem.attrib.items() if k != "id"]

                builder.add_contrast(
                    platform,
                    test_group_id=test,
                    reference_group_id=reference,
                    name=_text(contrast_elem.find("name")),
                    contrast_id=contrast_elem.get("id") or None,
                    attributes=attributes,
                )

    config = builder.build()
    logger.debug(
        "Parsed %s: %d analytics element(s), %d assay(s)",
        config_file, len(config.analytics), len(config.all_assay_names()),
    )
    return config


def build_configuration_tree(config: ExperimentConfig) -> ET.ElementTree:
    """Serialize an ExperimentConfig back into a configuration element tree."""
    root = ET.Element("configuration")
    root.set("experimentType", config.experiment_type.name)
    for key, value in config.attributes:
        root.set(key, value)

    for element in config.analytics:
        analytics_elem = ET.SubElement(root, "analytics")
        if not element.is_rnaseq:
            ET.SubElement(analytics_elem, "array_design").text = element.platform

        groups_elem = ET.SubElement(analytics_elem, "assay_groups")
        for group in element.assay_groups:
            group_elem = ET.SubElement(groups_elem, "assay_group", id=group.id)
            if group.label:
                group_elem.set("label", group.label)
            for name in group.assays:
                assay_elem = ET.SubElement(group_elem, "assay")
                assay = config.assay(name)
                if assay is not None and assay.technical_replicate_id:
                    assay_elem.set("technical_replicate_id", assay.technical_replicate_id)
                assay_elem.text = name

        contrasts_elem = ET.SubElement(analytics_elem, "contrasts")
        for contrast in element.contrasts:
            contrast_elem = ET.SubElement(contrasts_elem, "contrast", id=contrast.id)
            for key, value in contrast.attributes:
                contrast_elem.set(key, value)
            ET.SubElement(contrast_elem, "name").text = contrast.name
            ET.SubElement(contrast_elem, "reference_assay_group").text = contrast.reference_group_id
            ET.SubElement(contrast_elem, "test_assay_group").text = contrast.test_group_id

    tree = ET.ElementTree(root)
    ET.indent(tree, space="    ")
    return tree


def write_configuration_xml(config: ExperimentConfig, output_file: Union[str, Path]) -> Path:
    """Write ``config`` to ``output_file`` (written to ``.auto`` first, then moved)."""
    output_file = Path(output_file)
    staging = output_file.with_name(output_file.name + ".auto")
    build_configuration_tree(config).write(staging, encoding="utf-8", xml_declaration=True)
    staging.replace(output_file)
    return output_file


def backup_path(config_file: Union[str, Path]) -> Path:
    """First free ``.beforeQC`` name next to ``config_file``.

    An existing backup is never overwritten; later backups get a numeric
    suffix (``.beforeQC.1``, ``.beforeQC.2``, ...).
    """
    config_file = Path(config_file)
    candidate = config_file.with_name(config_file.name + BEFORE_QC_SUFFIX)
    counter = 1
    while candidate.exists():
        candidate = config_file.with_name(f"{config_file.name}{BEFORE_QC_SUFFIX}.{counter}")
        counter += 1
    return candidate


def _check_contrast_groups(config: ExperimentConfig) -> None:
    for element in config.analytics:
        for contrast in element.contrasts:
            for group_id in contrast.group_ids:
                group = element.group(group_id)
                if group is None or not config.is_group_valid(group):
                    raise MalformedConfig(
                        f"Refusing to write {config.accession}: contrast {contrast.id!r} on "
                        f"{element.platform} uses missing or undersized assay group {group_id!r}"
                    )


def persist_reconciled_config(
    config: ExperimentConfig,
    config_file: Union[str, Path],
) -> Path:
    """Keep the current config file as an audit copy and write ``config`` in its place.

    Returns:
        Path of the audit copy.

    Raises:
        MalformedConfig: if a contrast uses an assay group that is missing
            or below the replicate threshold; the file is left untouched.
    """
    _check_contrast_groups(config)
    config_file = Path(config_file)
    backup = backup_path(config_file)
    logger.info(f"Renaming original XML config file to \"{backup.name}\"")
    config_file.rename(backup)

    logger.info("Writing new XML config file without assays that failed QC...")
    write_configuration_xml(config, config_file)
    logger.info("Successfully written new XML config file.")
    return backup

"""Shared fixtures: a scripted statistics engine and small experiment directories."""

from pathlib import Path
from typing import Callable, Dict, List, Tuple

import pytest

from gxa_analysis.engine import EngineResult, StatisticsEngine
from gxa_analysis.settings import PipelineOptions

Handler = Callable[..., Tuple[int, str]]


class FakeEngine(StatisticsEngine):
    """Engine whose scripts are Python callables returning ``(returncode, output)``."""

    def __init__(self, handlers: Dict[str, Handler]):
        super().__init__()
        self.handlers = handlers
        self.calls: List[Tuple[str, Tuple[str, ...]]] = []

    def run(self, script, *args):
        str_args = tuple(str(arg) for arg in args)
        self.calls.append((script, str_args))
        returncode, output = self.handlers[script](*str_args)
        return EngineResult([script, *str_args], returncode, output)


def microarray_config_xml(platforms: Dict[str, Dict[str, List[str]]], colour: str = "1colour") -> str:
    """Configuration with one analytics element per platform and a g<first>_g<next> contrast chain."""
    parts = [f'<configuration experimentType="microarray_{colour}_mrna_differential">']
    for platform, groups in platforms.items():
        parts.append(f"<analytics><array_design>{platform}</array_design><assay_groups>")
        for group_id, assays in groups.items():
            parts.append(f'<assay_group id="{group_id}">')
            parts.extend(f"<assay>{name}</assay>" for name in assays)
            parts.append("</assay_group>")
        parts.append("</assay_groups><contrasts>")
        group_ids = list(groups)
        reference = group_ids[0]
        for test in group_ids[1:]:
            parts.append(
                f'<contrast id="{reference}_{test}"><name>{test} vs {reference}</name>'
                f"<reference_assay_group>{reference}</reference_assay_group>"
                f"<test_assay_group>{test}</test_assay_group></contrast>"
            )
        parts.append("</contrasts></analytics>")
    parts.append("</configuration>")
    return "\n".join(parts)


def rnaseq_config_xml(groups: Dict[str, List[str]], experiment_type: str = "rnaseq_mrna_differential") -> str:
    parts = [f'<configuration experimentType="{experiment_type}"><analytics><assay_groups>']
    for group_id, assays in groups.items():
        parts.append(f'<assay_group id="{group_id}">')
        parts.extend(f"<assay>{name}</assay>" for name in assays)
        parts.append("</assay_group>")
    parts.append("</assay_groups><contrasts>")
    group_ids = list(groups)
    for test in group_ids[1:]:
        parts.append(
            f'<contrast id="{group_ids[0]}_{test}"><name>{test} vs {group_ids[0]}</name>'
            f"<reference_assay_group>{group_ids[0]}</reference_assay_group>"
            f"<test_assay_group>{test}</test_assay_group></contrast>"
        )
    parts.append("</contrasts></analytics></configuration>")
    return "\n".join(parts)


def write_magetab(load_dir: Path, accession: str, rows: List[Tuple[str, str, str]]) -> None:
    """Write an IDF and a one-colour SDRF with ``(assay, array design, genotype)`` rows."""
    load_dir.mkdir(parents=True, exist_ok=True)
    (load_dir / f"{accession}.idf.txt").write_text(
        f"Investigation Title\tTest\nSDRF File\t{accession}.sdrf.txt\n", encoding="utf-8"
    )
    lines = ["Assay Name\tArray Design REF\tArray Data File\tFactor Value[genotype]"]
    lines.extend(f"{name}\t{design}\t{name}.CEL\t{genotype}" for name, design, genotype in rows)
    (load_dir / f"{accession}.sdrf.txt").write_text("\n".join(lines) + "\n", encoding="utf-8")


@pytest.fixture
def options(tmp_path):
    return PipelineOptions(temp_dir=tmp_path / "tmp", make_plots=False)

"""Tests for the differential expression orchestrator."""

from pathlib import Path

import pandas as pd
import pytest

from conftest import FakeEngine, microarray_config_xml, rnaseq_config_xml
from gxa_analysis.errors import (
    EXIT_ENGINE_FAILURE,
    EXIT_OK,
    EXIT_PIPELINE_ERROR,
    MalformedConfig,
    MalformedStatistic,
    StatisticsEngineFailure,
)
from gxa_analysis.de.runner import mva_plot_file, run_differential_expression

LIMMA_HEADER = "designElements\tadj.P.Val\tt\tlogFC\n"
DESEQ_HEADER = "id\tbaseMean\tlog2FoldChange\tpvalue\tpadj\n"


def _read(path):
    return pd.read_csv(path, sep="\t", dtype=str, keep_default_na=False)


def _write_config(tmp_path, text, accession):
    path = tmp_path / f"{accession}-configuration.xml"
    path.write_text(text, encoding="utf-8")
    return path


def _engine_writing(temp_dir, accession, files, script, returncode=0, output="done\n"):
    """Engine whose DE script drops ``{contrast id: analytics text}`` into the temp dir."""
    def de_script(*args):
        for contrast_id, text in files.items():
            (Path(temp_dir) / f"{accession}.{contrast_id}.analytics.tsv").write_text(text, encoding="utf-8")
            (Path(temp_dir) / f"{accession}.{contrast_id}.plotdata.tsv").write_text("A\tM\n", encoding="utf-8")
        return returncode, output

    def mva_script(plot_data, name, plot_file, kind):
        Path(plot_file).write_bytes(b"png")
        return 0, ""

    return FakeEngine({script: de_script, "diffAtlas_mvaPlot.R": mva_script})


class TestMicroarray:
    def test_results_written_per_platform(self, tmp_path, options):
        accession = "E-TEST-1"
        config_file = _write_config(tmp_path, microarray_config_xml({
            "A-TEST-1": {"g1": ["a1", "a2"], "g2": ["a3", "a4"], "g3": ["a5", "a6"]},
        }), accession)
        engine = _engine_writing(options.temp_dir, accession, {
            "g1_g2": LIMMA_HEADER + "p1\t0.01\t2.1\t1.1\np2\t0.2\t0.3\t0.1\n",
            "g1_g3": LIMMA_HEADER + "p2\t0.03\t-2\t-1\np3\tNA\tNA\tNA\n",
        }, options.limma_script)

        outcome = run_differential_expression(config_file, options, engine=engine)

        assert outcome.exit_code == EXIT_OK
        assert engine.calls[0] == (options.limma_script, (accession, str(tmp_path)))

        results = _read(tmp_path / "E-TEST-1_A-TEST-1-analytics.tsv.undecorated")
        assert list(results.columns) == [
            "Design Element",
            "g1_g2.p-value", "g1_g2.t-statistic", "g1_g2.log2foldchange",
            "g1_g3.p-value", "g1_g3.t-statistic", "g1_g3.log2foldchange",
        ]
        assert list(results["Design Element"]) == ["p1", "p2", "p3"]
        assert results.iloc[0].tolist() == ["p1", "0.01", "2.1", "1.1", "NA", "NA", "NA"]
        assert list(options.temp_dir.iterdir()) == []

    def test_malformed_statistic_isolated_to_platform(self, tmp_path, options):
        accession = "E-TEST-1"
        config_file = _write_config(tmp_path, microarray_config_xml({
            "A-TEST-1": {"g1": ["a1", "a2"], "g2": ["a3", "a4"]},
            "A-TEST-2": {"g3": ["b1", "b2"], "g4": ["b3", "b4"]},
        }), accession)
        engine = _engine_writing(options.temp_dir, accession, {
            "g1_g2": LIMMA_HEADER + "p1\t0.01\tabc\t1.1\n",
            "g3_g4": LIMMA_HEADER + "q1\t0.01\t2\t1\n",
        }, options.limma_script)

        outcome = run_differential_expression(config_file, options, engine=engine)

        bad, good = outcome.platforms
        assert isinstance(bad.error, MalformedStatistic)
        assert bad.error.value == "abc"
        assert good.results_file.exists()
        assert not (tmp_path / "E-TEST-1_A-TEST-1-analytics.tsv.undecorated").exists()
        assert outcome.exit_code == EXIT_PIPELINE_ERROR

    def test_engine_failure(self, tmp_path, options):
        accession = "E-TEST-1"
        config_file = _write_config(tmp_path, microarray_config_xml({
            "A-TEST-1": {"g1": ["a1", "a2"], "g2": ["a3", "a4"]},
        }), accession)
        engine = _engine_writing(
            options.temp_dir, accession, {}, options.limma_script, returncode=1, output="Error: singular\n"
        )

        outcome = run_differential_expression(config_file, options, engine=engine)

        assert isinstance(outcome.error, StatisticsEngineFailure)
        assert outcome.error.output == "Error: singular\n"
        assert outcome.exit_code == EXIT_ENGINE_FAILURE

    def test_empty_engine_table(self, tmp_path, options):
        """An empty per-contrast table is an engine failure, not a crash."""
        accession = "E-TEST-1"
        config_file = _write_config(tmp_path, microarray_config_xml({
            "A-TEST-1": {"g1": ["a1", "a2"], "g2": ["a3", "a4"]},
        }), accession)
        engine = _engine_writing(options.temp_dir, accession, {"g1_g2": ""}, options.limma_script)

        outcome = run_differential_expression(config_file, options, engine=engine)

        assert isinstance(outcome.error, StatisticsEngineFailure)
        assert "g1_g2.analytics.tsv" in str(outcome.error)
        assert outcome.exit_code == EXIT_ENGINE_FAILURE

    def test_plots(self, tmp_path, options):
        accession = "E-TEST-1"
        options.make_plots = True
        config_file = _write_config(tmp_path, microarray_config_xml({
            "A-TEST-1": {"g1": ["a1", "a2"], "g2": ["a3", "a4"]},
        }), accession)
        engine = _engine_writing(options.temp_dir, accession, {
            "g1_g2": LIMMA_HEADER + "p1\t0.01\t2.1\t1.1\n",
        }, options.limma_script)

        outcome = run_differential_expression(config_file, options, engine=engine)

        plot = tmp_path / "E-TEST-1_A-TEST-1-g1_g2-mvaPlot.png"
        assert outcome.platforms[0].plots == [plot]
        assert plot.exists()
        script, args = engine.calls[1]
        assert script == options.mva_script
        assert args[1:] == ("g2 vs g1", str(plot), "microarray")


class TestRnaseq:
    def test_results_written(self, tmp_path, options):
        accession = "E-GEOD-2"
        config_file = _write_config(
            tmp_path, rnaseq_config_xml({"g1": ["r1", "r2"], "g2": ["r3", "r4"]}), accession
        )
        engine = _engine_writing(options.temp_dir, accession, {
            "g1_g2": DESEQ_HEADER + "ENSG2\t10\t-1.5\t0.001\t0.004\nENSG1\t0\tNA\tNA\tNA\n",
        }, options.deseq_script)

        outcome = run_differential_expression(config_file, options, engine=engine)

        assert outcome.exit_code == EXIT_OK
        script, args = engine.calls[0]
        assert script == options.deseq_script
        assert args == (accession, str(tmp_path), str(tmp_path / "E-GEOD-2-raw-counts.tsv.undecorated"))

        results = _read(tmp_path / "E-GEOD-2-analytics.tsv.undecorated")
        assert list(results.columns) == ["Gene ID", "g1_g2.p-value", "g1_g2.log2foldchange"]
        assert results.values.tolist() == [["ENSG1", "NA", "NA"], ["ENSG2", "0.004", "-1.5"]]

    def test_all_na_pvalues(self, tmp_path, options):
        accession = "E-GEOD-2"
        config_file = _write_config(
            tmp_path, rnaseq_config_xml({"g1": ["r1", "r2"], "g2": ["r3", "r4"]}), accession
        )
        engine = _engine_writing(options.temp_dir, accession, {
            "g1_g2": DESEQ_HEADER + "ENSG1\t0\tNA\tNA\tNA\n",
        }, options.deseq_script)

        outcome = run_differential_expression(config_file, options, engine=engine)

        assert isinstance(outcome.platforms[0].error, StatisticsEngineFailure)
        assert outcome.exit_code == EXIT_ENGINE_FAILURE

    def test_baseline_refused(self, tmp_path, options):
        config_file = _write_config(
            tmp_path,
            rnaseq_config_xml({"g1": ["r1", "r2"]}, experiment_type="rnaseq_mrna_baseline"),
            "E-GEOD-3",
        )
        with pytest.raises(MalformedConfig, match="baseline"):
            run_differential_expression(config_file, options, engine=FakeEngine({}))


def test_mva_plot_file_names(tmp_path):
    assert mva_plot_file(tmp_path, "E-1", "A-AFFY-35", "g1_g2").name == "E-1_A-AFFY-35-g1_g2-mvaPlot.png"
    assert mva_plot_file(tmp_path, "E-1", "rnaseq", "g1_g2").name == "E-1-g1_g2-mvaPlot.png"

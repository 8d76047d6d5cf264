"""Tests for the statistics engine subprocess adapter."""

import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest

from gxa_analysis.engine import StatisticsEngine
from gxa_analysis.errors import StatisticsEngineFailure


def _completed(returncode=0, stdout=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    return result


@patch("gxa_analysis.engine.shutil.which", return_value="/opt/bin/arrayQC.R")
class TestStatisticsEngine:
    def test_run_captures_combined_output(self, mock_which):
        engine = StatisticsEngine(cwd="/work")
        with patch("gxa_analysis.engine.subprocess.run", return_value=_completed(0, "ok\n")) as mock_run:
            result = engine.run("arrayQC.R", "annot.tsv", "affy", 0)

        assert result.ok
        assert result.output == "ok\n"
        assert result.command == ["/opt/bin/arrayQC.R", "annot.tsv", "affy", "0"]
        kwargs = mock_run.call_args.kwargs
        assert kwargs["stdout"] is subprocess.PIPE
        assert kwargs["stderr"] is subprocess.STDOUT
        assert kwargs["text"] is True
        assert kwargs["errors"] == "replace"
        assert str(kwargs["cwd"]) == "/work"

    def test_run_checked_raises_with_output(self, mock_which):
        engine = StatisticsEngine()
        with patch("gxa_analysis.engine.subprocess.run", return_value=_completed(1, "Error in R\n")):
            with pytest.raises(StatisticsEngineFailure) as excinfo:
                engine.run_checked("arrayQC.R", action="quality metrics calculation")

        assert excinfo.value.output == "Error in R\n"
        assert excinfo.value.returncode == 1
        assert "quality metrics calculation" in str(excinfo.value)

    def test_non_zero_run_does_not_raise(self, mock_which):
        engine = StatisticsEngine()
        with patch("gxa_analysis.engine.subprocess.run", return_value=_completed(2, "")):
            assert not engine.run("arrayQC.R").ok

    def test_os_error(self, mock_which):
        engine = StatisticsEngine()
        with patch("gxa_analysis.engine.subprocess.run", side_effect=PermissionError("denied")):
            with pytest.raises(StatisticsEngineFailure, match="denied"):
                engine.run("arrayQC.R")


def test_missing_script():
    with patch("gxa_analysis.engine.shutil.which", return_value=None):
        with pytest.raises(StatisticsEngineFailure, match="not found"):
            StatisticsEngine().run("missing.R")


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
def test_undecodable_output_kept(tmp_path):
    """Bytes that are not UTF-8 are replaced rather than losing the output."""
    script = tmp_path / "broken.R"
    script.write_bytes(b"#!/bin/sh\nprintf 'assay \\377 failed\\n'\nexit 1\n")
    script.chmod(0o755)

    with patch("gxa_analysis.engine.shutil.which", return_value=str(script)):
        with pytest.raises(StatisticsEngineFailure) as excinfo:
            StatisticsEngine().run_checked("broken.R")

    assert excinfo.value.returncode == 1
    assert excinfo.value.output == "assay \ufffd failed\n"

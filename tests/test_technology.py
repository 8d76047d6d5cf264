"""Tests for array technology classification and lookups."""

from unittest.mock import MagicMock

import pytest
import requests

from gxa_analysis.errors import MalformedConfig, UnknownTechnology
from gxa_analysis.experiment.model import ColourMode
from gxa_analysis.qc.technology import (
    AdfTechnologyLookup,
    StaticTechnologyLookup,
    Technology,
    classify_technology,
    split_label,
    strip_label,
)


class TestClassifyTechnology:
    @pytest.mark.parametrize("text, expected", [
        ("Affymetrix GeneChip", Technology.AFFY),
        ("AFFYMETRIX", Technology.AFFY),
        ("Illumina HumanHT-12 V4.0", Technology.LUMI),
        ("Agilent Whole Human Genome", Technology.AGIL1),
    ])
    def test_one_colour_vendor_match(self, text, expected):
        assert classify_technology("A-TEST-1", text, ColourMode.ONE_COLOUR) is expected

    def test_vendor_priority(self):
        """Affymetrix wins over Illumina and Agilent when several are mentioned."""
        text = "Agilent and Illumina and Affymetrix"
        assert classify_technology("A-TEST-1", text, ColourMode.ONE_COLOUR) is Technology.AFFY

    def test_two_colour_is_always_agil2(self):
        assert classify_technology("A-TEST-1", "Affymetrix", ColourMode.TWO_COLOUR) is Technology.AGIL2
        assert classify_technology("A-TEST-1", None, ColourMode.TWO_COLOUR) is Technology.AGIL2

    @pytest.mark.parametrize("text", [None, "", "Nimblegen"])
    def test_unknown(self, text):
        with pytest.raises(UnknownTechnology) as excinfo:
            classify_technology("A-TEST-1", text, ColourMode.ONE_COLOUR)
        assert excinfo.value.array_design == "A-TEST-1"

    def test_string_values(self):
        assert [t.value for t in Technology] == ["affy", "lumi", "agil1", "agil2"]
        assert Technology.AGIL2.is_two_colour
        assert not Technology.AGIL1.is_two_colour


class TestLabels:
    def test_split(self):
        assert split_label("hyb1.Cy3") == ("hyb1", "Cy3")
        assert split_label("hyb1.Cy5") == ("hyb1", "Cy5")

    def test_unlabelled_passes_through(self):
        assert split_label("sample.1") == ("sample.1", None)
        assert strip_label("WT1") == "WT1"


class TestAdfTechnologyLookup:
    def _session(self, text="Affymetrix GeneChip\n"):
        response = MagicMock()
        response.text = text
        response.raise_for_status.return_value = None
        session = MagicMock()
        session.get.return_value = response
        return session

    def test_fetches_and_caches(self):
        session = self._session()
        lookup = AdfTechnologyLookup("http://adf/?acc=", session=session)

        assert lookup("A-AFFY-35") == "Affymetrix GeneChip"
        assert lookup("A-AFFY-35") == "Affymetrix GeneChip"
        session.get.assert_called_once_with("http://adf/?acc=A-AFFY-35")

    def test_http_error_is_unknown_technology(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")
        lookup = AdfTechnologyLookup("http://adf/?acc=", session=session)

        with pytest.raises(UnknownTechnology):
            lookup("A-AFFY-35")


class TestStaticTechnologyLookup:
    def test_from_tsv(self, tmp_path):
        path = tmp_path / "technologies.tsv"
        path.write_text("# comment\nA-AFFY-35\tAffymetrix\nA-MEXP-1\tIllumina\n", encoding="utf-8")
        lookup = StaticTechnologyLookup.from_tsv(path)
        assert lookup("A-MEXP-1") == "Illumina"
        assert lookup("A-AFFY-35") == "Affymetrix"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "technologies.tsv"
        path.write_text("", encoding="utf-8")
        with pytest.raises(UnknownTechnology):
            StaticTechnologyLookup.from_tsv(path)("A-AFFY-35")

    def test_single_column_rejected(self, tmp_path):
        path = tmp_path / "technologies.tsv"
        path.write_text("A-AFFY-35\n", encoding="utf-8")
        with pytest.raises(MalformedConfig):
            StaticTechnologyLookup.from_tsv(path)

    def test_missing_design(self):
        with pytest.raises(UnknownTechnology):
            StaticTechnologyLookup({})("A-AFFY-35")

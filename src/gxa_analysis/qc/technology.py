"""
Array technology classification.

The statistics engine needs to know which model to apply to an array
design's raw data. One-colour designs are classified from the free-text
technology the ArrayExpress ADF record gives (vendor name); two-colour
designs are always processed as Agilent two-colour.
"""

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import MalformedConfig, UnknownTechnology
from ..experiment.model import ColourMode

logger = logging.getLogger(__name__)

_LABEL_SUFFIX_RE = re.compile(r"\.(Cy\d)$")


class Technology(Enum):
    """Processing mode handed to the statistics engine."""

    AFFY = "affy"
    LUMI = "lumi"
    AGIL1 = "agil1"
    AGIL2 = "agil2"

    @property
    def is_two_colour(self) -> bool:
        return self is Technology.AGIL2


# Checked in order; the first vendor found in the technology text wins.
VENDOR_TECHNOLOGIES = (
    ("affymetrix", Technology.AFFY),
    ("illumina", Technology.LUMI),
    ("agilent", Technology.AGIL1),
)


def classify_technology(
    array_design: str,
    technology_text: Optional[str],
    colour_mode: ColourMode,
) -> Technology:
    """
    Classify an array design into a processing mode.

    Args:
        array_design: Array design accession (for error messages)
        technology_text: Free-text technology/vendor description
        colour_mode: Experiment's colour-channel mode

    Returns:
        Technology member

    Raises:
        UnknownTechnology: for one-colour designs with no recognised vendor
    """
    if colour_mode is ColourMode.TWO_COLOUR:
        return Technology.AGIL2

    text = (technology_text or "").lower()
    for vendor, technology in VENDOR_TECHNOLOGIES:
        if vendor in text:
            return technology

    raise UnknownTechnology(array_design, technology_text)


def split_label(assay_name: str) -> Tuple[str, Optional[str]]:
    """Split ``hyb1.Cy3`` into ``("hyb1", "Cy3")``; unlabelled names pass through."""
    match = _LABEL_SUFFIX_RE.search(assay_name)
    if not match:
        return assay_name, None
    return assay_name[: match.start()], match.group(1)


def strip_label(assay_name: str) -> str:
    return split_label(assay_name)[0]


# =============================================================================
# Technology lookups
# =============================================================================


def configure_session(timeout: int = 30) -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=5,
        backoff_factor=2.0,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET",),
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": "gxa-analysis/0.1"})
    session.request = _wrap_with_timeout(session.request, timeout=timeout)
    return session


def _wrap_with_timeout(request_method, timeout: int):
    def request_with_timeout(method, url, **kwargs):
        kwargs.setdefault("timeout", timeout)
        return request_method(method, url, **kwargs)

    return request_with_timeout


class AdfTechnologyLookup:
    """Looks up array design technology text from the ArrayExpress ADF info API.

    Responses are cached per accession for the lifetime of the lookup.

    Args:
        adf_info_url: URL prefix the accession is appended to
        session: Optional pre-configured requests session
        timeout: Request timeout in seconds (used when creating a session)
    """

    def __init__(
        self,
        adf_info_url: str,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ) -> None:
        self.adf_info_url = adf_info_url
        self._session = session or configure_session(timeout)
        self._cache: Dict[str, str] = {}

    def __call__(self, array_design: str) -> str:
        if array_design not in self._cache:
            url = f"{self.adf_info_url}{array_design}"
            logger.debug("Fetching technology for %s from %s", array_design, url)
            try:
                response = self._session.get(url)
                response.raise_for_status()
            except requests.RequestException as exc:
                raise UnknownTechnology(array_design) from exc
            self._cache[array_design] = response.text.strip()
        return self._cache[array_design]


class StaticTechnologyLookup:
    """Technology text from a fixed mapping of array design to description."""

    def __init__(self, technologies: Dict[str, str]) -> None:
        self._technologies = dict(technologies)

    def __call__(self, array_design: str) -> str:
        try:
            return self._technologies[array_design]
        except KeyError:
            raise UnknownTechnology(array_design) from None

    @classmethod
    def from_tsv(cls, path: Union[str, Path]) -> "StaticTechnologyLookup":
        """Read a two-column ``array design<TAB>technology`` file."""
        try:
            df = pd.read_csv(
                path, sep="\t", header=None, comment="#", dtype=str, keep_default_na=False
            )
        except pd.errors.EmptyDataError:
            return cls({})
        except pd.errors.ParserError as e:
            raise MalformedConfig(f"Could not parse technology file {path}: {e}") from e
        if len(df.columns) < 2:
            raise MalformedConfig(f"Technology file {path} needs array design and technology columns")

        technologies: Dict[str, str] = {}
        for array_design, technology in zip(df[0], df[1]):
            if isinstance(array_design, str) and array_design.strip():
                technologies[array_design.strip()] = str(technology).strip()
        return cls(technologies)

"""
In-memory design model of an Expression Atlas experiment.

An experiment is a set of analytics elements, one per platform (array
design accession, or ``rnaseq``). Each analytics element holds assay groups
and the contrasts comparing them. All model classes are frozen: operations
that change the design return a new snapshot instead of mutating in place.

``ExperimentConfigBuilder`` is the only mutable piece and is used while
reading a configuration document.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import MalformedConfig
from ..settings import MIN_REPLICATES

RNASEQ_PLATFORM = "rnaseq"


class ColourMode(Enum):
    """Number of dye channels per hybridization."""

    ONE_COLOUR = "1colour"
    TWO_COLOUR = "2colour"


@dataclass(frozen=True)
class ExperimentType:
    """Atlas experiment type such as ``microarray_1colour_mrna_differential``."""

    name: str

    @property
    def is_microarray(self) -> bool:
        return self.name.startswith("microarray")

    @property
    def is_rnaseq(self) -> bool:
        return self.name.startswith("rnaseq")

    @property
    def is_baseline(self) -> bool:
        return self.name.endswith("baseline")

    @property
    def is_differential(self) -> bool:
        return self.name.endswith("differential")

    @property
    def colour_mode(self) -> Optional[ColourMode]:
        if "2colour" in self.name:
            return ColourMode.TWO_COLOUR
        if "1colour" in self.name:
            return ColourMode.ONE_COLOUR
        return None

    @classmethod
    def parse(cls, name: str) -> "ExperimentType":
        """Parse and sanity-check an experiment type string."""
        name = (name or "").strip()
        experiment_type = cls(name)
        if not (experiment_type.is_microarray or experiment_type.is_rnaseq):
            raise MalformedConfig(f"Unrecognised experiment type: {name!r}")
        if not (experiment_type.is_baseline or experiment_type.is_differential):
            raise MalformedConfig(
                f"Experiment type {name!r} is neither baseline nor differential"
            )
        if experiment_type.is_microarray and experiment_type.colour_mode is None:
            raise MalformedConfig(
                f"Microarray experiment type {name!r} does not state a colour mode"
            )
        return experiment_type


@dataclass(frozen=True)
class Assay:
    """One hybridization (or one channel of a two-colour hybridization)."""

    name: str
    array_design: str = ""
    # Ordered (factor name, factor values) pairs
    factors: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    label: Optional[str] = None
    data_file: str = ""
    technical_replicate_id: Optional[str] = None

    @property
    def factor_dict(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self.factors)


@dataclass(frozen=True)
class AssayGroup:
    """A named replicate set used as one side of a contrast."""

    id: str
    assays: Tuple[str, ...] = ()
    label: str = ""


@dataclass(frozen=True)
class Contrast:
    """A test-vs-reference comparison between two assay groups."""

    id: str
    name: str
    test_group_id: str
    reference_group_id: str
    platform: str = ""
    # Extra XML attributes such as cttv_primary, kept for round trips
    attributes: Tuple[Tuple[str, str], ...] = ()

    @property
    def group_ids(self) -> Tuple[str, str]:
        return (self.reference_group_id, self.test_group_id)


def make_contrast_id(reference_group_id: str, test_group_id: str) -> str:
    """Contrast identifiers join the reference and test group ids, e.g. ``g1_g2``."""
    return f"{reference_group_id}_{test_group_id}"


@dataclass(frozen=True)
class AnalyticsElement:
    """One platform's unit of analysis."""

    platform: str
    assay_groups: Tuple[AssayGroup, ...] = ()
    contrasts: Tuple[Contrast, ...] = ()

    @property
    def is_rnaseq(self) -> bool:
        return self.platform == RNASEQ_PLATFORM

    @property
    def is_vestigial(self) -> bool:
        """True when no contrast is left to report on."""
        return not self.contrasts

    def group(self, group_id: str) -> Optional[AssayGroup]:
        for assay_group in self.assay_groups:
            if assay_group.id == group_id:
                return assay_group
        return None

    def assay_names(self) -> List[str]:
        names: List[str] = []
        for assay_group in self.assay_groups:
            for name in assay_group.assays:
                if name not in names:
                    names.append(name)
        return names


@dataclass(frozen=True)
class ExperimentConfig:
    """The whole experiment design.

    ``min_replicates`` is a processing threshold, not part of the document,
    so it is excluded from equality.
    """

    accession: str
    experiment_type: ExperimentType
    analytics: Tuple[AnalyticsElement, ...] = ()
    assays: Tuple[Assay, ...] = ()
    attributes: Tuple[Tuple[str, str], ...] = ()
    min_replicates: int = field(default=MIN_REPLICATES, compare=False)

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def is_group_valid(self, group: AssayGroup) -> bool:
        return len(group.assays) >= self.min_replicates

    def platforms(self) -> List[str]:
        return [element.platform for element in self.analytics]

    def analytics_element(self, platform: str) -> Optional[AnalyticsElement]:
        for element in self.analytics:
            if element.platform == platform:
                return element
        return None

    def all_assay_names(self) -> List[str]:
        """Names of all assays still referenced by an assay group."""
        names: List[str] = []
        for element in self.analytics:
            for name in element.assay_names():
                if name not in names:
                    names.append(name)
        return names

    def assay(self, name: str) -> Optional[Assay]:
        for assay in self.assays:
            if assay.name == name:
                return assay
        return None

    def contrasts_for_analytics_element(self, platform: str) -> Tuple[Contrast, ...]:
        element = self.analytics_element(platform)
        if element is None:
            return ()
        return element.contrasts

    def contrast_ids_to_names(self) -> Dict[str, str]:
        return {
            contrast.id: contrast.name
            for element in self.analytics
            for contrast in element.contrasts
        }

    def contrast_ids_to_platforms(self) -> Dict[str, str]:
        return {
            contrast.id: element.platform
            for element in self.analytics
            for contrast in element.contrasts
        }

    # -----------------------------------------------------------------
    # Snapshot operations
    # -----------------------------------------------------------------

    def with_analytics_element(self, element: AnalyticsElement) -> "ExperimentConfig":
        """Return a copy with the element of the same platform replaced."""
        analytics = tuple(
            element if existing.platform == element.platform else existing
            for existing in self.analytics
        )
        return replace(self, analytics=analytics)

    def remove_assay(self, name: str, platform: Optional[str] = None) -> "ExperimentConfig":
        """Return a copy without ``name`` in any assay group.

        Only the given platform is touched when ``platform`` is set. Groups
        and contrasts are left alone even if they are no longer valid.
        """
        analytics = []
        for element in self.analytics:
            if platform is not None and element.platform != platform:
                analytics.append(element)
                continue
            groups = tuple(
                replace(group, assays=tuple(a for a in group.assays if a != name))
                for group in element.assay_groups
            )
            analytics.append(replace(element, assay_groups=groups))
        return replace(self, analytics=tuple(analytics))


class ExperimentConfigBuilder:
    """Accumulates assays, groups and contrasts, checking references as it goes."""

    def __init__(
        self,
        accession: str,
        experiment_type: ExperimentType,
        min_replicates: int = MIN_REPLICATES,
        attributes: Iterable[Tuple[str, str]] = (),
    ):
        self.accession = accession
        self.experiment_type = experiment_type
        self.min_replicates = min_replicates
        self.attributes = tuple(attributes)
        self._assays: Dict[str, Assay] = {}
        self._groups: Dict[str, Dict[str, AssayGroup]] = {}
        self._contrasts: Dict[str, Dict[str, Contrast]] = {}

    def add_analytics_element(self, platform: str) -> None:
        if platform in self._groups:
            raise MalformedConfig(f"Duplicate analytics element for platform {platform}")
        self._groups[platform] = {}
        self._contrasts[platform] = {}

    def has_assay(self, name: str) -> bool:
        return name in self._assays

    def add_assay(self, assay: Assay) -> None:
        if assay.name in self._assays:
            raise MalformedConfig(f"Assay {assay.name!r} is listed more than once")
        self._assays[assay.name] = assay

    def add_assay_group(
        self,
        platform: str,
        group_id: str,
        assay_names: Iterable[str],
        label: str = "",
    ) -> AssayGroup:
        groups = self._platform_groups(platform)
        if not group_id:
            raise MalformedConfig(f"Assay group without an id in {platform}")
        if group_id in groups:
            raise MalformedConfig(f"Duplicate assay group {group_id!r} in {platform}")

        names = tuple(assay_names)
        for name in names:
            if name not in self._assays:
                raise MalformedConfig(
                    f"Assay group {group_id!r} references unknown assay {name!r}"
                )

        group = AssayGroup(id=group_id, assays=names, label=label)
        groups[group_id] = group
        return group

    def add_contrast(
        self,
        platform: str,
        test_group_id: str,
        reference_group_id: str,
        name: str,
        contrast_id: Optional[str] = None,
        attributes: Iterable[Tuple[str, str]] = (),
    ) -> Contrast:
        groups = self._platform_groups(platform)
        for group_id in (test_group_id, reference_group_id):
            group = groups.get(group_id)
            if group is None:
                raise MalformedConfig(
                    f"Contrast {name!r} references unknown assay group {group_id!r}"
                )
            if len(group.assays) < self.min_replicates:
                raise MalformedConfig(
                    f"Assay group {group_id!r} has {len(group.assays)} assays, fewer "
                    f"than the {self.min_replicates} needed for contrast {name!r}"
                )

        contrast_id = contrast_id or make_contrast_id(reference_group_id, test_group_id)
        contrasts = self._contrasts[platform]
        if contrast_id in contrasts:
            raise MalformedConfig(f"Duplicate contrast {contrast_id!r} in {platform}")

        contrast = Contrast(
            id=contrast_id,
            name=name,
            test_group_id=test_group_id,
            reference_group_id=reference_group_id,
            platform=platform,
            attributes=tuple(attributes),
        )
        contrasts[contrast_id] = contrast
        return contrast

    def build(self) -> ExperimentConfig:
        analytics = tuple(
            AnalyticsElement(
                platform=platform,
                assay_groups=tuple(groups.values()),
                contrasts=tuple(self._contrasts[platform].values()),
            )
            for platform, groups in self._groups.items()
        )
        return ExperimentConfig(
            accession=self.accession,
            experiment_type=self.experiment_type,
            analytics=analytics,
            assays=tuple(self._assays.values()),
            attributes=self.attributes,
            min_replicates=self.min_replicates,
        )

    def _platform_groups(self, platform: str) -> Dict[str, AssayGroup]:
        if platform not in self._groups:
            raise MalformedConfig(f"No analytics element for platform {platform}")
        return self._groups[platform]

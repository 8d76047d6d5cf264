"""
Propagation of QC rejections through an experiment design.

Rejected assays are removed from their assay groups; groups left with too
few replicates are dropped; contrasts that refer to a dropped group are
dropped too. Each step is a pure function over frozen ExperimentConfig
snapshots, and ``changed`` is decided by comparing the first and last
snapshot.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Tuple

from ..experiment.model import ExperimentConfig

logger = logging.getLogger(__name__)

_REJECTED_RE = re.compile(r"REJECTED ASSAYS:\t(.*)")


def parse_rejected_assays(engine_output: str) -> List[str]:
    """
    Find the names of rejected assays in QC engine output.

    The engine reports them on one line::

        REJECTED ASSAYS:<TAB>assay 1<TAB>assay 2

    Returns:
        Rejected assay names, empty if all assays passed
    """
    match = _REJECTED_RE.search(engine_output)
    if not match:
        return []
    names = [name.strip() for name in match.group(1).rstrip("\r").split("\t")]
    return [name for name in names if name]


def _in_scope(platform: str, only: Optional[str]) -> bool:
    return only is None or platform == only


def remove_assays(
    config: ExperimentConfig,
    rejected: Iterable[str],
    platform: Optional[str] = None,
) -> ExperimentConfig:
    """Remove every rejected assay from the assay groups, without cascading."""
    known = set(config.all_assay_names())
    for name in rejected:
        if name not in known:
            logger.debug(f"Rejected assay \"{name}\" is not in the design, ignoring")
            continue
        config = config.remove_assay(name, platform)
    return config


def prune_invalid_groups(
    config: ExperimentConfig,
    platform: Optional[str] = None,
    before: Optional[ExperimentConfig] = None,
) -> ExperimentConfig:
    """
    Drop assay groups with fewer assays than the replicate threshold.

    When ``before`` is given, only groups that lost assays since that
    snapshot are candidates; groups that were already small are kept.
    """
    previous = {}
    if before is not None:
        previous = {
            (element.platform, group.id): group.assays
            for element in before.analytics
            for group in element.assay_groups
        }

    analytics = []
    for element in config.analytics:
        if not _in_scope(element.platform, platform):
            analytics.append(element)
            continue

        kept = []
        for group in element.assay_groups:
            shrunk = before is None or previous.get((element.platform, group.id)) != group.assays
            if not shrunk or config.is_group_valid(group):
                kept.append(group)
            else:
                logger.info(
                    f"{config.accession}: assay group \"{group.id}\" on {element.platform} "
                    f"has {len(group.assays)} assay(s) left and is removed"
                )
        analytics.append(replace(element, assay_groups=tuple(kept)))
    return replace(config, analytics=tuple(analytics))


def prune_dangling_contrasts(
    config: ExperimentConfig,
    platform: Optional[str] = None,
) -> ExperimentConfig:
    """Drop contrasts whose test or reference group no longer exists."""
    analytics = []
    for element in config.analytics:
        if not _in_scope(element.platform, platform):
            analytics.append(element)
            continue

        group_ids = {group.id for group in element.assay_groups}
        kept = []
        for contrast in element.contrasts:
            if all(group_id in group_ids for group_id in contrast.group_ids):
                kept.append(contrast)
            else:
                logger.info(
                    f"{config.accession}: contrast \"{contrast.id}\" ({contrast.name}) "
                    f"lost an assay group and is removed"
                )
        analytics.append(replace(element, contrasts=tuple(kept)))
    return replace(config, analytics=tuple(analytics))


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of applying one platform's QC verdict."""

    config: ExperimentConfig
    changed: bool
    rejected: Tuple[str, ...] = ()
    removed_groups: Tuple[str, ...] = ()
    removed_contrasts: Tuple[str, ...] = ()


def _group_ids(config: ExperimentConfig) -> List[Tuple[str, str]]:
    return [(e.platform, g.id) for e in config.analytics for g in e.assay_groups]


def _contrast_ids(config: ExperimentConfig) -> List[Tuple[str, str]]:
    return [(e.platform, c.id) for e in config.analytics for c in e.contrasts]


def reconcile(
    config: ExperimentConfig,
    rejected: Iterable[str],
    platform: Optional[str] = None,
) -> ReconciliationResult:
    """
    Apply a set of QC rejections to an experiment design.

    Args:
        config: Design before QC
        rejected: Names of assays that failed QC
        platform: Restrict changes to this analytics element

    Returns:
        ReconciliationResult with the new design and whether it differs
    """
    rejected = tuple(rejected)
    reconciled = prune_dangling_contrasts(
        prune_invalid_groups(remove_assays(config, rejected, platform), platform, before=config),
        platform,
    )

    after_groups = set(_group_ids(reconciled))
    after_contrasts = set(_contrast_ids(reconciled))

    return ReconciliationResult(
        config=reconciled,
        changed=reconciled != config,
        rejected=rejected,
        removed_groups=tuple(
            key[1] for key in _group_ids(config) if key not in after_groups
        ),
        removed_contrasts=tuple(
            key[1] for key in _contrast_ids(config) if key not in after_contrasts
        ),
    )

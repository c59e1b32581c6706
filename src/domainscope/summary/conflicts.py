"""Domain conflict detection.

Three kinds: a file owned by several domains, two domains with the same
normalized name, and a boundary problem (strong coupling or a
dependency cycle between domains). Conflicts only carry suggestions;
nothing is applied automatically.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence

from domainscope.analysis.domain_extractor import normalize_domain_name
from domainscope.constants import ConflictAction, ConflictType
from domainscope.summary.schemas import (
    ConflictResolution,
    DomainConflict,
    DomainSummary,
    RelationshipAnalysis,
)

logger = logging.getLogger(__name__)

MERGE_RESOLUTION_CONFIDENCE = 0.6
RENAME_RESOLUTION_CONFIDENCE = 0.5
SPLIT_RESOLUTION_CONFIDENCE = 0.4


def detect_ownership_conflicts(
    domains: Sequence[DomainSummary],
) -> list[DomainConflict]:
    owners: defaultdict[str, list[DomainSummary]] = defaultdict(list)
    for domain in domains:
        for path in dict.fromkeys(domain.source_files):
            owners[path].append(domain)

    conflicts: list[DomainConflict] = []
    for path, claimants in owners.items():
        if len(claimants) < 2:
            continue
        conflicts.append(
            DomainConflict(
                id=f"conflict-ownership-{path}",
                type=ConflictType.OWNERSHIP,
                domains=[d.id for d in claimants],
                description=(
                    f"{path} is claimed by "
                    + ", ".join(d.name for d in claimants)
                ),
                suggested_resolutions=[
                    ConflictResolution(
                        id=f"assign-{d.id}",
                        label=f"Assign {path} to {d.name}",
                        action=ConflictAction.ASSIGN,
                        params={"file": path, "domain_id": d.id},
                        confidence=d.confidence,
                    )
                    for d in claimants
                ],
            )
        )
    return conflicts


def detect_naming_conflicts(
    domains: Sequence[DomainSummary],
) -> list[DomainConflict]:
    by_name: defaultdict[str, list[DomainSummary]] = defaultdict(list)
    for domain in domains:
        by_name[normalize_domain_name(domain.name)].append(domain)

    conflicts: list[DomainConflict] = []
    for name, group in by_name.items():
        if len(group) < 2:
            continue
        ids = [d.id for d in group]
        conflicts.append(
            DomainConflict(
                id=f"conflict-naming-{name}",
                type=ConflictType.NAMING,
                domains=ids,
                description=f"{len(group)} domains are named {name}",
                suggested_resolutions=[
                    ConflictResolution(
                        id=f"merge-{name}",
                        label=f"Merge all {name} domains",
                        action=ConflictAction.MERGE,
                        params={"domain_ids": ",".join(ids)},
                        confidence=MERGE_RESOLUTION_CONFIDENCE,
                    ),
                    *(
                        ConflictResolution(
                            id=f"rename-{d.id}",
                            label=f"Rename {d.id}",
                            action=ConflictAction.RENAME,
                            params={"domain_id": d.id},
                            confidence=RENAME_RESOLUTION_CONFIDENCE,
                        )
                        for d in group[1:]
                    ),
                ],
            )
        )
    return conflicts


def detect_boundary_conflicts(
    domains: Sequence[DomainSummary],
    analysis: RelationshipAnalysis,
    cycles: Sequence[Sequence[str]],
) -> list[DomainConflict]:
    names = {d.id: d.name for d in domains}
    conflicts: list[DomainConflict] = []

    for src, dst in analysis.strong_couplings:
        conflicts.append(
            DomainConflict(
                id=f"conflict-coupling-{src}-{dst}",
                type=ConflictType.BOUNDARY,
                domains=[src, dst],
                description=(
                    f"{names.get(src, src)} and {names.get(dst, dst)} "
                    "are strongly coupled"
                ),
                suggested_resolutions=[
                    ConflictResolution(
                        id=f"merge-{src}-{dst}",
                        label="Merge the two domains",
                        action=ConflictAction.MERGE,
                        params={"domain_ids": f"{src},{dst}"},
                        confidence=MERGE_RESOLUTION_CONFIDENCE,
                    ),
                ],
            )
        )

    for cycle in cycles:
        members = list(dict.fromkeys(cycle))
        key = "-".join(sorted(members))
        conflicts.append(
            DomainConflict(
                id=f"conflict-cycle-{key}",
                type=ConflictType.BOUNDARY,
                domains=members,
                description="Cyclic dependency: "
                + " -> ".join(names.get(m, m) for m in [*members, members[0]]),
                suggested_resolutions=[
                    ConflictResolution(
                        id=f"merge-cycle-{key}",
                        label="Merge the domains on the cycle",
                        action=ConflictAction.MERGE,
                        params={"domain_ids": ",".join(members)},
                        confidence=MERGE_RESOLUTION_CONFIDENCE,
                    ),
                    ConflictResolution(
                        id=f"split-cycle-{key}",
                        label="Extract the shared part into its own domain",
                        action=ConflictAction.SPLIT,
                        params={"domain_ids": ",".join(members)},
                        confidence=SPLIT_RESOLUTION_CONFIDENCE,
                    ),
                ],
            )
        )

    return conflicts


def detect_conflicts(
    domains: Sequence[DomainSummary],
    analysis: RelationshipAnalysis,
    cycles: Sequence[Sequence[str]],
) -> list[DomainConflict]:
    """All conflicts, deduplicated by id (overlapping cycles repeat)."""
    found = [
        *detect_ownership_conflicts(domains),
        *detect_naming_conflicts(domains),
        *detect_boundary_conflicts(domains, analysis, cycles),
    ]
    unique = list({c.id: c for c in found}.values())
    if unique:
        logger.info("event=conflicts_detected count=%d", len(unique))
    return unique

"""Domain-level relationship, boundary and cycle analysis."""

from __future__ import annotations

import logging
import posixpath
from collections.abc import Sequence

from domainscope.analysis.dependency_graph import find_cycles
from domainscope.analysis.schemas import DependencyEdge, DependencyGraph
from domainscope.constants import (
    MAX_RELATIONSHIP_EVIDENCE,
    MERGE_SUGGESTION_THRESHOLD,
    MIN_RELATIONSHIP_STRENGTH,
    STRONG_COUPLING_THRESHOLD,
    ActionType,
    DomainRelationshipType,
)
from domainscope.summary.schemas import (
    DomainBoundary,
    DomainRelationship,
    DomainSummary,
    RelationshipAnalysis,
)

logger = logging.getLogger(__name__)

IMPORT_WEIGHT = 0.1
MAX_IMPORT_SCORE = 0.5
SHARED_STATE_WEIGHT = 0.15
MAX_SHARED_STATE_SCORE = 0.3
SHARED_DIR_WEIGHT = 0.1
MAX_SHARED_DIR_SCORE = 0.2

_DESCRIPTIONS = {
    DomainRelationshipType.DEPENDENCY: "{a} depends on {b}",
    DomainRelationshipType.SHARED_STATE: "{a} and {b} share state",
    DomainRelationshipType.EVENT_FLOW: "{a} communicates with {b} via events",
    DomainRelationshipType.COMPOSITION: "{a} composes {b}",
}


def _import_counts(
    a: DomainSummary, b: DomainSummary, graph: DependencyGraph
) -> tuple[int, int]:
    """(edges a→b, edges b→a)."""
    files_a, files_b = set(a.source_files), set(b.source_files)
    a_to_b = b_to_a = 0
    for edge in graph.edges:
        if edge.source in files_a and edge.target in files_b:
            a_to_b += 1
        if edge.source in files_b and edge.target in files_a:
            b_to_a += 1
    return a_to_b, b_to_a


def _state_names(domain: DomainSummary) -> set[str]:
    return set(domain.context_names) | set(domain.boundaries.shared_state)


def shared_state_names(a: DomainSummary, b: DomainSummary) -> set[str]:
    return _state_names(a) & _state_names(b)


def calculate_domain_relationship_strength(
    a: DomainSummary, b: DomainSummary, graph: DependencyGraph
) -> float:
    """Symmetric coupling score between two domains in [0, 1]."""
    a_to_b, b_to_a = _import_counts(a, b, graph)
    strength = min((a_to_b + b_to_a) * IMPORT_WEIGHT, MAX_IMPORT_SCORE)
    strength += min(
        len(shared_state_names(a, b)) * SHARED_STATE_WEIGHT,
        MAX_SHARED_STATE_SCORE,
    )
    dirs_a = {posixpath.dirname(f) for f in a.source_files}
    dirs_b = {posixpath.dirname(f) for f in b.source_files}
    strength += min(
        len(dirs_a & dirs_b) * SHARED_DIR_WEIGHT, MAX_SHARED_DIR_SCORE
    )
    return min(strength, 1.0)


def determine_relationship_type(
    a: DomainSummary, b: DomainSummary, graph: DependencyGraph
) -> DomainRelationshipType | None:
    """Shared state beats event flow beats plain dependency."""
    if shared_state_names(a, b):
        return DomainRelationshipType.SHARED_STATE

    a_to_b, b_to_a = _import_counts(a, b, graph)
    crosses = a_to_b > 0 or b_to_a > 0
    has_events = any(
        act.type == ActionType.EVENT for act in (*a.actions, *b.actions)
    )
    if crosses and has_events:
        return DomainRelationshipType.EVENT_FLOW
    if crosses:
        return DomainRelationshipType.DEPENDENCY
    return None


def create_relationship(
    a: DomainSummary, b: DomainSummary, graph: DependencyGraph
) -> DomainRelationship | None:
    rel_type = determine_relationship_type(a, b, graph)
    if rel_type is None:
        return None
    strength = calculate_domain_relationship_strength(a, b, graph)
    if strength < MIN_RELATIONSHIP_STRENGTH:
        return None

    a_to_b, b_to_a = _import_counts(a, b, graph)
    src, dst = (a, b) if a_to_b >= b_to_a else (b, a)

    files_a, files_b = set(a.source_files), set(b.source_files)
    evidence = [
        f"{e.source} -> {e.target}"
        for e in graph.edges
        if (e.source in files_a and e.target in files_b)
        or (e.source in files_b and e.target in files_a)
    ][:MAX_RELATIONSHIP_EVIDENCE]
    if rel_type == DomainRelationshipType.SHARED_STATE:
        evidence = [
            *(f"shared context {n}" for n in sorted(shared_state_names(a, b))),
            *evidence,
        ][:MAX_RELATIONSHIP_EVIDENCE]

    return DomainRelationship(
        id=f"rel-{src.id}-{dst.id}",
        type=rel_type,
        from_domain=src.id,
        to_domain=dst.id,
        strength=strength,
        evidence=evidence,
        description=_DESCRIPTIONS[rel_type].format(a=src.name, b=dst.name),
    )


def analyze_all_relationships(
    domains: Sequence[DomainSummary], graph: DependencyGraph
) -> RelationshipAnalysis:
    relationships: list[DomainRelationship] = []
    strong: list[tuple[str, str]] = []
    merges: list[tuple[str, str]] = []

    for i, a in enumerate(domains):
        for b in domains[i + 1:]:
            rel = create_relationship(a, b, graph)
            if rel is not None:
                relationships.append(rel)
                if rel.strength > STRONG_COUPLING_THRESHOLD:
                    strong.append((rel.from_domain, rel.to_domain))
            score = calculate_domain_relationship_strength(a, b, graph)
            if score > MERGE_SUGGESTION_THRESHOLD:
                merges.append((a.id, b.id))
                logger.info(
                    "event=merge_suggested a=%s b=%s strength=%.2f",
                    a.name,
                    b.name,
                    score,
                )

    return RelationshipAnalysis(
        relationships=relationships,
        strong_couplings=strong,
        suggested_merges=merges,
    )


def analyze_domain_boundaries(
    domain: DomainSummary,
    all_domains: Sequence[DomainSummary],
    graph: DependencyGraph,
) -> DomainBoundary:
    """Which domains this one imports from, is imported by, and shares state with."""
    files = set(domain.source_files)
    owner: dict[str, str] = {}
    for other in all_domains:
        if other.id == domain.id:
            continue
        for f in other.source_files:
            owner.setdefault(f, other.name)

    imports: list[str] = []
    exports: list[str] = []
    for edge in graph.edges:
        if edge.source in files:
            target = owner.get(edge.target)
            if target and target not in imports:
                imports.append(target)
        if edge.target in files:
            source = owner.get(edge.source)
            if source and source not in exports:
                exports.append(source)

    shared: list[str] = []
    for name in domain.context_names:
        if name in shared:
            continue
        if any(
            name in other.context_names
            for other in all_domains
            if other.id != domain.id
        ):
            shared.append(name)

    return DomainBoundary(imports=imports, exports=exports, shared_state=shared)


def with_boundaries(
    domains: Sequence[DomainSummary], graph: DependencyGraph
) -> list[DomainSummary]:
    return [
        d.model_copy(
            update={"boundaries": analyze_domain_boundaries(d, domains, graph)}
        )
        for d in domains
    ]


def detect_cyclic_dependencies(
    domains: Sequence[DomainSummary],
    relationships: Sequence[DomainRelationship],
) -> list[list[str]]:
    """Cycles among ``dependency`` relationships, as lists of domain ids."""
    graph = DependencyGraph(
        nodes=[d.id for d in domains],
        edges=[
            DependencyEdge(source=r.from_domain, target=r.to_domain)
            for r in relationships
            if r.type == DomainRelationshipType.DEPENDENCY
        ],
    )
    return find_cycles(graph)

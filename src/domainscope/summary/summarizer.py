"""Summarizer stage model: pure transitions over summaries and proposals."""

from __future__ import annotations

from domainscope.analysis.domain_extractor import generate_domain_description
from domainscope.analysis.schemas import (
    AmbiguousPattern,
    ContextPattern,
    DomainCandidate,
)
from domainscope.constants import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DomainRelationshipType,
)
from domainscope.summary.schemas import (
    ConflictResolution,
    DomainConflict,
    DomainRelationship,
    DomainSummary,
    SchemaProposal,
    SummarizerConfig,
    SummarizerData,
    SummarizerDerived,
    SummarizerError,
    SummarizerState,
)


def create_initial_data(
    analyzer_ref: str | None = None,
    config: SummarizerConfig | None = None,
) -> SummarizerData:
    return SummarizerData(
        analyzer_ref=analyzer_ref, config=config or SummarizerConfig()
    )


def create_initial_state() -> SummarizerState:
    return SummarizerState()


def create_domain_summary(
    candidate: DomainCandidate,
    description: str = "",
    *,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> DomainSummary:
    """Lift a merged candidate into a summary."""
    contexts = [
        p.context_name
        for p in candidate.patterns
        if isinstance(p, ContextPattern) and p.context_name
    ]
    return DomainSummary(
        id=f"summary-{candidate.id}",
        name=candidate.name,
        description=description or generate_domain_description(candidate),
        source_files=list(candidate.source_files),
        context_names=list(dict.fromkeys(contexts)),
        suggested_by=candidate.id,
        confidence=candidate.confidence,
        needs_review=candidate.confidence < confidence_threshold,
    )


# ── Domains ──────────────────────────────────────────────


def add_domain(data: SummarizerData, domain: DomainSummary) -> SummarizerData:
    return data.model_copy(
        update={"domains": {**data.domains, domain.id: domain}}
    )


def replace_domains(
    data: SummarizerData, domains: list[DomainSummary]
) -> SummarizerData:
    return data.model_copy(update={"domains": {d.id: d for d in domains}})


def update_domain(
    data: SummarizerData, domain_id: str, **changes: object
) -> SummarizerData:
    current = data.domains.get(domain_id)
    if current is None:
        return data
    return add_domain(data, current.model_copy(update=changes))


def remove_domain(data: SummarizerData, domain_id: str) -> SummarizerData:
    domains = {k: v for k, v in data.domains.items() if k != domain_id}
    return data.model_copy(update={"domains": domains})


def merge_domains(
    data: SummarizerData, keep_id: str, absorb_id: str
) -> SummarizerData:
    """Fold ``absorb_id`` into ``keep_id``; the absorbed domain is removed."""
    keep = data.domains.get(keep_id)
    absorb = data.domains.get(absorb_id)
    if keep is None or absorb is None or keep_id == absorb_id:
        return data
    merged = keep.model_copy(
        update={
            "source_files": list(
                dict.fromkeys([*keep.source_files, *absorb.source_files])
            ),
            "entities": [*keep.entities, *absorb.entities],
            "actions": [*keep.actions, *absorb.actions],
            "context_names": list(
                dict.fromkeys([*keep.context_names, *absorb.context_names])
            ),
            "confidence": max(keep.confidence, absorb.confidence),
            "review_notes": [
                *keep.review_notes,
                f"Merged with domain {absorb.name}",
            ],
        }
    )
    return remove_domain(add_domain(data, merged), absorb_id)


# ── Relationships ────────────────────────────────────────


def add_relationships(
    state: SummarizerState, relationships: list[DomainRelationship]
) -> SummarizerState:
    """Add relationships, replacing any with the same id."""
    by_id = {r.id: r for r in state.relationships}
    for rel in relationships:
        by_id[rel.id] = rel
    return state.model_copy(update={"relationships": list(by_id.values())})


def relationships_by_type(
    state: SummarizerState, rel_type: DomainRelationshipType
) -> list[DomainRelationship]:
    return [r for r in state.relationships if r.type == rel_type]


def relationships_for_domain(
    state: SummarizerState, domain_id: str
) -> list[DomainRelationship]:
    return [
        r
        for r in state.relationships
        if domain_id in (r.from_domain, r.to_domain)
    ]


# ── Conflicts ────────────────────────────────────────────


def add_conflicts(
    data: SummarizerData, conflicts: list[DomainConflict]
) -> SummarizerData:
    known = {c.id for c in data.conflicts}
    fresh = [c for c in conflicts if c.id not in known]
    return data.model_copy(update={"conflicts": [*data.conflicts, *fresh]})


def resolve_conflict(
    data: SummarizerData, conflict_id: str, resolution: ConflictResolution
) -> SummarizerData:
    conflicts = [
        c.model_copy(update={"resolution": resolution})
        if c.id == conflict_id
        else c
        for c in data.conflicts
    ]
    return data.model_copy(update={"conflicts": conflicts})


def unresolved_conflicts(data: SummarizerData) -> list[DomainConflict]:
    return [c for c in data.conflicts if c.resolution is None]


# ── Proposals ────────────────────────────────────────────


def set_schema_proposal(
    data: SummarizerData,
    state: SummarizerState,
    proposal: SchemaProposal,
) -> SummarizerState:
    """Store ``proposal`` as the primary one for its domain.

    A previous primary becomes an alternative pointing at the new one;
    alternatives beyond ``max_alternatives`` per domain are dropped,
    oldest first.
    """
    previous = state.schema_proposals.get(proposal.domain_id)
    alternatives = list(state.alternatives)
    if previous is not None and previous.id != proposal.id:
        alternatives.append(
            previous.model_copy(update={"parent_id": proposal.id})
        )
    # Re-point older alternatives of this domain at the new primary
    alternatives = [
        a.model_copy(update={"parent_id": proposal.id})
        if a.domain_id == proposal.domain_id
        else a
        for a in alternatives
    ]
    own = [a for a in alternatives if a.domain_id == proposal.domain_id]
    limit = data.config.max_alternatives
    overflow = {a.id for a in own[: max(0, len(own) - limit)]}
    alternatives = [a for a in alternatives if a.id not in overflow]

    return state.model_copy(
        update={
            "schema_proposals": {
                **state.schema_proposals,
                proposal.domain_id: proposal,
            },
            "alternatives": alternatives,
        }
    )


def remove_schema_proposal(
    state: SummarizerState, domain_id: str
) -> SummarizerState:
    """Drop a domain's primary proposal and its alternatives."""
    return state.model_copy(
        update={
            "schema_proposals": {
                k: v
                for k, v in state.schema_proposals.items()
                if k != domain_id
            },
            "alternatives": [
                a for a in state.alternatives if a.domain_id != domain_id
            ],
        }
    )


def alternatives_for(
    state: SummarizerState, proposal_id: str
) -> list[SchemaProposal]:
    return [a for a in state.alternatives if a.parent_id == proposal_id]


def mark_proposal_reviewed(
    state: SummarizerState, domain_id: str
) -> SummarizerState:
    proposal = state.schema_proposals.get(domain_id)
    if proposal is None:
        return state
    reviewed = proposal.model_copy(update={"needs_review": False})
    return state.model_copy(
        update={
            "schema_proposals": {
                **state.schema_proposals,
                domain_id: reviewed,
            }
        }
    )


# ── Clustering progress / meta ───────────────────────────


def start_clustering(state: SummarizerState) -> SummarizerState:
    clustering = state.clustering.model_copy(
        update={"in_progress": True, "completed": False}
    )
    return state.model_copy(update={"clustering": clustering})


def complete_clustering(
    state: SummarizerState, *, clusters: int, noise_files: int
) -> SummarizerState:
    clustering = state.clustering.model_copy(
        update={
            "in_progress": False,
            "completed": True,
            "clusters": clusters,
            "noise_files": noise_files,
        }
    )
    return state.model_copy(update={"clustering": clustering})


def add_ambiguous_patterns(
    state: SummarizerState, patterns: list[AmbiguousPattern]
) -> SummarizerState:
    known = {a.id for a in state.ambiguous}
    fresh = [p for p in patterns if p.id not in known]
    return state.model_copy(update={"ambiguous": [*state.ambiguous, *fresh]})


def increment_attempts(state: SummarizerState) -> SummarizerState:
    meta = state.meta.model_copy(update={"attempts": state.meta.attempts + 1})
    return state.model_copy(update={"meta": meta})


def increment_llm_calls(state: SummarizerState, n: int = 1) -> SummarizerState:
    meta = state.meta.model_copy(update={"llm_calls": state.meta.llm_calls + n})
    return state.model_copy(update={"meta": meta})


def record_processed_domain(
    state: SummarizerState,
    domain_id: str,
    *,
    processed: int,
    elapsed_seconds: float,
) -> SummarizerState:
    rate = processed / elapsed_seconds if elapsed_seconds > 0 else 0.0
    meta = state.meta.model_copy(
        update={"last_processed_domain": domain_id, "processing_rate": rate}
    )
    return state.model_copy(update={"meta": meta})


def add_error(
    state: SummarizerState,
    message: str,
    *,
    domain: str | None = None,
    recoverable: bool = True,
) -> SummarizerState:
    error = SummarizerError(
        domain=domain, message=message, recoverable=recoverable
    )
    meta = state.meta.model_copy(
        update={"errors": [*state.meta.errors, error]}
    )
    return state.model_copy(update={"meta": meta})


# ── Derived ──────────────────────────────────────────────


def calculate_derived(
    data: SummarizerData, state: SummarizerState
) -> SummarizerDerived:
    domains = list(data.domains.values())
    overall = (
        sum(d.confidence for d in domains) / len(domains) if domains else 0.0
    )
    return SummarizerDerived(
        overall_confidence=overall,
        domain_count=len(domains),
        domains_needing_review=sum(1 for d in domains if d.needs_review),
        unresolved_conflicts=len(unresolved_conflicts(data)),
        proposals_needing_review=sum(
            1 for p in state.schema_proposals.values() if p.needs_review
        ),
    )


def is_summarization_complete(
    data: SummarizerData, state: SummarizerState
) -> bool:
    return (
        state.clustering.completed
        and all(d in state.schema_proposals for d in data.domains)
    )

"""Pydantic models for domain summaries, relationships and proposals."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from domainscope.analysis.schemas import AmbiguousPattern, Confidence
from domainscope.constants import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_MAX_ALTERNATIVES,
    DEFAULT_MIN_CLUSTER_SIZE,
    DEFAULT_SIMILARITY_THRESHOLD,
    ActionType,
    ConflictAction,
    ConflictType,
    DomainRelationshipType,
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Entities and actions ─────────────────────────────────


class ExtractedField(_Frozen):
    name: str
    type: str = "unknown"
    optional: bool = False
    description: str | None = None


class ExtractedEntity(_Frozen):
    name: str
    fields: list[ExtractedField] = Field(
        default_factory=lambda: list[ExtractedField]()
    )
    # Pattern names, or ``llm:<hint>`` for enrichment output
    source_patterns: list[str] = Field(default_factory=lambda: list[str]())
    confidence: Confidence


class ExtractedAction(_Frozen):
    name: str
    type: ActionType
    payload: dict[str, str] | None = None
    source_patterns: list[str] = Field(default_factory=lambda: list[str]())
    confidence: Confidence


# ── Domain summaries ─────────────────────────────────────


class DomainBoundary(_Frozen):
    imports: list[str] = Field(default_factory=lambda: list[str]())
    exports: list[str] = Field(default_factory=lambda: list[str]())
    shared_state: list[str] = Field(default_factory=lambda: list[str]())


class DomainSummary(_Frozen):
    """Clustered, enriched view of one business domain."""

    id: str
    name: str
    description: str
    source_files: list[str] = Field(default_factory=lambda: list[str]())
    entities: list[ExtractedEntity] = Field(
        default_factory=lambda: list[ExtractedEntity]()
    )
    actions: list[ExtractedAction] = Field(
        default_factory=lambda: list[ExtractedAction]()
    )
    boundaries: DomainBoundary = Field(default_factory=DomainBoundary)
    context_names: list[str] = Field(default_factory=lambda: list[str]())
    suggested_by: str
    confidence: Confidence
    needs_review: bool = False
    review_notes: list[str] = Field(default_factory=lambda: list[str]())


class DomainRelationship(_Frozen):
    id: str
    type: DomainRelationshipType
    from_domain: str
    to_domain: str
    strength: Confidence
    evidence: list[str] = Field(default_factory=lambda: list[str]())
    description: str = ""


class RelationshipAnalysis(_Frozen):
    relationships: list[DomainRelationship] = Field(
        default_factory=lambda: list[DomainRelationship]()
    )
    strong_couplings: list[tuple[str, str]] = Field(
        default_factory=lambda: list[tuple[str, str]]()
    )
    suggested_merges: list[tuple[str, str]] = Field(
        default_factory=lambda: list[tuple[str, str]]()
    )


class ConflictResolution(_Frozen):
    id: str
    label: str
    action: ConflictAction
    params: dict[str, str] = Field(default_factory=lambda: dict[str, str]())
    confidence: Confidence


class DomainConflict(_Frozen):
    id: str
    type: ConflictType
    domains: list[str]
    description: str
    suggested_resolutions: list[ConflictResolution] = Field(
        default_factory=lambda: list[ConflictResolution]()
    )
    resolution: ConflictResolution | None = None


# ── Clustering ───────────────────────────────────────────


class Cluster(_Frozen):
    id: str
    files: list[str]
    centroid: str
    density: Confidence
    candidate_ids: list[str] = Field(default_factory=lambda: list[str]())


class ClusteringResult(_Frozen):
    clusters: list[Cluster] = Field(default_factory=lambda: list[Cluster]())
    noise: list[str] = Field(default_factory=lambda: list[str]())
    domains: list[DomainSummary] = Field(
        default_factory=lambda: list[DomainSummary]()
    )


# ── Schema proposals ─────────────────────────────────────


class SchemaFieldProposal(_Frozen):
    path: str
    type: str
    description: str = ""
    # Pattern name(s) or ``llm:...``; never empty
    source: str
    confidence: Confidence


class SchemaProposal(_Frozen):
    """Draft entity/state/intent schema for one domain.

    Alternative derivations are stored flat next to the primary
    proposal and point back to it through ``parent_id``.
    """

    id: str
    domain_id: str
    domain_name: str
    entities: list[SchemaFieldProposal] = Field(
        default_factory=lambda: list[SchemaFieldProposal]()
    )
    state: list[SchemaFieldProposal] = Field(
        default_factory=lambda: list[SchemaFieldProposal]()
    )
    intents: list[SchemaFieldProposal] = Field(
        default_factory=lambda: list[SchemaFieldProposal]()
    )
    confidence: Confidence
    parent_id: str | None = None
    needs_review: bool = False
    review_notes: list[str] = Field(default_factory=lambda: list[str]())

    @property
    def all_fields(self) -> list[SchemaFieldProposal]:
        return [*self.entities, *self.state, *self.intents]


class ProposalValidation(_Frozen):
    valid: bool
    errors: list[str] = Field(default_factory=lambda: list[str]())


# ── Summarizer stage model ───────────────────────────────


class SummarizerConfig(_Frozen):
    min_cluster_size: int = Field(default=DEFAULT_MIN_CLUSTER_SIZE, ge=1)
    similarity_threshold: float = Field(
        default=DEFAULT_SIMILARITY_THRESHOLD, ge=0.0, le=1.0
    )
    confidence_threshold: float = Field(
        default=DEFAULT_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0
    )
    enable_llm_enrichment: bool = False
    max_alternatives: int = Field(default=DEFAULT_MAX_ALTERNATIVES, ge=0)


class SummarizerError(_Frozen):
    domain: str | None
    message: str
    recoverable: bool = True


class ClusteringProgress(_Frozen):
    in_progress: bool = False
    completed: bool = False
    clusters: int = 0
    noise_files: int = 0


class SummarizerMeta(_Frozen):
    attempts: int = 0
    llm_calls: int = 0
    last_processed_domain: str | None = None
    processing_rate: float = 0.0
    errors: list[SummarizerError] = Field(
        default_factory=lambda: list[SummarizerError]()
    )


class SummarizerData(_Frozen):
    analyzer_ref: str | None = None
    domains: dict[str, DomainSummary] = Field(
        default_factory=lambda: dict[str, DomainSummary]()
    )
    conflicts: list[DomainConflict] = Field(
        default_factory=lambda: list[DomainConflict]()
    )
    config: SummarizerConfig = Field(default_factory=SummarizerConfig)


class SummarizerState(_Frozen):
    relationships: list[DomainRelationship] = Field(
        default_factory=lambda: list[DomainRelationship]()
    )
    schema_proposals: dict[str, SchemaProposal] = Field(
        default_factory=lambda: dict[str, SchemaProposal]()
    )
    alternatives: list[SchemaProposal] = Field(
        default_factory=lambda: list[SchemaProposal]()
    )
    clustering: ClusteringProgress = Field(
        default_factory=ClusteringProgress
    )
    ambiguous: list[AmbiguousPattern] = Field(
        default_factory=lambda: list[AmbiguousPattern]()
    )
    meta: SummarizerMeta = Field(default_factory=SummarizerMeta)


class SummarizerDerived(_Frozen):
    overall_confidence: float
    domain_count: int
    domains_needing_review: int
    unresolved_conflicts: int
    proposals_needing_review: int

"""Pydantic models for pattern input, the dependency graph and candidates.

Pattern records arrive from the external detector as one tagged variant
per kind; every kind carries its own validated attribute set.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from domainscope.constants import (
    SKIP_OPTION_ID,
    CandidateRelationshipType,
    CandidateStrategy,
    ResolutionAction,
    TaskStatus,
)

type Confidence = Annotated[float, Field(ge=0.0, le=1.0)]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class SourcePosition(_Frozen):
    line: int
    column: int = 0


class SourceLocation(_Frozen):
    start: SourcePosition
    end: SourcePosition

    @property
    def start_line(self) -> int:
        return self.start.line


# ── Patterns ─────────────────────────────────────────────


class _PatternBase(_Frozen):
    name: str
    source_file: str = ""
    location: SourceLocation = Field(
        default_factory=lambda: SourceLocation(
            start=SourcePosition(line=1), end=SourcePosition(line=1)
        )
    )
    confidence: Confidence = 1.0
    needs_review: bool = False


class ComponentPattern(_PatternBase):
    kind: Literal["component"] = "component"
    props: dict[str, str] = Field(default_factory=lambda: dict[str, str]())
    hooks_used: list[str] = Field(default_factory=lambda: list[str]())
    is_memo: bool = False
    is_forward_ref: bool = False


class HookPattern(_PatternBase):
    kind: Literal["hook"] = "hook"
    is_custom_hook: bool = False
    dependencies: list[str] = Field(default_factory=lambda: list[str]())
    return_type: str | None = None


class ContextPattern(_PatternBase):
    kind: Literal["context"] = "context"
    context_name: str = ""
    # Raw value type text, JSON or ``{a: T, b: U}``
    context_value: str | None = None
    has_provider: bool = False
    has_consumer: bool = False


class ReducerPattern(_PatternBase):
    kind: Literal["reducer"] = "reducer"
    actions: list[str] = Field(default_factory=lambda: list[str]())
    state_shape: dict[str, str] = Field(
        default_factory=lambda: dict[str, str]()
    )

    @property
    def distinct_actions(self) -> list[str]:
        return list(dict.fromkeys(self.actions))


class EffectPattern(_PatternBase):
    kind: Literal["effect"] = "effect"
    dependencies: list[str] = Field(default_factory=lambda: list[str]())
    has_cleanup: bool = False


class FormPattern(_PatternBase):
    kind: Literal["form"] = "form"
    form_library: str | None = None
    fields: list[str] = Field(default_factory=lambda: list[str]())


class EntityField(_Frozen):
    name: str
    type: str = "unknown"
    optional: bool = False


class UnknownPattern(_PatternBase):
    """Anything else the detector reports (interfaces, type aliases)."""

    kind: Literal["unknown"] = "unknown"
    is_entity: bool = False
    entity_fields: list[EntityField] = Field(
        default_factory=lambda: list[EntityField]()
    )


type Pattern = Annotated[
    ComponentPattern
    | HookPattern
    | ContextPattern
    | ReducerPattern
    | EffectPattern
    | FormPattern
    | UnknownPattern,
    Field(discriminator="kind"),
]


# ── File analysis input ──────────────────────────────────


class ImportSpecifier(_Frozen):
    name: str
    alias: str | None = None
    is_default: bool = False
    is_namespace: bool = False


class ImportInfo(_Frozen):
    source: str
    specifiers: list[ImportSpecifier] = Field(
        default_factory=lambda: list[ImportSpecifier]()
    )
    is_type_only: bool = False


class ExportInfo(_Frozen):
    name: str
    is_default: bool = False
    is_type_only: bool = False


class FileAnalysis(_Frozen):
    """Detector output for one analyzed file."""

    path: str
    relative_path: str = ""
    patterns: list[Pattern] = Field(default_factory=lambda: list[Pattern]())
    imports: list[ImportInfo] = Field(
        default_factory=lambda: list[ImportInfo]()
    )
    exports: list[ExportInfo] = Field(
        default_factory=lambda: list[ExportInfo]()
    )
    confidence: Confidence = 1.0

    @property
    def display_path(self) -> str:
        return self.relative_path or self.path


class PatternCollection(_Frozen):
    """All patterns of a batch, grouped by kind."""

    components: list[ComponentPattern] = Field(
        default_factory=lambda: list[ComponentPattern]()
    )
    hooks: list[HookPattern] = Field(
        default_factory=lambda: list[HookPattern]()
    )
    contexts: list[ContextPattern] = Field(
        default_factory=lambda: list[ContextPattern]()
    )
    reducers: list[ReducerPattern] = Field(
        default_factory=lambda: list[ReducerPattern]()
    )
    effects: list[EffectPattern] = Field(
        default_factory=lambda: list[EffectPattern]()
    )
    forms: list[FormPattern] = Field(
        default_factory=lambda: list[FormPattern]()
    )


# ── Dependency graph ─────────────────────────────────────


class DependencyEdge(_Frozen):
    """A resolved local import between two analyzed files."""

    source: str
    target: str
    imported_names: list[str] = Field(default_factory=lambda: list[str]())
    is_reexport: bool = False


class DependencyGraph(_Frozen):
    nodes: list[str] = Field(default_factory=lambda: list[str]())
    edges: list[DependencyEdge] = Field(
        default_factory=lambda: list[DependencyEdge]()
    )


class NodeInfo(_Frozen):
    path: str
    in_degree: int = 0
    out_degree: int = 0
    provides_contexts: list[str] = Field(default_factory=lambda: list[str]())
    consumes_contexts: list[str] = Field(default_factory=lambda: list[str]())


class GraphAnalysis(_Frozen):
    """Structural summary of a dependency graph."""

    nodes: dict[str, NodeInfo] = Field(
        default_factory=lambda: dict[str, NodeInfo]()
    )
    entry_points: list[str] = Field(default_factory=lambda: list[str]())
    leaf_nodes: list[str] = Field(default_factory=lambda: list[str]())
    cycles: list[list[str]] = Field(default_factory=lambda: list[list[str]]())
    components: list[list[str]] = Field(
        default_factory=lambda: list[list[str]]()
    )


class ContextUsage(_Frozen):
    providers: list[str] = Field(default_factory=lambda: list[str]())
    consumers: list[str] = Field(default_factory=lambda: list[str]())


# ── Candidates ───────────────────────────────────────────


class CandidateRelationship(_Frozen):
    type: CandidateRelationshipType
    target_domain_id: str
    strength: Confidence


class DomainCandidate(_Frozen):
    id: str
    name: str
    suggested_by: CandidateStrategy
    source_files: list[str] = Field(default_factory=lambda: list[str]())
    patterns: list[Pattern] = Field(default_factory=lambda: list[Pattern]())
    confidence: Confidence
    relationships: list[CandidateRelationship] = Field(
        default_factory=lambda: list[CandidateRelationship]()
    )


class Resolution(_Frozen):
    """One suggested way out of an ambiguity."""

    id: str
    label: str
    action: ResolutionAction
    params: dict[str, str | int | float] = Field(
        default_factory=lambda: dict[str, str | int | float]()
    )
    confidence: Confidence

    @property
    def is_skip(self) -> bool:
        return self.id == SKIP_OPTION_ID


class AmbiguousPattern(_Frozen):
    id: str
    file_path: str
    pattern: Pattern
    reason: str
    suggested_resolutions: list[Resolution] = Field(
        default_factory=lambda: list[Resolution]()
    )
    resolution: Resolution | None = None

    @property
    def resolved(self) -> bool:
        return self.resolution is not None


# ── Analysis tasks ───────────────────────────────────────


class FileTask(_Frozen):
    """One file queued for analysis."""

    path: str
    relative_path: str
    priority: int = 0
    dependencies: list[str] = Field(default_factory=lambda: list[str]())
    status: TaskStatus = TaskStatus.PENDING
    hash: str | None = None

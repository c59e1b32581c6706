"""Analyzer stage model: immutable data/state pair and pure transitions.

Every function takes the current ``AnalyzerData``/``AnalyzerState`` and
returns new values; nothing here performs I/O. The runtime in
``domainscope.runtime.analyzer_runtime`` drives these transitions and
persists the resulting pairs.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from domainscope.analysis.domain_extractor import collect_patterns
from domainscope.analysis.schemas import (
    AmbiguousPattern,
    DependencyGraph,
    DomainCandidate,
    FileAnalysis,
    FileTask,
    PatternCollection,
    Resolution,
)
from domainscope.constants import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_MAX_CONCURRENCY,
    SNAPSHOT_INTERVAL,
    TaskStatus,
)


class AnalyzerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    confidence_threshold: float = Field(
        default=DEFAULT_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0
    )
    enable_llm_fallback: bool = False
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)
    snapshot_interval: int = Field(default=SNAPSHOT_INTERVAL, ge=1)


class AnalysisError(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str
    message: str
    recoverable: bool = True


class AnalyzerMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    attempts: int = 0
    confidence: float = 0.0
    last_processed_file: str | None = None
    processing_rate: float = 0.0  # files per second
    errors: list[AnalysisError] = Field(
        default_factory=lambda: list[AnalysisError]()
    )


class AnalyzerData(BaseModel):
    model_config = ConfigDict(frozen=True)

    root_dir: str = ""
    queue: list[FileTask] = Field(default_factory=lambda: list[FileTask]())
    current: FileTask | None = None
    results: dict[str, FileAnalysis] = Field(
        default_factory=lambda: dict[str, FileAnalysis]()
    )
    domain_candidates: dict[str, DomainCandidate] = Field(
        default_factory=lambda: dict[str, DomainCandidate]()
    )
    config: AnalyzerConfig = Field(default_factory=AnalyzerConfig)


class AnalyzerState(BaseModel):
    model_config = ConfigDict(frozen=True)

    patterns: PatternCollection = Field(default_factory=PatternCollection)
    ambiguous: list[AmbiguousPattern] = Field(
        default_factory=lambda: list[AmbiguousPattern]()
    )
    dependency_graph: DependencyGraph = Field(
        default_factory=DependencyGraph
    )
    meta: AnalyzerMeta = Field(default_factory=AnalyzerMeta)


class AnalyzerDerived(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall_confidence: float
    files_remaining: int
    files_processed: int
    files_failed: int
    files_skipped: int
    has_ambiguous: bool
    candidate_count: int


def create_initial_data(
    root_dir: str = "", config: AnalyzerConfig | None = None
) -> AnalyzerData:
    return AnalyzerData(root_dir=root_dir, config=config or AnalyzerConfig())


def create_initial_state() -> AnalyzerState:
    return AnalyzerState()


# ── Queue ────────────────────────────────────────────────


def add_to_queue(data: AnalyzerData, tasks: list[FileTask]) -> AnalyzerData:
    """Append tasks for paths not already queued."""
    queued = {t.path for t in data.queue}
    fresh = [t for t in tasks if t.path not in queued]
    return data.model_copy(update={"queue": [*data.queue, *fresh]})


def next_pending(data: AnalyzerData, limit: int = 1) -> list[FileTask]:
    """Up to ``limit`` pending tasks, highest priority first."""
    pending = [t for t in data.queue if t.status == TaskStatus.PENDING]
    pending.sort(key=lambda t: -t.priority)
    return pending[:limit]


def update_task_status(
    data: AnalyzerData, path: str, status: TaskStatus
) -> AnalyzerData:
    queue = [
        t.model_copy(update={"status": status}) if t.path == path else t
        for t in data.queue
    ]
    current = data.current
    if current is not None and current.path == path:
        current = current.model_copy(update={"status": status})
    return data.model_copy(update={"queue": queue, "current": current})


def start_task(data: AnalyzerData, path: str) -> AnalyzerData:
    data = update_task_status(data, path, TaskStatus.IN_PROGRESS)
    current = next((t for t in data.queue if t.path == path), None)
    return data.model_copy(update={"current": current})


def _finish(data: AnalyzerData, path: str, status: TaskStatus) -> AnalyzerData:
    data = update_task_status(data, path, status)
    if data.current is not None and data.current.path == path:
        data = data.model_copy(update={"current": None})
    return data


def complete_task(
    data: AnalyzerData, path: str, analysis: FileAnalysis
) -> AnalyzerData:
    data = _finish(data, path, TaskStatus.DONE)
    return data.model_copy(
        update={"results": {**data.results, path: analysis}}
    )


def fail_task(
    data: AnalyzerData,
    state: AnalyzerState,
    path: str,
    message: str,
    *,
    recoverable: bool = True,
) -> tuple[AnalyzerData, AnalyzerState]:
    data = _finish(data, path, TaskStatus.FAILED)
    error = AnalysisError(file=path, message=message, recoverable=recoverable)
    meta = state.meta.model_copy(
        update={"errors": [*state.meta.errors, error]}
    )
    return data, state.model_copy(update={"meta": meta})


def skip_task(data: AnalyzerData, path: str) -> AnalyzerData:
    return _finish(data, path, TaskStatus.SKIPPED)


def reset_interrupted_tasks(data: AnalyzerData) -> AnalyzerData:
    """Return every ``in_progress`` task to ``pending`` and clear current."""
    queue = [
        t.model_copy(update={"status": TaskStatus.PENDING})
        if t.status == TaskStatus.IN_PROGRESS
        else t
        for t in data.queue
    ]
    return data.model_copy(update={"queue": queue, "current": None})


# ── Results ──────────────────────────────────────────────


def aggregate_patterns(
    data: AnalyzerData, state: AnalyzerState
) -> AnalyzerState:
    return state.model_copy(
        update={"patterns": collect_patterns(data.results.values())}
    )


def set_domain_candidates(
    data: AnalyzerData, candidates: list[DomainCandidate]
) -> AnalyzerData:
    return data.model_copy(
        update={"domain_candidates": {c.id: c for c in candidates}}
    )


def set_dependency_graph(
    state: AnalyzerState, graph: DependencyGraph
) -> AnalyzerState:
    return state.model_copy(update={"dependency_graph": graph})


def add_ambiguous_patterns(
    state: AnalyzerState, patterns: list[AmbiguousPattern]
) -> AnalyzerState:
    """Add newly flagged patterns; already-known ids keep their resolution."""
    known = {a.id for a in state.ambiguous}
    fresh = [p for p in patterns if p.id not in known]
    if not fresh:
        return state
    return state.model_copy(update={"ambiguous": [*state.ambiguous, *fresh]})


def resolve_ambiguous_pattern(
    state: AnalyzerState, ambiguous_id: str, resolution: Resolution
) -> AnalyzerState:
    ambiguous = [
        a.model_copy(update={"resolution": resolution})
        if a.id == ambiguous_id
        else a
        for a in state.ambiguous
    ]
    return state.model_copy(update={"ambiguous": ambiguous})


def assign_file_to_candidate(
    data: AnalyzerData, path: str, candidate_id: str
) -> AnalyzerData:
    """Keep ``path`` only in ``candidate_id``; other claimants drop it."""
    if candidate_id not in data.domain_candidates:
        return data
    candidates = {
        cid: c
        if cid == candidate_id or path not in c.source_files
        else c.model_copy(
            update={
                "source_files": [f for f in c.source_files if f != path]
            }
        )
        for cid, c in data.domain_candidates.items()
    }
    return data.model_copy(update={"domain_candidates": candidates})


def unresolved_ambiguous(state: AnalyzerState) -> list[AmbiguousPattern]:
    return [a for a in state.ambiguous if a.resolution is None]


# ── Meta ─────────────────────────────────────────────────


def increment_attempts(state: AnalyzerState) -> AnalyzerState:
    meta = state.meta.model_copy(update={"attempts": state.meta.attempts + 1})
    return state.model_copy(update={"meta": meta})


def record_progress(
    state: AnalyzerState,
    *,
    last_file: str,
    processed: int,
    elapsed_seconds: float,
) -> AnalyzerState:
    rate = processed / elapsed_seconds if elapsed_seconds > 0 else 0.0
    meta = state.meta.model_copy(
        update={"last_processed_file": last_file, "processing_rate": rate}
    )
    return state.model_copy(update={"meta": meta})


def update_confidence(
    data: AnalyzerData, state: AnalyzerState
) -> AnalyzerState:
    meta = state.meta.model_copy(
        update={"confidence": overall_confidence(data)}
    )
    return state.model_copy(update={"meta": meta})


# ── Derived ──────────────────────────────────────────────


def overall_confidence(data: AnalyzerData) -> float:
    """Mean per-file confidence; 0.0 when nothing has been analyzed."""
    if not data.results:
        return 0.0
    return sum(r.confidence for r in data.results.values()) / len(data.results)


def _count(data: AnalyzerData, status: TaskStatus) -> int:
    return sum(1 for t in data.queue if t.status == status)


def calculate_derived(
    data: AnalyzerData, state: AnalyzerState
) -> AnalyzerDerived:
    return AnalyzerDerived(
        overall_confidence=overall_confidence(data),
        files_remaining=_count(data, TaskStatus.PENDING)
        + _count(data, TaskStatus.IN_PROGRESS),
        files_processed=_count(data, TaskStatus.DONE),
        files_failed=_count(data, TaskStatus.FAILED),
        files_skipped=_count(data, TaskStatus.SKIPPED),
        has_ambiguous=bool(unresolved_ambiguous(state)),
        candidate_count=len(data.domain_candidates),
    )


def is_analysis_complete(data: AnalyzerData) -> bool:
    return all(
        t.status not in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
        for t in data.queue
    )

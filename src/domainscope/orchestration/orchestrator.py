"""Orchestrator state machine: pure transitions over (data, state).

Phases only move forward (INIT → ANALYZING → SUMMARIZING → TRANSFORMING
→ COMPLETE). FAILED is reachable from every phase but COMPLETE, and
the only way out of FAILED is an explicit ``resume`` back to ANALYZING.
HITL history is append-only.
"""

from __future__ import annotations

import logging

from domainscope.constants import (
    SKIP_OPTION_ID,
    AgentStatus,
    DomainStatus,
    Phase,
    StageName,
)
from domainscope.orchestration.schemas import (
    AgentRef,
    DiscoveredDomain,
    HITLHistoryEntry,
    HITLRequest,
    HITLResponse,
    HITLState,
    OrchestratorData,
    OrchestratorDerived,
    OrchestratorState,
)
from domainscope.resilience.errors import (
    InvalidHITLResponseError,
    InvalidPhaseTransitionError,
)

logger = logging.getLogger(__name__)

PHASE_ORDER: tuple[Phase, ...] = (
    Phase.INIT,
    Phase.ANALYZING,
    Phase.SUMMARIZING,
    Phase.TRANSFORMING,
    Phase.COMPLETE,
)


def create_initial_data(
    root_dir: str = "", output_dir: str = ""
) -> OrchestratorData:
    return OrchestratorData(root_dir=root_dir, output_dir=output_dir)


def create_initial_state(model: str = "") -> OrchestratorState:
    state = OrchestratorState()
    meta = state.meta.model_copy(update={"current_model": model})
    return state.model_copy(update={"meta": meta})


# ── Derived ──────────────────────────────────────────────


def calculate_confidence(data: OrchestratorData) -> float:
    if data.progress.total == 0:
        return 0.0
    return data.progress.completed / data.progress.total


def calculate_can_proceed(
    data: OrchestratorData, state: OrchestratorState
) -> bool:
    return not state.hitl.pending and data.phase != Phase.FAILED


def calculate_estimated_time_remaining(
    data: OrchestratorData, state: OrchestratorState
) -> float:
    """Seconds left; one unit per second until a rate has been observed."""
    remaining = max(0, data.progress.total - data.progress.completed)
    rate = state.meta.processing_rate
    return remaining / rate if rate > 0 else float(remaining)


def calculate_derived(
    data: OrchestratorData, state: OrchestratorState
) -> OrchestratorDerived:
    return OrchestratorDerived(
        confidence=calculate_confidence(data),
        can_proceed=calculate_can_proceed(data, state),
        estimated_time_remaining=calculate_estimated_time_remaining(
            data, state
        ),
    )


# ── Phase transitions ────────────────────────────────────


def can_transition(current: Phase, target: Phase) -> bool:
    if target == Phase.FAILED:
        return current != Phase.COMPLETE
    if current == Phase.FAILED:
        return False
    return PHASE_ORDER.index(target) >= PHASE_ORDER.index(current)


def set_phase(data: OrchestratorData, phase: Phase) -> OrchestratorData:
    """Move to ``phase``; staying in the current phase is a no-op.

    Raises:
        InvalidPhaseTransitionError: ``phase`` lies behind the current
            phase, or the orchestrator is FAILED.
    """
    if data.phase == phase:
        return data
    if not can_transition(data.phase, phase):
        raise InvalidPhaseTransitionError(data.phase, phase)
    logger.info("event=phase_changed from=%s to=%s", data.phase, phase)
    return data.model_copy(update={"phase": phase})


def start_analysis(
    data: OrchestratorData,
    state: OrchestratorState,
    *,
    root_dir: str,
    output_dir: str,
) -> tuple[OrchestratorData, OrchestratorState]:
    data = set_phase(data, Phase.ANALYZING).model_copy(
        update={"root_dir": root_dir, "output_dir": output_dir}
    )
    meta = state.meta.model_copy(update={"attempts": state.meta.attempts + 1})
    return data, state.model_copy(update={"meta": meta})


def fail(
    data: OrchestratorData, state: OrchestratorState, error: str
) -> tuple[OrchestratorData, OrchestratorState]:
    """Record ``error`` and move to FAILED.

    Raises:
        InvalidPhaseTransitionError: the orchestrator is already COMPLETE.
    """
    if not can_transition(data.phase, Phase.FAILED):
        raise InvalidPhaseTransitionError(data.phase, Phase.FAILED)
    logger.error("event=orchestrator_failed phase=%s error=%s", data.phase, error)
    meta = state.meta.model_copy(update={"last_error": error})
    return (
        data.model_copy(update={"phase": Phase.FAILED}),
        state.model_copy(update={"meta": meta}),
    )


def resume(
    data: OrchestratorData, state: OrchestratorState
) -> tuple[OrchestratorData, OrchestratorState]:
    """Leave FAILED for ANALYZING; counts as a new attempt.

    Raises:
        InvalidPhaseTransitionError: the orchestrator is not FAILED.
    """
    if data.phase != Phase.FAILED:
        raise InvalidPhaseTransitionError(data.phase, Phase.ANALYZING)
    meta = state.meta.model_copy(
        update={"last_error": None, "attempts": state.meta.attempts + 1}
    )
    logger.info("event=orchestrator_resumed attempts=%d", meta.attempts)
    return (
        data.model_copy(update={"phase": Phase.ANALYZING}),
        state.model_copy(update={"meta": meta}),
    )


def complete(data: OrchestratorData) -> OrchestratorData:
    return set_phase(data, Phase.COMPLETE)


# ── Progress / domains ───────────────────────────────────


def update_progress(
    data: OrchestratorData,
    *,
    total: int | None = None,
    completed: int | None = None,
    blocked: int | None = None,
    skipped: int | None = None,
) -> OrchestratorData:
    changes = {
        k: v
        for k, v in {
            "total": total,
            "completed": completed,
            "blocked": blocked,
            "skipped": skipped,
        }.items()
        if v is not None
    }
    return data.model_copy(
        update={"progress": data.progress.model_copy(update=changes)}
    )


def add_discovered_domain(
    data: OrchestratorData, domain: DiscoveredDomain
) -> OrchestratorData:
    """Append ``domain``, replacing an existing entry with the same id."""
    others = [d for d in data.discovered_domains if d.id != domain.id]
    return data.model_copy(update={"discovered_domains": [*others, domain]})


def sync_discovered_domains(
    data: OrchestratorData, domains: list[DiscoveredDomain]
) -> OrchestratorData:
    """Replace the list with ``domains``, keeping each known id's status.

    Entries whose id no longer appears (merged away) are dropped; renamed
    domains keep their id and pick up the new name.
    """
    status = {d.id: d.status for d in data.discovered_domains}
    synced = [
        d.model_copy(update={"status": status[d.id]}) if d.id in status else d
        for d in domains
    ]
    return data.model_copy(update={"discovered_domains": synced})


def update_discovered_domain(
    data: OrchestratorData,
    domain_id: str,
    *,
    status: DomainStatus | None = None,
    confidence: float | None = None,
    description: str | None = None,
) -> OrchestratorData:
    changes = {
        k: v
        for k, v in {
            "status": status,
            "confidence": confidence,
            "description": description,
        }.items()
        if v is not None
    }
    domains = [
        d.model_copy(update=changes) if d.id == domain_id else d
        for d in data.discovered_domains
    ]
    return data.model_copy(update={"discovered_domains": domains})


# ── Children / meta ──────────────────────────────────────


def set_child_status(
    state: OrchestratorState,
    stage: StageName,
    status: AgentStatus,
    *,
    snapshot_ref: str | None = None,
) -> OrchestratorState:
    current: AgentRef | None = getattr(state.children, stage.value)
    ref = (current or AgentRef(id=stage.value)).model_copy(
        update={
            "status": status,
            "snapshot_ref": snapshot_ref
            if snapshot_ref is not None
            else (current.snapshot_ref if current else None),
        }
    )
    children = state.children.model_copy(update={stage.value: ref})
    return state.model_copy(update={"children": children})


def upgrade_model(state: OrchestratorState, model: str) -> OrchestratorState:
    logger.info(
        "event=model_upgraded from=%s to=%s", state.meta.current_model, model
    )
    meta = state.meta.model_copy(update={"current_model": model})
    return state.model_copy(update={"meta": meta})


def record_processing_rate(
    state: OrchestratorState, rate: float
) -> OrchestratorState:
    meta = state.meta.model_copy(update={"processing_rate": max(0.0, rate)})
    return state.model_copy(update={"meta": meta})


def update_context_usage(
    state: OrchestratorState, usage: float
) -> OrchestratorState:
    meta = state.meta.model_copy(update={"context_usage": usage})
    return state.model_copy(update={"meta": meta})


# ── HITL ─────────────────────────────────────────────────


def request_hitl(
    state: OrchestratorState, request: HITLRequest
) -> OrchestratorState:
    hitl = state.hitl.model_copy(update={"pending": True, "request": request})
    return state.model_copy(update={"hitl": hitl})


def resolve_hitl(
    state: OrchestratorState, response: HITLResponse
) -> OrchestratorState:
    """Record ``response`` and clear the pending request.

    Without an active request this is a no-op. The reserved skip option
    is always accepted.

    Raises:
        InvalidHITLResponseError: the option was never offered.
    """
    request = state.hitl.request
    if request is None:
        return state
    offered = {o.id for o in request.options}
    if response.option_id != SKIP_OPTION_ID and response.option_id not in offered:
        raise InvalidHITLResponseError(
            f"Option {response.option_id!r} was not offered for {request.file}"
        )
    entry = HITLHistoryEntry(request=request, response=response)
    hitl = HITLState(
        pending=False, request=None, history=[*state.hitl.history, entry]
    )
    return state.model_copy(update={"hitl": hitl})

"""Pydantic models for the orchestrator snapshot and HITL channel."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from domainscope.analysis.schemas import Confidence
from domainscope.constants import AgentStatus, DomainStatus, Phase


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class AgentRef(_Frozen):
    """A child stage as seen by the orchestrator."""

    id: str
    status: AgentStatus = AgentStatus.IDLE
    # Latest persisted snapshot version of the child, if any
    snapshot_ref: str | None = None


class OrchestratorChildren(_Frozen):
    analyzer: AgentRef | None = None
    summarizer: AgentRef | None = None
    transformer: AgentRef | None = None


# ── HITL ─────────────────────────────────────────────────


class HITLOption(_Frozen):
    id: str
    label: str
    action: str
    confidence: Confidence = 0.0


class HITLRequest(_Frozen):
    file: str
    pattern: str | None = None
    question: str
    options: list[HITLOption] = Field(
        default_factory=lambda: list[HITLOption]()
    )
    # Ambiguous pattern or conflict this request is about
    subject_id: str | None = None


class HITLResponse(_Frozen):
    option_id: str
    custom_input: str | None = None


class HITLHistoryEntry(_Frozen):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    request: HITLRequest
    response: HITLResponse


class HITLState(_Frozen):
    pending: bool = False
    request: HITLRequest | None = None
    history: list[HITLHistoryEntry] = Field(
        default_factory=lambda: list[HITLHistoryEntry]()
    )


# ── Data / state ─────────────────────────────────────────


class Progress(_Frozen):
    total: int = 0
    completed: int = 0
    blocked: int = 0
    skipped: int = 0


class DiscoveredDomain(_Frozen):
    id: str
    name: str
    description: str = ""
    files: list[str] = Field(default_factory=lambda: list[str]())
    confidence: Confidence = 0.0
    status: DomainStatus = DomainStatus.PENDING


class OrchestratorMeta(_Frozen):
    attempts: int = 0
    last_error: str | None = None
    current_model: str = ""
    context_usage: float = 0.0
    # Units per second; 0 until the first measurement
    processing_rate: float = 0.0


class OrchestratorData(_Frozen):
    phase: Phase = Phase.INIT
    progress: Progress = Field(default_factory=Progress)
    root_dir: str = ""
    output_dir: str = ""
    discovered_domains: list[DiscoveredDomain] = Field(
        default_factory=lambda: list[DiscoveredDomain]()
    )


class OrchestratorState(_Frozen):
    children: OrchestratorChildren = Field(
        default_factory=OrchestratorChildren
    )
    hitl: HITLState = Field(default_factory=HITLState)
    meta: OrchestratorMeta = Field(default_factory=OrchestratorMeta)


class OrchestratorDerived(_Frozen):
    confidence: float
    can_proceed: bool
    estimated_time_remaining: float

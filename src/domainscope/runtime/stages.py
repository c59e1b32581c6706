"""Stage runner protocol and the bridge from stage findings to HITL requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from domainscope.analysis.schemas import AmbiguousPattern
from domainscope.constants import SKIP_OPTION_ID, StageName
from domainscope.orchestration.schemas import (
    DiscoveredDomain,
    HITLOption,
    HITLRequest,
    HITLResponse,
)
from domainscope.summary.schemas import DomainConflict

SKIP_LABEL = "Skip and mark for manual review"


@dataclass
class StageReport:
    """What a stage run produced, as the orchestrator needs to see it."""

    stage: StageName
    total: int = 0
    completed: int = 0
    skipped: int = 0
    processing_rate: float = 0.0
    domains: list[DiscoveredDomain] = field(
        default_factory=lambda: list[DiscoveredDomain]()
    )


class StageRunner(Protocol):
    name: StageName
    # Version of the last snapshot this stage persisted
    snapshot_version: int | None

    async def run(self) -> StageReport: ...

    def pending_hitl(self) -> list[HITLRequest]:
        """Open questions for a human, oldest first."""
        ...

    async def on_hitl_resolved(
        self, subject_id: str, response: HITLResponse
    ) -> None: ...

    async def restore(self) -> bool: ...


def _skip_option() -> HITLOption:
    return HITLOption(id=SKIP_OPTION_ID, label=SKIP_LABEL, action="skip")


def hitl_request_for_ambiguous(ambiguous: AmbiguousPattern) -> HITLRequest:
    pattern = ambiguous.pattern
    options = [
        HITLOption(
            id=r.id,
            label=r.label,
            action=r.action.value,
            confidence=r.confidence,
        )
        for r in ambiguous.suggested_resolutions
    ]
    if not any(o.id == SKIP_OPTION_ID for o in options):
        options.append(_skip_option())
    return HITLRequest(
        file=ambiguous.file_path,
        pattern=pattern.name,
        question=(
            f"How should {pattern.kind} {pattern.name!r} be classified? "
            f"{ambiguous.reason}"
        ),
        options=options,
        subject_id=ambiguous.id,
    )


def hitl_request_for_conflict(conflict: DomainConflict) -> HITLRequest:
    options = [
        HITLOption(
            id=r.id,
            label=r.label,
            action=r.action.value,
            confidence=r.confidence,
        )
        for r in conflict.suggested_resolutions
    ]
    options.append(_skip_option())
    return HITLRequest(
        file=", ".join(conflict.domains),
        question=f"Domain conflict ({conflict.type}): {conflict.description}",
        options=options,
        subject_id=conflict.id,
    )

"""Async driver for the orchestrator state machine.

Each ``advance`` performs one step of the pipeline: run the stage that
belongs to the current phase, surface its first open question for a
human, or move on to the next phase. Stage failures never raise out of
``advance``; they move the orchestrator to FAILED, from where
``resume`` restarts at ANALYZING and skips stages that already finished.
The orchestrator snapshot is persisted after every step.
"""

from __future__ import annotations

import logging
from typing import Any

from domainscope.constants import (
    SKIP_OPTION_ID,
    AgentStatus,
    DomainStatus,
    EffectType,
    EventType,
    Phase,
    StageName,
)
from domainscope.orchestration import orchestrator
from domainscope.orchestration.effects import EffectPort
from domainscope.orchestration.events import EventQueue
from domainscope.orchestration.schemas import (
    HITLResponse,
    OrchestratorData,
    OrchestratorDerived,
    OrchestratorState,
)
from domainscope.runtime.analyzer_runtime import AnalyzerRuntime
from domainscope.runtime.pipeline import PipelineStage
from domainscope.runtime.stages import StageReport, StageRunner
from domainscope.runtime.summarizer_runtime import SummarizerRuntime
from domainscope.summary.summarizer import alternatives_for

logger = logging.getLogger(__name__)

_NEXT_PHASE = {
    Phase.ANALYZING: Phase.SUMMARIZING,
    Phase.SUMMARIZING: Phase.TRANSFORMING,
}


class OrchestratorRuntime:
    name = StageName.ORCHESTRATOR

    def __init__(
        self,
        effects: EffectPort,
        *,
        analyzer: AnalyzerRuntime,
        summarizer: SummarizerRuntime,
        root_dir: str,
        output_dir: str,
        model: str = "",
        hitl_enabled: bool = True,
        events: EventQueue | None = None,
    ) -> None:
        self._effects = effects
        self._root_dir = root_dir
        self._output_dir = output_dir
        self._hitl_enabled = hitl_enabled
        self.analyzer = analyzer
        self.summarizer = summarizer
        self.events = events or EventQueue()
        self.data: OrchestratorData = orchestrator.create_initial_data()
        self.state: OrchestratorState = orchestrator.create_initial_state(model)
        self._runners: dict[Phase, StageRunner] = {
            Phase.ANALYZING: analyzer,
            Phase.SUMMARIZING: summarizer,
        }

    @property
    def derived(self) -> OrchestratorDerived:
        return orchestrator.calculate_derived(self.data, self.state)

    @property
    def phase(self) -> Phase:
        return self.data.phase

    # ── Driving ──────────────────────────────────────────

    async def start(self) -> None:
        self.data, self.state = orchestrator.start_analysis(
            self.data,
            self.state,
            root_dir=self._root_dir,
            output_dir=self._output_dir,
        )
        for runner in self._runners.values():
            self.state = orchestrator.set_child_status(
                self.state, runner.name, AgentStatus.IDLE
            )
        self._emit_phase(Phase.INIT)
        await self.save_snapshot()

    async def advance(self) -> bool:
        """Perform one step; False once blocked on a human or finished."""
        if self.state.hitl.pending:
            return False
        match self.data.phase:
            case Phase.INIT:
                await self.start()
                return True
            case Phase.ANALYZING | Phase.SUMMARIZING:
                return await self._advance_stage(self._runners[self.data.phase])
            case Phase.TRANSFORMING:
                return await self._transform()
            case _:
                return False

    async def run(self) -> Phase:
        """Advance until COMPLETE, FAILED or a pending HITL request."""
        while await self.advance():
            pass
        return self.data.phase

    async def _advance_stage(self, runner: StageRunner) -> bool:
        phase = self.data.phase
        child = getattr(self.state.children, runner.name.value)
        finished = child is not None and child.status in (
            AgentStatus.DONE,
            AgentStatus.WAITING,
        )
        if not finished:
            report = await self._run_stage(runner)
            if report is None:
                return False
            self._apply_report(report)

        pending = runner.pending_hitl()
        if pending and self._hitl_enabled:
            request = pending[0]
            self.state = orchestrator.request_hitl(self.state, request)
            self._set_child(runner, AgentStatus.WAITING)
            self.events.emit(
                EventType.HITL_REQUESTED,
                phase,
                subject_id=request.subject_id,
                question=request.question,
                options=[o.id for o in request.options],
            )
            await self._effects.log_effect(
                EffectType.HITL,
                {"event": "requested", "request": request.model_dump(mode="json")},
            )
            await self.save_snapshot()
            return False

        if pending:
            # HITL disabled: the items stay unresolved and flagged for review
            self.data = orchestrator.update_progress(
                self.data, blocked=len(pending)
            )
        self._set_child(runner, AgentStatus.DONE)
        self.data = orchestrator.set_phase(self.data, _NEXT_PHASE[phase])
        self._emit_phase(phase)
        await self.save_snapshot()
        return True

    async def _run_stage(self, runner: StageRunner) -> StageReport | None:
        self._set_child(runner, AgentStatus.RUNNING)
        stage = PipelineStage[None, StageReport](
            name=runner.name.value, execute=lambda _: runner.run()
        )
        result = await stage.run(None)
        if result.ok and result.output is not None:
            return result.output
        await self._fail(runner.name, result.error or "stage failed")
        return None

    def _apply_report(self, report: StageReport) -> None:
        self.data = orchestrator.update_progress(
            self.data,
            total=report.total,
            completed=report.completed,
            skipped=report.skipped,
        )
        self.state = orchestrator.record_processing_rate(
            self.state, report.processing_rate
        )
        if report.stage == StageName.SUMMARIZER:
            known = {d.id for d in self.data.discovered_domains}
            for domain in report.domains:
                if domain.id in known:
                    continue
                self.events.emit(
                    EventType.DOMAIN_DISCOVERED,
                    self.data.phase,
                    name=domain.name,
                    files=len(domain.files),
                    confidence=domain.confidence,
                )
            self.data = orchestrator.sync_discovered_domains(
                self.data, report.domains
            )
        self.events.emit(
            EventType.PROGRESS,
            self.data.phase,
            total=report.total,
            completed=report.completed,
            skipped=report.skipped,
        )

    async def _transform(self) -> bool:
        self.state = orchestrator.set_child_status(
            self.state, StageName.TRANSFORMER, AgentStatus.RUNNING
        )
        stage = PipelineStage[None, int](
            name=StageName.TRANSFORMER.value, execute=self._write_proposals
        )
        result = await stage.run(None)
        if not result.ok:
            await self._fail(
                StageName.TRANSFORMER, result.error or "transform failed"
            )
            return False
        self.state = orchestrator.set_child_status(
            self.state, StageName.TRANSFORMER, AgentStatus.DONE
        )
        self.data = orchestrator.complete(self.data)
        self._emit_phase(Phase.TRANSFORMING)
        self.events.emit(
            EventType.COMPLETE,
            Phase.COMPLETE,
            domains=len(self.data.discovered_domains),
            written=result.output,
        )
        await self.save_snapshot()
        logger.info(
            "event=discovery_complete domains=%d",
            len(self.data.discovered_domains),
        )
        return False

    def _sync_domains(self) -> None:
        self.data = orchestrator.sync_discovered_domains(
            self.data, self.summarizer.discovered_domains()
        )

    async def _write_proposals(self, _: None) -> int:
        self._sync_domains()
        state = self.summarizer.state
        written = 0
        for proposal in state.schema_proposals.values():
            content: dict[str, Any] = {
                "proposal": proposal.model_dump(mode="json"),
                "alternatives": [
                    a.model_dump(mode="json")
                    for a in alternatives_for(state, proposal.id)
                ],
            }
            location = await self._effects.write_domain_file(
                proposal.domain_name, content
            )
            self.data = orchestrator.update_discovered_domain(
                self.data,
                proposal.domain_id,
                status=DomainStatus.DONE,
                confidence=proposal.confidence,
            )
            logger.info(
                "event=domain_written domain=%s location=%s",
                proposal.domain_name,
                location,
            )
            written += 1
        return written

    async def _fail(self, stage: StageName, error: str) -> None:
        phase = self.data.phase
        self.data, self.state = orchestrator.fail(self.data, self.state, error)
        self.state = orchestrator.set_child_status(
            self.state, stage, AgentStatus.FAILED
        )
        self.events.emit(EventType.ERROR, phase, stage=stage.value, error=error)
        self._emit_phase(phase)
        await self.save_snapshot()

    # ── External commands ────────────────────────────────

    async def resolve_human_input(self, response: HITLResponse) -> None:
        """Answer the pending HITL request and hand the choice to its stage.

        Raises:
            InvalidHITLResponseError: the option was never offered.
        """
        request = self.state.hitl.request
        if request is None:
            logger.warning("event=hitl_response_ignored reason=no_request")
            return
        self.state = orchestrator.resolve_hitl(self.state, response)
        runner = self._runners.get(self.data.phase)
        if runner is not None and request.subject_id is not None:
            await runner.on_hitl_resolved(request.subject_id, response)
            self._set_child(runner, AgentStatus.DONE)
            if runner is self.summarizer:
                self._sync_domains()
        if response.option_id == SKIP_OPTION_ID:
            self.data = orchestrator.update_progress(
                self.data, skipped=self.data.progress.skipped + 1
            )
        self.events.emit(
            EventType.HITL_RESOLVED,
            self.data.phase,
            subject_id=request.subject_id,
            option_id=response.option_id,
        )
        await self._effects.log_effect(
            EffectType.HITL,
            {
                "event": "resolved",
                "subject_id": request.subject_id,
                "response": response.model_dump(mode="json"),
            },
        )
        await self.save_snapshot()

    async def resume(self) -> None:
        """Leave FAILED and continue from ANALYZING.

        Raises:
            InvalidPhaseTransitionError: the orchestrator is not FAILED.
        """
        self.data, self.state = orchestrator.resume(self.data, self.state)
        self._emit_phase(Phase.FAILED)
        await self.save_snapshot()

    async def upgrade_model(self, model: str) -> None:
        previous = self.state.meta.current_model
        self.state = orchestrator.upgrade_model(self.state, model)
        self.events.emit(
            EventType.MODEL_UPGRADED,
            self.data.phase,
            previous=previous,
            model=model,
        )
        await self.save_snapshot()

    # ── Persistence ──────────────────────────────────────

    async def save_snapshot(self) -> int:
        return await self._effects.save_snapshot(
            self.name, self.data, self.state
        )

    async def restore(self) -> bool:
        """Load the latest orchestrator snapshot and every stage's own."""
        stored = await self._effects.load_snapshot(self.name)
        if stored is None:
            return False
        self.data = OrchestratorData.model_validate(stored.data)
        self.state = OrchestratorState.model_validate(stored.state)
        for runner in self._runners.values():
            await runner.restore()
        logger.info(
            "event=orchestrator_restored version=%d phase=%s",
            stored.version,
            self.data.phase,
        )
        return True

    def _set_child(self, runner: StageRunner, status: AgentStatus) -> None:
        ref = (
            str(runner.snapshot_version)
            if runner.snapshot_version is not None
            else None
        )
        self.state = orchestrator.set_child_status(
            self.state, runner.name, status, snapshot_ref=ref
        )

    def _emit_phase(self, previous: Phase) -> None:
        self.events.emit(
            EventType.PHASE_CHANGED,
            self.data.phase,
            previous=previous.value,
        )

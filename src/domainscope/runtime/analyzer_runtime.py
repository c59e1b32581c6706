"""Async driver for the analyzer stage.

Files are analyzed in priority order, ``max_concurrency`` at a time
(1 by default, so strictly one after another). A file that fails
becomes a failed task and the loop moves on. A snapshot is persisted
every ``snapshot_interval`` processed files and once more after the
graph, candidates and ambiguities have been computed.
"""

from __future__ import annotations

import asyncio
import logging
import time

from domainscope.analysis import analyzer
from domainscope.analysis.analyzer import (
    AnalyzerConfig,
    AnalyzerData,
    AnalyzerState,
)
from domainscope.analysis.dependency_graph import build_dependency_graph
from domainscope.analysis.domain_extractor import (
    detect_ambiguous_patterns,
    extract_domain_candidates,
)
from domainscope.analysis.priority import create_file_tasks
from domainscope.analysis.schemas import FileAnalysis, FileTask
from domainscope.constants import (
    EventType,
    Phase,
    ResolutionAction,
    StageName,
    TaskStatus,
)
from domainscope.orchestration.effects import EffectPort
from domainscope.orchestration.events import EventQueue
from domainscope.orchestration.schemas import HITLRequest, HITLResponse
from domainscope.runtime.pipeline import PipelineStage, StageResult
from domainscope.runtime.stages import StageReport, hitl_request_for_ambiguous

logger = logging.getLogger(__name__)


class AnalyzerRuntime:
    name = StageName.ANALYZER

    def __init__(
        self,
        effects: EffectPort,
        events: EventQueue,
        *,
        root_dir: str = "",
        config: AnalyzerConfig | None = None,
    ) -> None:
        self._effects = effects
        self._events = events
        self.data: AnalyzerData = analyzer.create_initial_data(root_dir, config)
        self.state: AnalyzerState = analyzer.create_initial_state()
        self._since_snapshot = 0
        self.snapshot_version: int | None = None
        self._analyze_stage = PipelineStage[str, FileAnalysis](
            name="analyze_file", execute=effects.analyze_file
        )

    @property
    def config(self) -> AnalyzerConfig:
        return self.data.config

    # ── Lifecycle ────────────────────────────────────────

    async def start(self) -> None:
        files = await self._effects.scan_files()
        tasks = create_file_tasks(files, self.data.root_dir)
        self.data = analyzer.add_to_queue(self.data, tasks)
        self.state = analyzer.increment_attempts(self.state)
        logger.info(
            "event=analysis_started root=%s files=%d",
            self.data.root_dir,
            len(tasks),
        )
        self._emit_progress()

    async def run(self) -> StageReport:
        if not self.data.queue:
            await self.start()
        started = time.monotonic()
        processed = 0
        while not analyzer.is_analysis_complete(self.data):
            processed += await self.process_batch()
            self.state = analyzer.record_progress(
                self.state,
                last_file=self.state.meta.last_processed_file or "",
                processed=processed,
                elapsed_seconds=time.monotonic() - started,
            )
        await self.finalize()
        return self.report()

    async def process_batch(self) -> int:
        """Analyze the next batch of pending tasks; returns how many ran."""
        batch = analyzer.next_pending(self.data, self.config.max_concurrency)
        if not batch:
            return 0
        for task in batch:
            self.data = analyzer.start_task(self.data, task.path)
        results = await asyncio.gather(
            *(self._analyze_stage.run(task.path) for task in batch)
        )
        for task, result in zip(batch, results, strict=True):
            self._apply_result(task, result)
        self.data = self.data.model_copy(update={"current": None})
        self.state = analyzer.update_confidence(self.data, self.state)

        self._since_snapshot += len(batch)
        if self._since_snapshot >= self.config.snapshot_interval:
            await self.save_snapshot()
        self._emit_progress()
        return len(batch)

    def _apply_result(
        self, task: FileTask, result: StageResult[FileAnalysis]
    ) -> None:
        if result.ok and result.output is not None:
            self.data = analyzer.complete_task(
                self.data, task.path, result.output
            )
            self._events.emit(
                EventType.FILE_ANALYZED,
                Phase.ANALYZING,
                path=task.path,
                patterns=len(result.output.patterns),
            )
        else:
            message = result.error or "analysis failed"
            self.data, self.state = analyzer.fail_task(
                self.data, self.state, task.path, message
            )
            logger.warning(
                "event=file_failed path=%s error=%s", task.path, message
            )
            self._events.emit(
                EventType.FILE_FAILED,
                Phase.ANALYZING,
                path=task.path,
                error=message,
            )
        meta = self.state.meta.model_copy(
            update={"last_processed_file": task.path}
        )
        self.state = self.state.model_copy(update={"meta": meta})

    async def finalize(self) -> None:
        """Build the graph, extract candidates and flag ambiguities."""
        analyses = list(self.data.results.values())
        graph = build_dependency_graph(analyses)
        candidates = extract_domain_candidates(analyses, graph)
        flagged = detect_ambiguous_patterns(
            analyses, candidates, self.config.confidence_threshold
        )

        self.state = analyzer.set_dependency_graph(self.state, graph)
        self.state = analyzer.aggregate_patterns(self.data, self.state)
        self.data = analyzer.set_domain_candidates(self.data, candidates)
        self.state = analyzer.add_ambiguous_patterns(self.state, flagged)
        for item in analyzer.unresolved_ambiguous(self.state):
            self._events.emit(
                EventType.AMBIGUOUS_PATTERN,
                Phase.ANALYZING,
                id=item.id,
                file=item.file_path,
                reason=item.reason,
            )
        await self.save_snapshot()
        logger.info(
            "event=analysis_finalized files=%d candidates=%d ambiguous=%d",
            len(analyses),
            len(candidates),
            len(flagged),
        )

    def report(self) -> StageReport:
        derived = analyzer.calculate_derived(self.data, self.state)
        return StageReport(
            stage=self.name,
            total=len(self.data.queue),
            completed=derived.files_processed,
            skipped=derived.files_skipped + derived.files_failed,
            processing_rate=self.state.meta.processing_rate,
        )

    # ── HITL ─────────────────────────────────────────────

    def pending_hitl(self) -> list[HITLRequest]:
        return [
            hitl_request_for_ambiguous(a)
            for a in analyzer.unresolved_ambiguous(self.state)
        ]

    async def on_hitl_resolved(
        self, subject_id: str, response: HITLResponse
    ) -> None:
        item = next(
            (a for a in self.state.ambiguous if a.id == subject_id), None
        )
        if item is None:
            logger.warning("event=hitl_unknown_subject id=%s", subject_id)
            return
        chosen = next(
            (r for r in item.suggested_resolutions if r.id == response.option_id),
            None,
        )
        if chosen is None:
            chosen = next(r for r in item.suggested_resolutions if r.is_skip)
        if response.custom_input:
            chosen = chosen.model_copy(
                update={
                    "params": {
                        **chosen.params,
                        "custom_input": response.custom_input,
                    }
                }
            )
        self.state = analyzer.resolve_ambiguous_pattern(
            self.state, item.id, chosen
        )
        if chosen.action == ResolutionAction.CLASSIFY_AS:
            self.data = analyzer.assign_file_to_candidate(
                self.data, item.file_path, str(chosen.params["domain_id"])
            )
        logger.info(
            "event=ambiguity_resolved id=%s action=%s", item.id, chosen.action
        )
        await self.save_snapshot()

    # ── Persistence ──────────────────────────────────────

    async def save_snapshot(self) -> int:
        self._since_snapshot = 0
        self.snapshot_version = await self._effects.save_snapshot(
            self.name, self.data, self.state
        )
        return self.snapshot_version

    async def restore(self) -> bool:
        """Load the latest snapshot; interrupted tasks go back to pending."""
        stored = await self._effects.load_snapshot(self.name)
        if stored is None:
            return False
        self.snapshot_version = stored.version
        self.data = analyzer.reset_interrupted_tasks(
            AnalyzerData.model_validate(stored.data)
        )
        self.state = AnalyzerState.model_validate(stored.state)
        logger.info(
            "event=analyzer_restored version=%d pending=%d",
            stored.version,
            sum(1 for t in self.data.queue if t.status == TaskStatus.PENDING),
        )
        return True

    def _emit_progress(self) -> None:
        derived = analyzer.calculate_derived(self.data, self.state)
        self._events.emit(
            EventType.PROGRESS,
            Phase.ANALYZING,
            total=len(self.data.queue),
            completed=derived.files_processed,
            failed=derived.files_failed,
        )

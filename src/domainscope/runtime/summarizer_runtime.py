"""Async driver for the summarizer stage.

Reads the analyzer's results, clusters candidates into domains, extracts
entities and actions (optionally enriched by an LLM), analyzes
relationships and conflicts, and produces one schema proposal per
domain. Enrichment is best effort: a failing provider costs the domain
its enrichment, never the run.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

from domainscope.analysis.analyzer import AnalyzerData, AnalyzerState
from domainscope.analysis.domain_extractor import stamped_patterns
from domainscope.analysis.schemas import Pattern
from domainscope.constants import (
    RETRY_MAX_ATTEMPTS,
    SKIP_OPTION_ID,
    SKIP_RESOLUTION_CONFIDENCE,
    ConflictAction,
    DomainStatus,
    EventType,
    Phase,
    StageName,
)
from domainscope.orchestration.effects import EffectPort
from domainscope.orchestration.events import EventQueue
from domainscope.orchestration.schemas import (
    DiscoveredDomain,
    HITLRequest,
    HITLResponse,
)
from domainscope.resilience.errors import is_retryable
from domainscope.runtime.stages import (
    SKIP_LABEL,
    StageReport,
    hitl_request_for_conflict,
)
from domainscope.summary import summarizer
from domainscope.summary.clustering import perform_clustering
from domainscope.summary.conflicts import detect_conflicts
from domainscope.summary.enrichment import (
    EnrichmentProvider,
    extract_actions_with_llm,
    extract_entities_with_llm,
)
from domainscope.summary.prompts import ACTION_PATTERN_KINDS
from domainscope.summary.relationship import (
    analyze_all_relationships,
    detect_cyclic_dependencies,
    with_boundaries,
)
from domainscope.summary.schema_proposal import (
    extract_actions_from_patterns,
    enrichment_items,
    extract_entities_from_patterns,
    generate_schema_proposal,
    new_by_name,
    validate_schema_proposal,
)
from domainscope.summary.schemas import (
    ConflictResolution,
    DomainConflict,
    ExtractedAction,
    ExtractedEntity,
    SummarizerConfig,
    SummarizerData,
    SummarizerState,
)

logger = logging.getLogger(__name__)

type Enrichment = tuple[list[ExtractedEntity], list[ExtractedAction]]


class AnalysisSource(Protocol):
    """Anything exposing a finished analyzer data/state pair."""

    data: AnalyzerData
    state: AnalyzerState


class SummarizerRuntime:
    name = StageName.SUMMARIZER

    def __init__(
        self,
        effects: EffectPort,
        events: EventQueue,
        source: AnalysisSource,
        *,
        config: SummarizerConfig | None = None,
        provider: EnrichmentProvider | None = None,
        max_retries: int = RETRY_MAX_ATTEMPTS,
    ) -> None:
        self._effects = effects
        self._events = events
        self._source = source
        self._provider = provider
        self._max_retries = max_retries
        self._enrichment_disabled = False
        self.snapshot_version: int | None = None
        self.data: SummarizerData = summarizer.create_initial_data(
            StageName.ANALYZER, config
        )
        self.state: SummarizerState = summarizer.create_initial_state()

    @property
    def config(self) -> SummarizerConfig:
        return self.data.config

    @property
    def enrichment_enabled(self) -> bool:
        return (
            self._provider is not None
            and self.config.enable_llm_enrichment
            and not self._enrichment_disabled
        )

    # ── Run ──────────────────────────────────────────────

    async def run(self) -> StageReport:
        self.state = summarizer.increment_attempts(self.state)
        graph = self._source.state.dependency_graph
        candidates = list(self._source.data.domain_candidates.values())

        self.state = summarizer.start_clustering(self.state)
        clustering = perform_clustering(
            candidates,
            graph,
            self.config.min_cluster_size,
            similarity_threshold=self.config.similarity_threshold,
            confidence_threshold=self.config.confidence_threshold,
        )
        self.data = summarizer.replace_domains(self.data, clustering.domains)
        self.state = summarizer.complete_clustering(
            self.state,
            clusters=len(clustering.clusters),
            noise_files=len(clustering.noise),
        )
        self.state = summarizer.add_ambiguous_patterns(
            self.state,
            [a for a in self._source.state.ambiguous if a.resolution is None],
        )

        started = time.monotonic()
        for processed, domain in enumerate(list(self.data.domains.values()), 1):
            patterns = self._patterns_for(domain.source_files)
            llm_entities, llm_actions = await self._enrich(domain.name, patterns)
            entities = extract_entities_from_patterns(patterns)
            actions = extract_actions_from_patterns(patterns)
            self.data = summarizer.update_domain(
                self.data,
                domain.id,
                entities=[*entities, *new_by_name(entities, llm_entities)],
                actions=[*actions, *new_by_name(actions, llm_actions)],
            )
            self.state = summarizer.record_processed_domain(
                self.state,
                domain.id,
                processed=processed,
                elapsed_seconds=time.monotonic() - started,
            )

        self._analyze_relationships()
        for domain_id in list(self.data.domains):
            self._propose(domain_id)

        await self.save_snapshot()
        derived = summarizer.calculate_derived(self.data, self.state)
        logger.info(
            "event=summarization_done domains=%d conflicts=%d review=%d",
            derived.domain_count,
            len(self.data.conflicts),
            derived.proposals_needing_review,
        )
        return self.report()

    def _patterns_for(self, files: list[str]) -> list[Pattern]:
        results = self._source.data.results
        return [
            pattern
            for path in files
            if path in results
            for pattern in stamped_patterns(results[path])
        ]

    async def _enrich(
        self, domain_name: str, patterns: list[Pattern]
    ) -> Enrichment:
        provider = self._provider
        if provider is None or not self.enrichment_enabled or not patterns:
            return [], []
        calls = 1 + int(any(p.kind in ACTION_PATTERN_KINDS for p in patterns))
        self.state = summarizer.increment_llm_calls(self.state, calls)
        try:
            entities = await extract_entities_with_llm(
                patterns,
                domain_name,
                provider,
                max_retries=self._max_retries,
            )
            actions = await extract_actions_with_llm(
                patterns,
                domain_name,
                provider,
                max_retries=self._max_retries,
            )
        except Exception as exc:
            recoverable = is_retryable(exc)
            self.state = summarizer.add_error(
                self.state,
                f"Enrichment failed: {exc}",
                domain=domain_name,
                recoverable=recoverable,
            )
            if not recoverable:
                self._enrichment_disabled = True
            logger.warning(
                "event=enrichment_failed domain=%s recoverable=%s error=%s",
                domain_name,
                recoverable,
                exc,
            )
            return [], []
        return entities, actions

    def _analyze_relationships(self) -> None:
        graph = self._source.state.dependency_graph
        domains = with_boundaries(list(self.data.domains.values()), graph)
        self.data = summarizer.replace_domains(self.data, domains)

        analysis = analyze_all_relationships(domains, graph)
        self.state = summarizer.add_relationships(
            self.state, analysis.relationships
        )
        cycles = detect_cyclic_dependencies(domains, analysis.relationships)
        conflicts = detect_conflicts(domains, analysis, cycles)
        known = {c.id for c in self.data.conflicts}
        self.data = summarizer.add_conflicts(self.data, conflicts)
        for conflict in conflicts:
            if conflict.id in known:
                continue
            self._events.emit(
                EventType.CONFLICT_DETECTED,
                Phase.SUMMARIZING,
                id=conflict.id,
                type=conflict.type.value,
                domains=list(conflict.domains),
            )

    def _propose(self, domain_id: str) -> None:
        domain = self.data.domains.get(domain_id)
        if domain is None:
            return
        llm_entities, llm_actions = enrichment_items(domain)
        proposal = generate_schema_proposal(
            domain,
            self._patterns_for(domain.source_files),
            llm_entities,
            llm_actions,
            relationships=summarizer.relationships_for_domain(
                self.state, domain_id
            ),
            config=self.config,
        )
        validation = validate_schema_proposal(proposal)
        if not validation.valid:
            proposal = proposal.model_copy(
                update={
                    "needs_review": True,
                    "review_notes": [
                        *proposal.review_notes,
                        *validation.errors,
                    ],
                }
            )
            logger.warning(
                "event=proposal_invalid domain=%s errors=%d",
                domain.name,
                len(validation.errors),
            )
        self.state = summarizer.set_schema_proposal(
            self.data, self.state, proposal
        )
        self._events.emit(
            EventType.PROPOSAL_READY,
            Phase.SUMMARIZING,
            domain=domain.name,
            proposal_id=proposal.id,
            confidence=proposal.confidence,
            needs_review=proposal.needs_review,
        )

    def report(self) -> StageReport:
        domains = list(self.data.domains.values())
        return StageReport(
            stage=self.name,
            total=len(domains),
            completed=sum(
                1 for d in domains if d.id in self.state.schema_proposals
            ),
            processing_rate=self.state.meta.processing_rate,
            domains=self.discovered_domains(),
        )

    def discovered_domains(self) -> list[DiscoveredDomain]:
        """Current domains, pending until their file is written."""
        return [
            DiscoveredDomain(
                id=d.id,
                name=d.name,
                description=d.description,
                files=list(d.source_files),
                confidence=d.confidence,
                status=DomainStatus.PENDING,
            )
            for d in self.data.domains.values()
        ]

    # ── HITL ─────────────────────────────────────────────

    def pending_hitl(self) -> list[HITLRequest]:
        return [
            hitl_request_for_conflict(c)
            for c in summarizer.unresolved_conflicts(self.data)
        ]

    async def on_hitl_resolved(
        self, subject_id: str, response: HITLResponse
    ) -> None:
        conflict = next(
            (c for c in self.data.conflicts if c.id == subject_id), None
        )
        if conflict is None:
            logger.warning("event=hitl_unknown_subject id=%s", subject_id)
            return
        chosen = next(
            (
                r
                for r in conflict.suggested_resolutions
                if r.id == response.option_id
            ),
            None,
        ) or ConflictResolution(
            id=SKIP_OPTION_ID,
            label=SKIP_LABEL,
            action=ConflictAction.SKIP,
            confidence=SKIP_RESOLUTION_CONFIDENCE,
        )
        self.data = summarizer.resolve_conflict(self.data, conflict.id, chosen)
        self._apply_resolution(conflict, chosen, response.custom_input)
        logger.info(
            "event=conflict_resolved id=%s action=%s", conflict.id, chosen.action
        )
        await self.save_snapshot()

    def _apply_resolution(
        self,
        conflict: DomainConflict,
        chosen: ConflictResolution,
        custom_input: str | None,
    ) -> None:
        match chosen.action:
            case ConflictAction.MERGE:
                ids = [
                    i
                    for i in chosen.params.get("domain_ids", "").split(",")
                    if i in self.data.domains
                ]
                if len(ids) < 2:
                    return
                keep, *absorbed = ids
                for other in absorbed:
                    self.data = summarizer.merge_domains(self.data, keep, other)
                    self.state = summarizer.remove_schema_proposal(
                        self.state, other
                    )
                self._propose(keep)
            case ConflictAction.ASSIGN:
                path = chosen.params["file"]
                owner = chosen.params["domain_id"]
                for domain_id in conflict.domains:
                    domain = self.data.domains.get(domain_id)
                    if domain_id == owner or domain is None:
                        continue
                    self.data = summarizer.update_domain(
                        self.data,
                        domain_id,
                        source_files=[
                            f for f in domain.source_files if f != path
                        ],
                    )
                    self._propose(domain_id)
            case ConflictAction.RENAME:
                domain_id = chosen.params["domain_id"]
                domain = self.data.domains.get(domain_id)
                if domain is None:
                    return
                name = custom_input or f"{domain.name}-{domain_id[-4:]}"
                self.data = summarizer.update_domain(
                    self.data, domain_id, name=name
                )
                self._propose(domain_id)
            case ConflictAction.SPLIT | ConflictAction.SKIP:
                note = f"Unresolved conflict: {conflict.description}"
                for domain_id in conflict.domains:
                    domain = self.data.domains.get(domain_id)
                    if domain is None:
                        continue
                    self.data = summarizer.update_domain(
                        self.data,
                        domain_id,
                        needs_review=True,
                        review_notes=[*domain.review_notes, note],
                    )

    # ── Persistence ──────────────────────────────────────

    async def save_snapshot(self) -> int:
        self.snapshot_version = await self._effects.save_snapshot(
            self.name, self.data, self.state
        )
        return self.snapshot_version

    async def restore(self) -> bool:
        stored = await self._effects.load_snapshot(self.name)
        if stored is None:
            return False
        self.snapshot_version = stored.version
        self.data = SummarizerData.model_validate(stored.data)
        self.state = SummarizerState.model_validate(stored.state)
        logger.info(
            "event=summarizer_restored version=%d domains=%d",
            stored.version,
            len(self.data.domains),
        )
        return True

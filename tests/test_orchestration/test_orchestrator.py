"""Tests for the orchestrator's phase machine, progress and HITL channel."""

from __future__ import annotations

import pytest

from domainscope.constants import (
    SKIP_OPTION_ID,
    AgentStatus,
    DomainStatus,
    Phase,
    StageName,
)
from domainscope.orchestration import orchestrator
from domainscope.orchestration.schemas import (
    DiscoveredDomain,
    HITLOption,
    HITLRequest,
    HITLResponse,
)
from domainscope.resilience.errors import (
    InvalidHITLResponseError,
    InvalidPhaseTransitionError,
)

REQUEST = HITLRequest(
    file="src/features/auth/AuthProvider.tsx",
    pattern="AuthProvider",
    question="Which domain owns this file?",
    options=[
        HITLOption(id="auth", label="auth", action="assign", confidence=0.8),
        HITLOption(id="session", label="session", action="assign"),
    ],
    subject_id="amb-1",
)


def _started() -> tuple[
    orchestrator.OrchestratorData, orchestrator.OrchestratorState
]:
    return orchestrator.start_analysis(
        orchestrator.create_initial_data(),
        orchestrator.create_initial_state("model-a"),
        root_dir="/repo",
        output_dir="/out",
    )


class TestPhases:
    def test_initial(self) -> None:
        data = orchestrator.create_initial_data()
        state = orchestrator.create_initial_state("model-a")
        assert data.phase == Phase.INIT
        assert state.meta.current_model == "model-a"
        assert state.hitl.pending is False

    def test_start_analysis(self) -> None:
        data, state = _started()
        assert data.phase == Phase.ANALYZING
        assert data.root_dir == "/repo"
        assert state.meta.attempts == 1

    def test_forward_moves(self) -> None:
        data, _ = _started()
        for phase in (Phase.SUMMARIZING, Phase.TRANSFORMING):
            data = orchestrator.set_phase(data, phase)
        assert orchestrator.complete(data).phase == Phase.COMPLETE

    def test_same_phase_is_noop(self) -> None:
        data, _ = _started()
        assert orchestrator.set_phase(data, Phase.ANALYZING) is data

    def test_backward_move_rejected(self) -> None:
        data, _ = _started()
        data = orchestrator.set_phase(data, Phase.SUMMARIZING)
        with pytest.raises(InvalidPhaseTransitionError) as exc_info:
            orchestrator.set_phase(data, Phase.ANALYZING)
        assert exc_info.value.current == Phase.SUMMARIZING
        assert exc_info.value.target == Phase.ANALYZING

    @pytest.mark.parametrize(
        "phase", [p for p in Phase if p != Phase.COMPLETE]
    )
    def test_failed_reachable_before_complete(self, phase: Phase) -> None:
        assert orchestrator.can_transition(phase, Phase.FAILED)

    def test_complete_cannot_fail(self) -> None:
        data, state = _started()
        for phase in (Phase.SUMMARIZING, Phase.TRANSFORMING, Phase.COMPLETE):
            data = orchestrator.set_phase(data, phase)
        assert not orchestrator.can_transition(Phase.COMPLETE, Phase.FAILED)
        with pytest.raises(InvalidPhaseTransitionError):
            orchestrator.fail(data, state, "late error")
        with pytest.raises(InvalidPhaseTransitionError):
            orchestrator.set_phase(data, Phase.FAILED)

    def test_fail_and_resume(self) -> None:
        data, state = _started()
        data, state = orchestrator.fail(data, state, "disk full")
        assert data.phase == Phase.FAILED
        assert state.meta.last_error == "disk full"
        with pytest.raises(InvalidPhaseTransitionError):
            orchestrator.set_phase(data, Phase.SUMMARIZING)

        data, state = orchestrator.resume(data, state)
        assert data.phase == Phase.ANALYZING
        assert state.meta.last_error is None
        assert state.meta.attempts == 2

    def test_resume_requires_failed(self) -> None:
        data, state = _started()
        with pytest.raises(InvalidPhaseTransitionError):
            orchestrator.resume(data, state)


class TestHITL:
    def test_skip_clears_request(self) -> None:
        _, state = _started()
        state = orchestrator.request_hitl(state, REQUEST)
        assert state.hitl.pending

        state = orchestrator.resolve_hitl(
            state, HITLResponse(option_id=SKIP_OPTION_ID)
        )
        assert state.hitl.pending is False
        assert state.hitl.request is None
        [entry] = state.hitl.history
        assert entry.request == REQUEST
        assert entry.response.option_id == SKIP_OPTION_ID

    def test_offered_option(self) -> None:
        _, state = _started()
        state = orchestrator.request_hitl(state, REQUEST)
        state = orchestrator.resolve_hitl(
            state, HITLResponse(option_id="session", custom_input="note")
        )
        assert state.hitl.history[0].response.custom_input == "note"

    def test_unknown_option_rejected(self) -> None:
        _, state = _started()
        state = orchestrator.request_hitl(state, REQUEST)
        with pytest.raises(InvalidHITLResponseError):
            orchestrator.resolve_hitl(state, HITLResponse(option_id="zzz"))

    def test_resolve_without_request_is_noop(self) -> None:
        _, state = _started()
        response = HITLResponse(option_id="auth")
        assert orchestrator.resolve_hitl(state, response) is state

    def test_history_is_append_only(self) -> None:
        _, state = _started()
        for _ in range(3):
            state = orchestrator.request_hitl(state, REQUEST)
            state = orchestrator.resolve_hitl(
                state, HITLResponse(option_id="auth")
            )
        assert len(state.hitl.history) == 3

    def test_pending_blocks_proceeding(self) -> None:
        data, state = _started()
        assert orchestrator.calculate_can_proceed(data, state)
        state = orchestrator.request_hitl(state, REQUEST)
        assert not orchestrator.calculate_can_proceed(data, state)


class TestProgressAndDomains:
    def test_update_progress_partial(self) -> None:
        data, _ = _started()
        data = orchestrator.update_progress(data, total=10, completed=4)
        data = orchestrator.update_progress(data, skipped=1)
        assert data.progress.total == 10
        assert data.progress.completed == 4
        assert data.progress.skipped == 1

    def test_derived(self) -> None:
        data, state = _started()
        data = orchestrator.update_progress(data, total=10, completed=4)
        derived = orchestrator.calculate_derived(data, state)
        assert derived.confidence == 0.4
        assert derived.estimated_time_remaining == 6.0

        state = orchestrator.record_processing_rate(state, 2.0)
        derived = orchestrator.calculate_derived(data, state)
        assert derived.estimated_time_remaining == 3.0

    def test_empty_progress_has_zero_confidence(self) -> None:
        data, _ = _started()
        assert orchestrator.calculate_confidence(data) == 0.0

    def test_discovered_domains_keyed_by_id(self) -> None:
        data, _ = _started()
        data = orchestrator.add_discovered_domain(
            data, DiscoveredDomain(id="d1", name="auth", confidence=0.5)
        )
        data = orchestrator.add_discovered_domain(
            data, DiscoveredDomain(id="d1", name="auth", confidence=0.9)
        )
        # Same name, different domain
        data = orchestrator.add_discovered_domain(
            data, DiscoveredDomain(id="d2", name="auth", confidence=0.4)
        )
        assert [d.id for d in data.discovered_domains] == ["d1", "d2"]
        assert data.discovered_domains[0].confidence == 0.9

        data = orchestrator.update_discovered_domain(
            data, "d2", status=DomainStatus.DONE
        )
        assert [d.status for d in data.discovered_domains] == [
            DomainStatus.PENDING,
            DomainStatus.DONE,
        ]

    def test_sync_discovered_domains(self) -> None:
        data, _ = _started()
        for domain_id in ("d1", "d2"):
            data = orchestrator.add_discovered_domain(
                data, DiscoveredDomain(id=domain_id, name="cart")
            )
        data = orchestrator.update_discovered_domain(
            data, "d1", status=DomainStatus.DONE
        )

        data = orchestrator.sync_discovered_domains(
            data,
            [
                DiscoveredDomain(id="d1", name="basket"),
                DiscoveredDomain(id="d3", name="shop"),
            ],
        )
        assert [(d.id, d.name, d.status) for d in data.discovered_domains] == [
            ("d1", "basket", DomainStatus.DONE),
            ("d3", "shop", DomainStatus.PENDING),
        ]


class TestChildrenAndMeta:
    def test_child_status_keeps_snapshot_ref(self) -> None:
        _, state = _started()
        state = orchestrator.set_child_status(
            state, StageName.ANALYZER, AgentStatus.RUNNING, snapshot_ref="3"
        )
        state = orchestrator.set_child_status(
            state, StageName.ANALYZER, AgentStatus.DONE
        )
        analyzer = state.children.analyzer
        assert analyzer is not None
        assert analyzer.id == "analyzer"
        assert analyzer.status == AgentStatus.DONE
        assert analyzer.snapshot_ref == "3"
        assert state.children.summarizer is None

    def test_upgrade_model_and_usage(self) -> None:
        _, state = _started()
        state = orchestrator.upgrade_model(state, "model-b")
        state = orchestrator.update_context_usage(state, 0.75)
        assert state.meta.current_model == "model-b"
        assert state.meta.context_usage == 0.75

    def test_negative_rate_clamped(self) -> None:
        _, state = _started()
        state = orchestrator.record_processing_rate(state, -1.0)
        assert state.meta.processing_rate == 0.0

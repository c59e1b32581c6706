"""Tests for the summarizer stage driver.

The fixture has two candidates in different feature directories whose
names normalize to the same domain name, so every run raises exactly
one naming conflict.
"""

from __future__ import annotations

import json

import pytest

from domainscope.constants import (
    SKIP_OPTION_ID,
    ConflictAction,
    DomainStatus,
    EventType,
)
from domainscope.orchestration.events import EventQueue
from domainscope.orchestration.schemas import HITLResponse
from domainscope.resilience.errors import AuthenticationError, RateLimitError
from domainscope.runtime.summarizer_runtime import SummarizerRuntime
from domainscope.summary.schemas import SummarizerConfig
from tests.conftest import (
    CART_A,
    CART_B,
    SHOP_A,
    SHOP_B,
    Harness,
    ScriptedProvider,
    cart_analysis,
    make_harness,
)

CONFLICT_ID = "conflict-naming-cart"

ENRICHMENT_REPLY = json.dumps({
    "entities": [
        {"name": "CartItem", "fields": [{"name": "sku", "type": "string"}]}
    ],
    "actions": [{"name": "checkout", "type": "command"}],
})
EMPTY_REPLY = json.dumps({"entities": [], "actions": []})


def _runtime(
    harness: Harness | None = None,
    *,
    provider: ScriptedProvider | None = None,
    max_retries: int = 3,
) -> tuple[SummarizerRuntime, EventQueue]:
    events = EventQueue()
    runtime = SummarizerRuntime(
        (harness or make_harness([])).effects,
        events,
        cart_analysis(),
        config=SummarizerConfig(enable_llm_enrichment=provider is not None),
        provider=provider,
        max_retries=max_retries,
    )
    return runtime, events


class TestRun:
    @pytest.mark.asyncio
    async def test_domains_conflicts_and_proposals(self) -> None:
        runtime, events = _runtime()
        report = await runtime.run()

        assert list(runtime.data.domains) == ["summary-cart", "summary-cart-2"]
        assert report.total == 2
        assert report.completed == 2
        assert [d.name for d in report.domains] == ["cart", "Cart"]
        assert [d.id for d in report.domains] == list(runtime.data.domains)
        assert {d.status for d in report.domains} == {DomainStatus.PENDING}
        assert runtime.state.clustering.completed
        assert runtime.state.clustering.clusters == 2
        assert runtime.state.relationships == []

        [conflict] = runtime.data.conflicts
        assert conflict.id == CONFLICT_ID
        assert set(runtime.state.schema_proposals) == {
            "summary-cart",
            "summary-cart-2",
        }
        assert runtime.snapshot_version == 1

        drained = events.drain()
        detected = [e for e in drained if e.type == EventType.CONFLICT_DETECTED]
        assert detected[0].payload["id"] == CONFLICT_ID
        ready = [e for e in drained if e.type == EventType.PROPOSAL_READY]
        assert len(ready) == 2

    @pytest.mark.asyncio
    async def test_heuristic_extraction_without_provider(self) -> None:
        runtime, _ = _runtime()
        await runtime.run()
        shop = runtime.data.domains["summary-cart-2"]
        assert {a.name for a in shop.actions} == {"addItem"}
        cart = runtime.data.domains["summary-cart"]
        assert {a.name for a in cart.actions} == {"getCart"}
        assert runtime.state.meta.llm_calls == 0

    @pytest.mark.asyncio
    async def test_conflict_becomes_hitl_request(self) -> None:
        runtime, _ = _runtime()
        await runtime.run()

        [request] = runtime.pending_hitl()
        assert request.subject_id == CONFLICT_ID
        assert [o.id for o in request.options] == [
            "merge-cart",
            "rename-summary-cart-2",
            SKIP_OPTION_ID,
        ]


class TestConflictResolution:
    @pytest.mark.asyncio
    async def test_merge(self) -> None:
        runtime, _ = _runtime()
        await runtime.run()
        await runtime.on_hitl_resolved(
            CONFLICT_ID, HITLResponse(option_id="merge-cart")
        )

        assert list(runtime.data.domains) == ["summary-cart"]
        merged = runtime.data.domains["summary-cart"]
        assert merged.source_files == [CART_A, CART_B, SHOP_A, SHOP_B]
        assert "Merged with domain Cart" in merged.review_notes
        assert list(runtime.state.schema_proposals) == ["summary-cart"]
        assert runtime.pending_hitl() == []
        assert runtime.snapshot_version == 2

        resolution = runtime.data.conflicts[0].resolution
        assert resolution is not None
        assert resolution.action == ConflictAction.MERGE

    @pytest.mark.asyncio
    async def test_rename_uses_custom_input(self) -> None:
        runtime, _ = _runtime()
        await runtime.run()
        await runtime.on_hitl_resolved(
            CONFLICT_ID,
            HITLResponse(
                option_id="rename-summary-cart-2", custom_input="shop"
            ),
        )
        assert runtime.data.domains["summary-cart-2"].name == "shop"
        proposal = runtime.state.schema_proposals["summary-cart-2"]
        assert proposal.domain_name == "shop"

    @pytest.mark.asyncio
    async def test_rename_without_input_suffixes_id(self) -> None:
        runtime, _ = _runtime()
        await runtime.run()
        await runtime.on_hitl_resolved(
            CONFLICT_ID, HITLResponse(option_id="rename-summary-cart-2")
        )
        assert runtime.data.domains["summary-cart-2"].name == "Cart-rt-2"

    @pytest.mark.asyncio
    async def test_skip_flags_both_domains(self) -> None:
        runtime, _ = _runtime()
        await runtime.run()
        await runtime.on_hitl_resolved(
            CONFLICT_ID, HITLResponse(option_id=SKIP_OPTION_ID)
        )
        note = "Unresolved conflict: 2 domains are named cart"
        for domain in runtime.data.domains.values():
            assert domain.needs_review
            assert note in domain.review_notes
        assert runtime.data.conflicts[0].resolution is not None

    @pytest.mark.asyncio
    async def test_unknown_conflict_is_ignored(self) -> None:
        runtime, _ = _runtime()
        await runtime.run()
        await runtime.on_hitl_resolved(
            "conflict-missing", HITLResponse(option_id=SKIP_OPTION_ID)
        )
        assert runtime.snapshot_version == 1
        assert len(runtime.pending_hitl()) == 1


class TestEnrichment:
    @pytest.mark.asyncio
    async def test_llm_items_are_added(self) -> None:
        provider = ScriptedProvider(ENRICHMENT_REPLY)
        runtime, _ = _runtime(provider=provider)
        await runtime.run()

        # Entities and actions for each domain; both hold a handler pattern
        assert len(provider.calls) == 4
        assert runtime.state.meta.llm_calls == 4
        cart = runtime.data.domains["summary-cart"]
        [item] = [e for e in cart.entities if e.name == "CartItem"]
        assert item.source_patterns == ["llm:CartItem"]
        assert "checkout" in {a.name for a in cart.actions}
        assert runtime.state.meta.errors == []

    @pytest.mark.asyncio
    async def test_auth_failure_disables_enrichment(self) -> None:
        provider = ScriptedProvider(AuthenticationError("bad key"))
        runtime, _ = _runtime(provider=provider)
        report = await runtime.run()

        assert len(provider.calls) == 1
        assert not runtime.enrichment_enabled
        [error] = runtime.state.meta.errors
        assert error.recoverable is False
        assert error.domain == "cart"
        # Heuristic output still covers every domain
        assert report.completed == 2

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried_then_recorded(self) -> None:
        provider = ScriptedProvider(RateLimitError("slow down"))
        runtime, _ = _runtime(provider=provider, max_retries=2)
        await runtime.run()

        assert len(provider.calls) == 4
        assert runtime.enrichment_enabled
        assert [e.recoverable for e in runtime.state.meta.errors] == [
            True,
            True,
        ]

    @pytest.mark.asyncio
    async def test_merge_keeps_absorbed_enrichment(self) -> None:
        # Only the second domain ("Cart") gets enrichment items
        provider = ScriptedProvider(
            EMPTY_REPLY, EMPTY_REPLY, ENRICHMENT_REPLY, ENRICHMENT_REPLY
        )
        runtime, _ = _runtime(provider=provider)
        await runtime.run()
        await runtime.on_hitl_resolved(
            CONFLICT_ID, HITLResponse(option_id="merge-cart")
        )

        proposal = runtime.state.schema_proposals["summary-cart"]
        by_path = {f.path: f for f in proposal.entities}
        assert by_path["cart.entities.CartItem"].source == "llm:CartItem"
        assert "cart.entities.CartItem.sku" in by_path
        assert "cart.intents.checkout" in {f.path for f in proposal.intents}


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_after_resolution(self) -> None:
        harness = make_harness([])
        first, _ = _runtime(harness)
        await first.run()
        await first.on_hitl_resolved(
            CONFLICT_ID, HITLResponse(option_id="merge-cart")
        )

        second, _ = _runtime(harness)
        assert await second.restore() is True
        assert second.snapshot_version == 2
        assert second.data == first.data
        assert second.state == first.state
        assert second.pending_hitl() == []

    @pytest.mark.asyncio
    async def test_rename_after_restore_keeps_enrichment(self) -> None:
        harness = make_harness([])
        provider = ScriptedProvider(ENRICHMENT_REPLY)
        first, _ = _runtime(harness, provider=provider)
        await first.run()

        second, _ = _runtime(harness)
        assert await second.restore() is True
        await second.on_hitl_resolved(
            CONFLICT_ID,
            HITLResponse(
                option_id="rename-summary-cart-2", custom_input="basket"
            ),
        )

        proposal = second.state.schema_proposals["summary-cart-2"]
        assert proposal.domain_name == "basket"
        entity_paths = {f.path for f in proposal.entities}
        assert "basket.entities.CartItem" in entity_paths
        assert "basket.intents.checkout" in {f.path for f in proposal.intents}
        # Rebuilt from the snapshot, not by asking the provider again
        assert len(provider.calls) == 4

    @pytest.mark.asyncio
    async def test_nothing_to_restore(self) -> None:
        runtime, _ = _runtime()
        assert await runtime.restore() is False

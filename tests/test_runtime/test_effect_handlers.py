"""Tests for the repository-backed effect port."""

from __future__ import annotations

import json
from pathlib import PurePosixPath

import pytest

from domainscope.analysis.analyzer import (
    AnalyzerData,
    create_initial_data,
    create_initial_state,
)
from domainscope.analysis.schemas import FileAnalysis
from domainscope.constants import EffectType, StageName
from domainscope.repositories.fakes import (
    FakeEffectLogRepository,
    FakeSnapshotRepository,
)
from domainscope.runtime.effect_handlers import StoreBackedEffects
from tests.conftest import AUTH_HOOK, make_harness


async def _types(log: FakeEffectLogRepository) -> list[str]:
    return [e.effect_type for e in await log.list_for_session("session-1")]


@pytest.mark.asyncio
async def test_snapshot_round_trip(auth_files: list[FileAnalysis]) -> None:
    harness = make_harness(auth_files)
    data = create_initial_data("/repo")

    assert await harness.effects.load_snapshot(StageName.ANALYZER) is None
    version = await harness.effects.save_snapshot(
        StageName.ANALYZER, data, create_initial_state()
    )
    stored = await harness.effects.load_snapshot(StageName.ANALYZER)

    assert stored is not None
    assert stored.version == version == 1
    assert stored.stage == StageName.ANALYZER
    assert AnalyzerData.model_validate(stored.data) == data
    assert await _types(harness.effect_log) == [
        EffectType.SAVE_SNAPSHOT,
        EffectType.LOAD_SNAPSHOT,
    ]


@pytest.mark.asyncio
async def test_stages_are_versioned_separately() -> None:
    harness = make_harness([])
    data, state = create_initial_data(), create_initial_state()
    await harness.effects.save_snapshot(StageName.ANALYZER, data, state)
    await harness.effects.save_snapshot(StageName.ANALYZER, data, state)
    assert (
        await harness.effects.save_snapshot(StageName.SUMMARIZER, data, state)
        == 1
    )


@pytest.mark.asyncio
async def test_analyze_file_is_logged_before_running(
    auth_files: list[FileAnalysis],
) -> None:
    harness = make_harness(auth_files)
    analysis = await harness.effects.analyze_file(AUTH_HOOK)
    assert analysis.path == AUTH_HOOK

    [entry] = await harness.effect_log.list_for_session("session-1")
    assert json.loads(entry.payload_json) == {"path": AUTH_HOOK}


@pytest.mark.asyncio
async def test_payloads_fall_back_to_str() -> None:
    harness = make_harness([])
    await harness.effects.log_effect(
        EffectType.HITL, {"where": PurePosixPath("/out/auth.json")}
    )
    [entry] = await harness.effect_log.list_for_session("session-1")
    assert json.loads(entry.payload_json) == {"where": "/out/auth.json"}


@pytest.mark.asyncio
async def test_write_without_writer_is_skipped() -> None:
    log = FakeEffectLogRepository()

    async def scan() -> list[str]:
        return []

    async def analyze(path: str) -> FileAnalysis:
        return FileAnalysis(path=path)

    effects = StoreBackedEffects(
        "session-1",
        snapshots=FakeSnapshotRepository(),
        effect_log=log,
        scanner=scan,
        file_analyzer=analyze,
    )
    assert await effects.write_domain_file("auth", {"proposal": {}}) == ""
    assert await _types(log) == []


@pytest.mark.asyncio
async def test_write_is_logged() -> None:
    harness = make_harness([])
    location = await harness.effects.write_domain_file("auth", {"x": 1})
    assert location == "/out/auth.json"
    assert harness.written == {"auth": {"x": 1}}
    [entry] = await harness.effect_log.list_for_session("session-1")
    assert entry.effect_type == EffectType.WRITE_DOMAIN_FILE

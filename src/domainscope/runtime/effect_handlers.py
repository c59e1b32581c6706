"""Effect port backed by the snapshot/effect-log repositories.

Scanning, per-file analysis and domain-file writing are host concerns
and are injected as callables.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel

from domainscope.analysis.schemas import FileAnalysis
from domainscope.constants import EffectType, StageName
from domainscope.orchestration.effects import StoredSnapshot
from domainscope.repositories.protocols import (
    EffectLogRepository,
    SnapshotRepository,
)

logger = logging.getLogger(__name__)

type Scanner = Callable[[], Awaitable[list[str]]]
type FileAnalyzer = Callable[[str], Awaitable[FileAnalysis]]
type DomainWriter = Callable[[str, dict[str, Any]], Awaitable[str]]


class StoreBackedEffects:
    """``EffectPort`` for one session."""

    def __init__(
        self,
        session_id: str,
        *,
        snapshots: SnapshotRepository,
        effect_log: EffectLogRepository,
        scanner: Scanner,
        file_analyzer: FileAnalyzer,
        domain_writer: DomainWriter | None = None,
    ) -> None:
        self.session_id = session_id
        self._snapshots = snapshots
        self._effect_log = effect_log
        self._scanner = scanner
        self._file_analyzer = file_analyzer
        self._domain_writer = domain_writer

    async def scan_files(self) -> list[str]:
        files = await self._scanner()
        await self.log_effect(EffectType.SCAN_FILES, {"count": len(files)})
        return files

    async def analyze_file(self, path: str) -> FileAnalysis:
        await self.log_effect(EffectType.ANALYZE_FILE, {"path": path})
        return await self._file_analyzer(path)

    async def save_snapshot(
        self, stage: StageName, data: BaseModel, state: BaseModel
    ) -> int:
        version = await self._snapshots.save(
            self.session_id,
            stage.value,
            data.model_dump_json(),
            state.model_dump_json(),
        )
        await self.log_effect(
            EffectType.SAVE_SNAPSHOT,
            {"stage": stage.value, "version": version},
        )
        logger.debug(
            "event=snapshot_saved session=%s stage=%s version=%d",
            self.session_id,
            stage,
            version,
        )
        return version

    async def load_snapshot(self, stage: StageName) -> StoredSnapshot | None:
        row = await self._snapshots.get_latest(self.session_id, stage.value)
        if row is None:
            return None
        await self.log_effect(
            EffectType.LOAD_SNAPSHOT,
            {"stage": stage.value, "version": row.version},
        )
        return StoredSnapshot(
            stage=stage,
            version=row.version,
            data=json.loads(row.data_json),
            state=json.loads(row.state_json),
        )

    async def log_effect(
        self, effect_type: EffectType, payload: dict[str, Any]
    ) -> None:
        await self._effect_log.append(
            self.session_id,
            effect_type.value,
            json.dumps(payload, default=str),
        )

    async def write_domain_file(
        self, name: str, content: dict[str, Any]
    ) -> str:
        if self._domain_writer is None:
            logger.info("event=domain_file_skipped domain=%s", name)
            return ""
        path = await self._domain_writer(name, content)
        await self.log_effect(
            EffectType.WRITE_DOMAIN_FILE, {"domain": name, "path": path}
        )
        return path

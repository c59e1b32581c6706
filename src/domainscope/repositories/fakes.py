"""In-memory fake repositories for testing.

Dict-backed implementations of both repository protocols.
No SQLAlchemy and no I/O: instant operations for unit tests.
"""

from __future__ import annotations

from datetime import UTC, datetime

from domainscope.models.effect_log import EffectLogEntry
from domainscope.models.snapshot import StageSnapshot


class FakeSnapshotRepository:
    """Dict-backed SnapshotRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[tuple[str, str], list[StageSnapshot]] = {}

    async def save(
        self,
        session_id: str,
        stage: str,
        data_json: str,
        state_json: str,
    ) -> int:
        rows = self._store.setdefault((session_id, stage), [])
        version = rows[-1].version + 1 if rows else 1
        rows.append(
            StageSnapshot(
                session_id=session_id,
                stage=stage,
                version=version,
                data_json=data_json,
                state_json=state_json,
                created_at=datetime.now(UTC),
            )
        )
        return version

    async def get_latest(
        self, session_id: str, stage: str
    ) -> StageSnapshot | None:
        rows = self._store.get((session_id, stage), [])
        return rows[-1] if rows else None

    async def get_version(
        self, session_id: str, stage: str, version: int
    ) -> StageSnapshot | None:
        for row in self._store.get((session_id, stage), []):
            if row.version == version:
                return row
        return None

    async def list_versions(
        self, session_id: str, stage: str
    ) -> list[int]:
        return [r.version for r in self._store.get((session_id, stage), [])]

    async def prune(self, session_id: str, stage: str, keep: int) -> int:
        rows = self._store.get((session_id, stage), [])
        removed = max(0, len(rows) - keep)
        if removed:
            self._store[(session_id, stage)] = rows[removed:]
        return removed

    async def delete_session(self, session_id: str) -> int:
        keys = [k for k in self._store if k[0] == session_id]
        return sum(len(self._store.pop(k)) for k in keys)


class FakeEffectLogRepository:
    """List-backed EffectLogRepository for testing."""

    def __init__(self) -> None:
        self._entries: list[EffectLogEntry] = []

    async def append(
        self, session_id: str, effect_type: str, payload_json: str
    ) -> int:
        entry = EffectLogEntry(
            id=len(self._entries) + 1,
            session_id=session_id,
            effect_type=effect_type,
            payload_json=payload_json,
            created_at=datetime.now(UTC),
        )
        self._entries.append(entry)
        return entry.id

    async def list_for_session(
        self, session_id: str
    ) -> list[EffectLogEntry]:
        return [e for e in self._entries if e.session_id == session_id]

"""Protocol-based repository interfaces.

SQL implementations satisfy these protocols structurally (no inheritance).
Test doubles can be plain classes or mocks matching the same signature.
"""

from typing import Protocol

from domainscope.models.effect_log import EffectLogEntry
from domainscope.models.snapshot import StageSnapshot


class SnapshotRepository(Protocol):
    async def save(
        self,
        session_id: str,
        stage: str,
        data_json: str,
        state_json: str,
    ) -> int: ...
    async def get_latest(
        self, session_id: str, stage: str
    ) -> StageSnapshot | None: ...
    async def get_version(
        self, session_id: str, stage: str, version: int
    ) -> StageSnapshot | None: ...
    async def list_versions(
        self, session_id: str, stage: str
    ) -> list[int]: ...
    async def prune(self, session_id: str, stage: str, keep: int) -> int: ...
    async def delete_session(self, session_id: str) -> int: ...


class EffectLogRepository(Protocol):
    async def append(
        self, session_id: str, effect_type: str, payload_json: str
    ) -> int: ...
    async def list_for_session(
        self, session_id: str
    ) -> list[EffectLogEntry]: ...

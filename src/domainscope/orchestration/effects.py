"""Effect port: the only way stage runtimes touch the outside world."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel

from domainscope.analysis.schemas import FileAnalysis
from domainscope.constants import EffectType, StageName


@dataclass(frozen=True)
class StoredSnapshot:
    """A persisted (data, state) pair as plain JSON-compatible dicts."""

    stage: StageName
    version: int
    data: dict[str, Any]
    state: dict[str, Any]


class EffectPort(Protocol):
    async def scan_files(self) -> list[str]: ...

    async def analyze_file(self, path: str) -> FileAnalysis:
        """Raises on unreadable or unparseable input."""
        ...

    async def save_snapshot(
        self, stage: StageName, data: BaseModel, state: BaseModel
    ) -> int:
        """Persist a snapshot and return its new version."""
        ...

    async def load_snapshot(self, stage: StageName) -> StoredSnapshot | None: ...

    async def log_effect(
        self, effect_type: EffectType, payload: dict[str, Any]
    ) -> None: ...

    async def write_domain_file(
        self, name: str, content: dict[str, Any]
    ) -> str:
        """Hand one domain's proposal to the writer; returns where it went."""
        ...

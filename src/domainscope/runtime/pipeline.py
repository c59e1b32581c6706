"""Typed pipeline stages with error isolation."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from domainscope.constants import StageOutcome

logger = logging.getLogger(__name__)


@dataclass
class StageResult[TOutput]:
    """Outcome of a single pipeline stage execution."""

    stage_name: str
    output: TOutput | None
    duration_ms: float
    status: StageOutcome
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == StageOutcome.COMPLETED


@dataclass
class PipelineStage[TInput, TOutput]:
    """A named, typed, async stage that never raises.

    Any exception raised by ``execute`` is logged and reported as a
    FAILED result carrying the error text.
    """

    name: str
    execute: Callable[[TInput], Awaitable[TOutput]]

    async def run(
        self, input_data: TInput
    ) -> StageResult[TOutput]:
        start = time.monotonic()
        try:
            output = await self.execute(input_data)
            elapsed = (time.monotonic() - start) * 1000
            return StageResult(
                stage_name=self.name,
                output=output,
                duration_ms=elapsed,
                status=StageOutcome.COMPLETED,
            )
        except Exception as exc:
            elapsed = (time.monotonic() - start) * 1000
            logger.warning(
                "event=stage_failed stage=%s error=%s", self.name, exc
            )
            return StageResult(
                stage_name=self.name,
                output=None,
                duration_ms=elapsed,
                status=StageOutcome.FAILED,
                error=str(exc) or type(exc).__name__,
            )

"""Optional LLM enrichment of entities and actions.

The provider is a narrow port: one ``complete`` call. Calls are retried
with jittered exponential backoff while the error is retryable;
authentication and model-not-found errors surface on the first attempt
so the caller can fall back to heuristic-only output. A response that
is not valid JSON yields no enrichment rather than an error.
"""

from __future__ import annotations

import json
import logging
import random
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import BaseModel, Field, ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from domainscope.analysis.schemas import Pattern
from domainscope.constants import (
    LLM_ITEM_CONFIDENCE,
    LLM_SOURCE_PREFIX,
    RETRY_BASE_DELAY,
    RETRY_JITTER_RATIO,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY,
    ActionType,
)
from domainscope.resilience.errors import is_retryable
from domainscope.summary.prompts import (
    ACTION_PATTERN_KINDS,
    ENRICHMENT_SYSTEM_PROMPT,
    actions_prompt,
    entities_prompt,
)
from domainscope.summary.schemas import (
    ExtractedAction,
    ExtractedEntity,
    ExtractedField,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


# ── Provider port ────────────────────────────────────────


@dataclass(frozen=True)
class CompletionOptions:
    temperature: float = 0.2
    max_tokens: int = 2000
    json_mode: bool = True


@dataclass(frozen=True)
class CompletionUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class CompletionResult:
    """What an enrichment provider returns for one completion."""

    content: str
    model: str = ""
    usage: CompletionUsage = field(default_factory=CompletionUsage)
    finish_reason: str = "stop"


class EnrichmentProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
    ) -> CompletionResult: ...


# ── Retry policy ─────────────────────────────────────────


def backoff_delay(
    attempt: int, *, jitter: float | None = None
) -> float:
    """Delay before retry ``attempt`` (1-based): 1s doubling to 30s, ±25%.

    ``jitter`` in [-1, 1] pins the random factor.
    """
    base = min(RETRY_BASE_DELAY * 2 ** (attempt - 1), RETRY_MAX_DELAY)
    if jitter is None:
        jitter = random.uniform(-1.0, 1.0)
    return max(0.0, base * (1 + RETRY_JITTER_RATIO * jitter))


def jittered_backoff(retry_state: RetryCallState) -> float:
    return backoff_delay(retry_state.attempt_number)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "event=enrichment_retry attempt=%d error=%s",
        retry_state.attempt_number,
        type(error).__name__ if error else "unknown",
    )


# Module-level so tests can swap in tenacity.wait_none()
retry_wait = jittered_backoff


async def complete_with_retry(
    provider: EnrichmentProvider,
    messages: list[dict[str, str]],
    options: CompletionOptions | None = None,
    *,
    max_retries: int = RETRY_MAX_ATTEMPTS,
) -> CompletionResult:
    """Call ``provider.complete`` under the enrichment retry policy.

    Raises:
        EnrichmentError: non-retryable failure, or retries exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_retries)),
        wait=retry_wait,
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )
    return await retrying(
        provider.complete, messages, options or CompletionOptions()
    )


# ── Response parsing ─────────────────────────────────────


class _LLMField(BaseModel):
    name: str
    type: str = "unknown"
    description: str | None = None


class _LLMEntity(BaseModel):
    name: str
    description: str | None = None
    fields: list[_LLMField] = Field(default_factory=lambda: list[_LLMField]())
    source: str | None = None


class _LLMAction(BaseModel):
    name: str
    type: ActionType = ActionType.COMMAND
    description: str | None = None
    source: str | None = None


class _EntitiesResponse(BaseModel):
    entities: list[_LLMEntity] = Field(
        default_factory=lambda: list[_LLMEntity]()
    )


class _ActionsResponse(BaseModel):
    actions: list[_LLMAction] = Field(
        default_factory=lambda: list[_LLMAction]()
    )


def parse_json_response(content: str) -> object | None:
    """Parse model output as JSON, unwrapping a fenced code block."""
    match = _FENCE_RE.search(content)
    cleaned = match.group(1).strip() if match else content.strip()
    try:
        return json.loads(cleaned)
    except ValueError:
        logger.warning(
            "event=enrichment_parse_failed preview=%r", content[:200]
        )
        return None


def _messages(prompt: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": ENRICHMENT_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def _provenance(source: str | None, name: str) -> list[str]:
    return [f"{LLM_SOURCE_PREFIX}{source or name}"]


async def extract_entities_with_llm(
    patterns: Sequence[Pattern],
    domain_name: str,
    provider: EnrichmentProvider,
    *,
    max_retries: int = RETRY_MAX_ATTEMPTS,
) -> list[ExtractedEntity]:
    if not patterns:
        return []
    result = await complete_with_retry(
        provider,
        _messages(entities_prompt(patterns, domain_name)),
        max_retries=max_retries,
    )
    raw = parse_json_response(result.content)
    if raw is None:
        return []
    try:
        parsed = _EntitiesResponse.model_validate(raw)
    except ValidationError:
        logger.warning(
            "event=enrichment_invalid_shape kind=entities domain=%s",
            domain_name,
        )
        return []
    return [
        ExtractedEntity(
            name=e.name,
            fields=[
                ExtractedField(
                    name=f.name, type=f.type, description=f.description
                )
                for f in e.fields
            ],
            source_patterns=_provenance(e.source, e.name),
            confidence=LLM_ITEM_CONFIDENCE,
        )
        for e in parsed.entities
    ]


async def extract_actions_with_llm(
    patterns: Sequence[Pattern],
    domain_name: str,
    provider: EnrichmentProvider,
    *,
    max_retries: int = RETRY_MAX_ATTEMPTS,
) -> list[ExtractedAction]:
    """Only reducer, hook and effect patterns are sent; none means no call."""
    handlers = [p for p in patterns if p.kind in ACTION_PATTERN_KINDS]
    if not handlers:
        return []
    result = await complete_with_retry(
        provider,
        _messages(actions_prompt(handlers, domain_name)),
        max_retries=max_retries,
    )
    raw = parse_json_response(result.content)
    if raw is None:
        return []
    try:
        parsed = _ActionsResponse.model_validate(raw)
    except ValidationError:
        logger.warning(
            "event=enrichment_invalid_shape kind=actions domain=%s",
            domain_name,
        )
        return []
    return [
        ExtractedAction(
            name=a.name,
            type=a.type,
            source_patterns=_provenance(a.source, a.name),
            confidence=LLM_ITEM_CONFIDENCE,
        )
        for a in parsed.actions
    ]

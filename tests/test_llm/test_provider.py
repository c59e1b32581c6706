"""Tests for the litellm-backed enrichment provider and its breakers."""

from __future__ import annotations

from collections.abc import Iterator
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from circuitbreaker import CircuitBreakerMonitor
from litellm.exceptions import AuthenticationError as LitellmAuthError
from litellm.exceptions import NotFoundError as LitellmNotFoundError
from litellm.exceptions import RateLimitError as LitellmRateLimitError

from domainscope.constants import CB_LLM_FAILURE_THRESHOLD
from domainscope.llm.provider import (
    LiteLLMProvider,
    _breaker_registry,
    map_litellm_error,
    provider_name,
)
from domainscope.resilience.errors import (
    AuthenticationError,
    EnrichmentError,
    ModelNotFoundError,
    RateLimitError,
    TransientEnrichmentError,
)
from domainscope.summary.enrichment import CompletionOptions

MODEL = "openai/gpt-4o-mini"
MESSAGES = [{"role": "user", "content": "hi"}]
ACOMPLETION = "domainscope.llm.provider._acompletion"


@pytest.fixture(autouse=True)
def _reset_breakers() -> None:
    """Reset circuit breakers between tests."""
    _breaker_registry.clear()
    for cb in CircuitBreakerMonitor.get_circuits():
        cb.reset()  # type: ignore[union-attr]


def _response(content: str = '{"entities": []}') -> Any:
    return SimpleNamespace(
        model="gpt-4o-mini-2024",
        usage=SimpleNamespace(
            prompt_tokens=12, completion_tokens=5, total_tokens=17
        ),
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content=content),
                finish_reason="stop",
            )
        ],
    )


@pytest.fixture
def acompletion() -> Iterator[AsyncMock]:
    with patch(ACOMPLETION, new_callable=AsyncMock) as mock:
        mock.return_value = _response()
        yield mock


class TestComplete:
    @pytest.mark.asyncio
    async def test_maps_response(self, acompletion: AsyncMock) -> None:
        provider = LiteLLMProvider(MODEL, timeout=5)
        result = await provider.complete(MESSAGES, CompletionOptions())

        assert result.content == '{"entities": []}'
        assert result.model == "gpt-4o-mini-2024"
        assert result.usage.total_tokens == 17
        assert result.finish_reason == "stop"

        kwargs = acompletion.await_args.kwargs
        assert kwargs["model"] == MODEL
        assert kwargs["timeout"] == 5
        assert kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_plain_text_and_token_cap(
        self, acompletion: AsyncMock
    ) -> None:
        provider = LiteLLMProvider(MODEL)
        await provider.complete(
            MESSAGES, CompletionOptions(json_mode=False, max_tokens=100_000)
        )
        kwargs = acompletion.await_args.kwargs
        assert "response_format" not in kwargs
        assert kwargs["max_tokens"] == 4096

    @pytest.mark.asyncio
    async def test_empty_content(self, acompletion: AsyncMock) -> None:
        acompletion.return_value = _response(content="")
        result = await LiteLLMProvider(MODEL).complete(
            MESSAGES, CompletionOptions()
        )
        assert result.content == ""


class TestErrorMapping:
    def test_provider_name(self) -> None:
        assert provider_name("anthropic/claude-sonnet-4-5") == "anthropic"
        assert provider_name("gpt-4o") == "litellm"

    def test_litellm_errors(self) -> None:
        auth = LitellmAuthError(
            message="bad key", llm_provider="openai", model=MODEL
        )
        limited = LitellmRateLimitError(
            message="slow down", llm_provider="openai", model=MODEL
        )
        missing = LitellmNotFoundError(
            message="no such model", model=MODEL, llm_provider="openai"
        )
        assert isinstance(map_litellm_error(auth, MODEL), AuthenticationError)
        assert isinstance(map_litellm_error(limited, MODEL), RateLimitError)
        mapped = map_litellm_error(missing, MODEL)
        assert isinstance(mapped, ModelNotFoundError)
        assert mapped.provider == "openai"

    def test_transport_errors(self) -> None:
        reset = ConnectionError("connection reset by peer")
        mapped = map_litellm_error(reset, MODEL)
        assert isinstance(mapped, TransientEnrichmentError)
        assert mapped.retryable

        other = map_litellm_error(ValueError("bad input"), MODEL)
        assert type(other) is EnrichmentError
        assert not other.retryable

    def test_own_errors_pass_through(self) -> None:
        err = RateLimitError("slow")
        assert map_litellm_error(err, MODEL) is err

    @pytest.mark.asyncio
    async def test_complete_raises_mapped_error(self) -> None:
        with patch(
            ACOMPLETION,
            new_callable=AsyncMock,
            side_effect=ConnectionError("connection refused"),
        ):
            with pytest.raises(TransientEnrichmentError) as exc_info:
                await LiteLLMProvider(MODEL).complete(
                    MESSAGES, CompletionOptions()
                )
        assert isinstance(exc_info.value.__cause__, ConnectionError)


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold(self) -> None:
        provider = LiteLLMProvider(MODEL)
        with patch(
            ACOMPLETION,
            new_callable=AsyncMock,
            side_effect=ConnectionError("connection refused"),
        ) as mock:
            for _ in range(CB_LLM_FAILURE_THRESHOLD):
                with pytest.raises(TransientEnrichmentError):
                    await provider.complete(MESSAGES, CompletionOptions())

            with pytest.raises(EnrichmentError) as exc_info:
                await provider.complete(MESSAGES, CompletionOptions())
        assert exc_info.value.code == "CIRCUIT_OPEN"
        assert not exc_info.value.retryable
        assert mock.await_count == CB_LLM_FAILURE_THRESHOLD

    @pytest.mark.asyncio
    async def test_rate_limits_do_not_trip_the_breaker(self) -> None:
        provider = LiteLLMProvider(MODEL)
        limited = LitellmRateLimitError(
            message="slow down", llm_provider="openai", model=MODEL
        )
        with patch(ACOMPLETION, new_callable=AsyncMock, side_effect=limited):
            for _ in range(CB_LLM_FAILURE_THRESHOLD + 2):
                with pytest.raises(RateLimitError):
                    await provider.complete(MESSAGES, CompletionOptions())

    @pytest.mark.asyncio
    async def test_breakers_are_per_model(self) -> None:
        with patch(
            ACOMPLETION,
            new_callable=AsyncMock,
            side_effect=ConnectionError("connection refused"),
        ):
            for _ in range(CB_LLM_FAILURE_THRESHOLD):
                with pytest.raises(TransientEnrichmentError):
                    await LiteLLMProvider(MODEL).complete(
                        MESSAGES, CompletionOptions()
                    )

        with patch(ACOMPLETION, new_callable=AsyncMock) as mock:
            mock.return_value = _response()
            result = await LiteLLMProvider("openai/gpt-4o").complete(
                MESSAGES, CompletionOptions()
            )
        assert result.content == '{"entities": []}'

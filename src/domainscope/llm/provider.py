"""Default enrichment provider over litellm with a per-model circuit breaker."""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

import litellm
from circuitbreaker import (  # pyright: ignore[reportUnknownVariableType]
    CircuitBreaker,
    CircuitBreakerError,
)
from litellm.exceptions import AuthenticationError as LitellmAuthError
from litellm.exceptions import NotFoundError as LitellmNotFoundError
from litellm.exceptions import RateLimitError as LitellmRateLimitError

from domainscope.constants import (
    CB_LLM_FAILURE_THRESHOLD,
    CB_LLM_RECOVERY_TIMEOUT,
    LLM_MAX_OUTPUT_TOKENS,
)
from domainscope.resilience.errors import (
    AuthenticationError,
    EnrichmentError,
    ErrorClass,
    ModelNotFoundError,
    RateLimitError,
    TransientEnrichmentError,
    classify_error,
)
from domainscope.summary.enrichment import (
    CompletionOptions,
    CompletionResult,
    CompletionUsage,
)

logger = logging.getLogger(__name__)

# litellm stubs have partially unknown types; typed alias
if TYPE_CHECKING:
    _acompletion: Callable[..., Coroutine[Any, Any, Any]]
else:
    _acompletion = litellm.acompletion


def _is_non_rate_limit_error(
    thrown_type: type, thrown_value: BaseException
) -> bool:
    """Rate limits are backpressure, not failures; keep them out of the count."""
    return not issubclass(
        thrown_type, (LitellmRateLimitError, RateLimitError)
    )


# One breaker per model so an outage on one provider leaves the
# rest of the chain usable.
_breaker_registry: dict[str, CircuitBreaker] = {}  # pyright: ignore[reportUnknownVariableType]


def _get_breaker(model: str) -> CircuitBreaker:  # pyright: ignore[reportUnknownParameterType]
    if model not in _breaker_registry:
        _breaker_registry[model] = CircuitBreaker(  # pyright: ignore[reportUnknownMemberType]
            failure_threshold=CB_LLM_FAILURE_THRESHOLD,
            recovery_timeout=CB_LLM_RECOVERY_TIMEOUT,
            expected_exception=_is_non_rate_limit_error,
            name=f"llm_{model}",
        )
    return _breaker_registry[model]


def provider_name(model: str) -> str:
    """``openai/gpt-4o`` -> ``openai``; bare model names map to ``litellm``."""
    prefix, sep, _ = model.partition("/")
    return prefix if sep else "litellm"


def map_litellm_error(error: Exception, model: str) -> EnrichmentError:
    """Translate a litellm (or transport) exception into our hierarchy."""
    provider = provider_name(model)
    if isinstance(error, EnrichmentError):
        return error
    if isinstance(error, LitellmAuthError):
        return AuthenticationError(str(error), provider=provider)
    if isinstance(error, LitellmNotFoundError):
        return ModelNotFoundError(model, provider=provider)
    if isinstance(error, LitellmRateLimitError):
        return RateLimitError(str(error), provider=provider)
    if classify_error(error) in (
        ErrorClass.TRANSIENT,
        ErrorClass.SERVER,
        ErrorClass.TIMEOUT,
    ):
        return TransientEnrichmentError(str(error), provider=provider)
    return EnrichmentError(str(error), provider=provider)


class LiteLLMProvider:
    """``EnrichmentProvider`` backed by ``litellm.acompletion``.

    Retrying is left to the caller's retry policy; this class only
    guards each model with its circuit breaker and maps errors.
    """

    def __init__(self, model: str, *, timeout: int = 60) -> None:
        self.model = model
        self.timeout = timeout

    async def complete(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
    ) -> CompletionResult:
        breaker = _get_breaker(self.model)
        if breaker.opened:  # pyright: ignore[reportUnknownMemberType]
            logger.warning("event=circuit_open model=%s", self.model)
            raise EnrichmentError(
                f"Circuit open for {self.model}",
                code="CIRCUIT_OPEN",
                provider=provider_name(self.model),
            ) from CircuitBreakerError(breaker)  # pyright: ignore[reportUnknownArgumentType]

        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "timeout": self.timeout,
            "temperature": options.temperature,
            "max_tokens": min(options.max_tokens, LLM_MAX_OUTPUT_TOKENS),
        }
        if options.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            with breaker:  # pyright: ignore[reportUnknownMemberType]
                response: Any = await _acompletion(**kwargs)
        except Exception as exc:
            mapped = map_litellm_error(exc, self.model)
            logger.warning(
                "event=llm_call_failed model=%s code=%s retryable=%s",
                self.model,
                mapped.code,
                mapped.retryable,
            )
            raise mapped from exc

        usage: Any = response.usage
        choice: Any = response.choices[0]
        return CompletionResult(
            content=str(choice.message.content or ""),
            model=str(getattr(response, "model", None) or self.model),
            usage=CompletionUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
            finish_reason=str(getattr(choice, "finish_reason", None) or "stop"),
        )

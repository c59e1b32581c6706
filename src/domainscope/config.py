"""Environment-based configuration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from domainscope.constants import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_MAX_ALTERNATIVES,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MIN_CLUSTER_SIZE,
    DEFAULT_SIMILARITY_THRESHOLD,
    RETRY_MAX_ATTEMPTS,
    SNAPSHOT_INTERVAL,
)

if TYPE_CHECKING:
    from domainscope.analysis.analyzer import AnalyzerConfig
    from domainscope.summary.schemas import SummarizerConfig

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and environment variables."""

    # LLM Provider
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Model chain (first = primary, rest = upgrade targets in order)
    litellm_model_chain: Annotated[list[str], NoDecode] = [
        "openai/gpt-4o-mini",
        "openai/gpt-4o",
        "anthropic/claude-sonnet-4-5",
    ]
    llm_timeout_seconds: int = 60

    # Enrichment
    enrichment_enabled: bool = False
    enrichment_max_retries: int = RETRY_MAX_ATTEMPTS

    # Discovery
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_alternatives: int = DEFAULT_MAX_ALTERNATIVES
    snapshot_interval: int = SNAPSHOT_INTERVAL
    hitl_enabled: bool = True

    # Database
    database_url: str = "sqlite:///data/domainscope.db"

    # Logging
    log_level: str = "INFO"

    @field_validator("litellm_model_chain", mode="before")
    @classmethod
    def _parse_chain(cls, v: Any) -> Any:
        """Accept comma-separated string or JSON array."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("litellm_model_chain")
    @classmethod
    def _validate_chain(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError(
                "litellm_model_chain must contain at least one model"
            )
        seen: set[str] = set()
        dupes: list[str] = []
        for m in v:
            if m in seen:
                dupes.append(m)
            seen.add(m)
        if dupes:
            logger.warning(
                "Duplicate models in LITELLM_MODEL_CHAIN: %s",
                ", ".join(dupes),
            )
        return v

    @field_validator("confidence_threshold", "similarity_threshold")
    @classmethod
    def _validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        return v

    @field_validator(
        "min_cluster_size",
        "max_concurrency",
        "snapshot_interval",
        "enrichment_max_retries",
    )
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be a positive integer")
        return v

    @property
    def primary_model(self) -> str:
        return self.litellm_model_chain[0]

    def next_model(self, current: str) -> str | None:
        """Return the model after ``current`` in the chain, if any.

        Unknown models upgrade to the primary model.
        """
        chain = self.litellm_model_chain
        if current not in chain:
            return chain[0]
        idx = chain.index(current)
        return chain[idx + 1] if idx + 1 < len(chain) else None

    def analyzer_config(self) -> AnalyzerConfig:
        from domainscope.analysis.analyzer import AnalyzerConfig

        return AnalyzerConfig(
            confidence_threshold=self.confidence_threshold,
            enable_llm_fallback=self.enrichment_enabled,
            max_concurrency=self.max_concurrency,
            snapshot_interval=self.snapshot_interval,
        )

    def summarizer_config(self) -> SummarizerConfig:
        from domainscope.summary.schemas import SummarizerConfig

        return SummarizerConfig(
            min_cluster_size=self.min_cluster_size,
            similarity_threshold=self.similarity_threshold,
            confidence_threshold=self.confidence_threshold,
            enable_llm_enrichment=self.enrichment_enabled,
            max_alternatives=self.max_alternatives,
        )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "",
        "extra": "ignore",
    }


def create_app_engine(
    url: str, *, echo: bool = False
) -> AsyncEngine:
    """Create async SQLite engine with WAL journal mode.

    Handles URL conversion (sqlite:/// → sqlite+aiosqlite:///)
    and sets WAL mode via a pool-connect event listener so it
    fires once per raw DBAPI connection, not per ORM session.
    """
    if url.startswith("sqlite:///"):
        db_url = "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
    else:
        db_url = url
    engine = create_async_engine(db_url, echo=echo)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_wal_mode(
        dbapi_conn: object,
        _connection_record: object,
    ) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
        cursor.execute("PRAGMA journal_mode=WAL")  # pyright: ignore[reportUnknownMemberType]
        cursor.close()  # pyright: ignore[reportUnknownMemberType]

    return engine

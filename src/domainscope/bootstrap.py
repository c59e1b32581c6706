"""Wiring from settings to a ready-to-drive discovery session."""

import logging
from dataclasses import dataclass

# Must run before anything below pulls in litellm
from domainscope.logging_config import setup_logging

setup_logging()

from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    async_sessionmaker,
)

from domainscope.config import Settings, create_app_engine  # noqa: E402
from domainscope.llm.provider import LiteLLMProvider  # noqa: E402
from domainscope.logging_config import (  # noqa: E402
    cleanup_third_party_handlers,
)
from domainscope.models.base import Base  # noqa: E402
from domainscope.orchestration.events import EventQueue  # noqa: E402
from domainscope.repositories.effect_log_repo import (  # noqa: E402
    SqlEffectLogRepository,
)
from domainscope.repositories.snapshot_repo import (  # noqa: E402
    SqlSnapshotRepository,
)
from domainscope.runtime.analyzer_runtime import AnalyzerRuntime  # noqa: E402
from domainscope.runtime.effect_handlers import (  # noqa: E402
    DomainWriter,
    FileAnalyzer,
    Scanner,
    StoreBackedEffects,
)
from domainscope.runtime.orchestrator_runtime import (  # noqa: E402
    OrchestratorRuntime,
)
from domainscope.runtime.summarizer_runtime import (  # noqa: E402
    SummarizerRuntime,
)
from domainscope.summary.enrichment import EnrichmentProvider  # noqa: E402

cleanup_third_party_handlers()

logger = logging.getLogger(__name__)


@dataclass
class DiscoverySession:
    settings: Settings
    engine: AsyncEngine
    effects: StoreBackedEffects
    orchestrator: OrchestratorRuntime
    provider: EnrichmentProvider | None = None

    async def upgrade_model(self) -> str | None:
        """Switch enrichment to the next model in the chain.

        Returns the new model, or None when the chain is exhausted.
        """
        current = self.orchestrator.state.meta.current_model
        upgraded = self.settings.next_model(current)
        if upgraded is None:
            logger.warning("event=model_chain_exhausted model=%s", current)
            return None
        if isinstance(self.provider, LiteLLMProvider):
            self.provider.model = upgraded
        await self.orchestrator.upgrade_model(upgraded)
        return upgraded

    async def close(self) -> None:
        await self.engine.dispose()


async def open_session(
    settings: Settings,
    session_id: str,
    *,
    root_dir: str,
    output_dir: str,
    scanner: Scanner,
    file_analyzer: FileAnalyzer,
    domain_writer: DomainWriter | None = None,
    provider: EnrichmentProvider | None = None,
    restore: bool = True,
) -> DiscoverySession:
    """Build storage, the effect port and all stage runtimes for a session.

    With ``restore`` set, the latest snapshots of ``session_id`` are
    loaded so a crashed or paused run continues where it stopped.
    """
    # 1. Engine and tables
    engine = create_app_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # 2. Repositories behind the effect port
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    effects = StoreBackedEffects(
        session_id,
        snapshots=SqlSnapshotRepository(session_factory),
        effect_log=SqlEffectLogRepository(session_factory),
        scanner=scanner,
        file_analyzer=file_analyzer,
        domain_writer=domain_writer,
    )

    # 3. Enrichment provider (only when enabled and none was injected)
    if provider is None and settings.enrichment_enabled:
        provider = LiteLLMProvider(
            settings.primary_model, timeout=settings.llm_timeout_seconds
        )

    # 4. Stage runtimes sharing one event queue
    events = EventQueue()
    analyzer = AnalyzerRuntime(
        effects,
        events,
        root_dir=root_dir,
        config=settings.analyzer_config(),
    )
    summarizer = SummarizerRuntime(
        effects,
        events,
        analyzer,
        config=settings.summarizer_config(),
        provider=provider,
        max_retries=settings.enrichment_max_retries,
    )
    orchestrator = OrchestratorRuntime(
        effects,
        analyzer=analyzer,
        summarizer=summarizer,
        root_dir=root_dir,
        output_dir=output_dir,
        model=settings.primary_model,
        hitl_enabled=settings.hitl_enabled,
        events=events,
    )

    # 5. Continue a previous run of this session, if any
    restored = restore and await orchestrator.restore()
    logger.info(
        "event=session_opened session=%s restored=%s phase=%s",
        session_id,
        restored,
        orchestrator.phase,
    )
    return DiscoverySession(
        settings=settings,
        engine=engine,
        effects=effects,
        orchestrator=orchestrator,
        provider=provider,
    )

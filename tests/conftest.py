"""Shared test fixtures: pattern input builders, in-memory SQLite."""

import os

# Force demo API keys for all tests; no real LLM calls.
# Set at import time so no Settings() built by a test ever sees real
# keys from the shell environment.
os.environ["ANTHROPIC_API_KEY"] = "for-demo-purposes-only"
os.environ["OPENAI_API_KEY"] = "for-demo-purposes-only"

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from tenacity import wait_none

from domainscope.analysis import analyzer
from domainscope.analysis.analyzer import AnalyzerData, AnalyzerState
from domainscope.analysis.schemas import (
    ContextPattern,
    DomainCandidate,
    ExportInfo,
    FileAnalysis,
    HookPattern,
    ImportInfo,
    ImportSpecifier,
    ReducerPattern,
)
from domainscope.constants import CandidateStrategy
from domainscope.models.base import Base
from domainscope.repositories.fakes import (
    FakeEffectLogRepository,
    FakeSnapshotRepository,
)
from domainscope.runtime.effect_handlers import StoreBackedEffects
from domainscope.summary.enrichment import (
    CompletionOptions,
    CompletionResult,
)
from domainscope.summary.schemas import DomainSummary

AUTH_DIR = "src/features/auth"
AUTH_CONTEXT = f"{AUTH_DIR}/AuthContext.tsx"
AUTH_HOOK = f"{AUTH_DIR}/useAuth.ts"
AUTH_REDUCER = f"{AUTH_DIR}/authReducer.ts"
AUTH_PROVIDER = f"{AUTH_DIR}/AuthProvider.tsx"
UTIL_FILE = "src/utils/UtilFile.ts"
UNCERTAIN_HOOK = f"{AUTH_DIR}/useSession.ts"


def local_import(source: str, *names: str) -> ImportInfo:
    return ImportInfo(
        source=source,
        specifiers=[ImportSpecifier(name=n) for n in names],
    )


def auth_analyses() -> list[FileAnalysis]:
    """Four auth files around one context plus an unrelated utility."""
    return [
        FileAnalysis(
            path=AUTH_CONTEXT,
            patterns=[
                ContextPattern(
                    name="AuthContext",
                    context_name="AuthContext",
                    context_value="{user: User, token: string}",
                    has_provider=True,
                )
            ],
            exports=[ExportInfo(name="AuthContext")],
        ),
        FileAnalysis(
            path=AUTH_HOOK,
            patterns=[HookPattern(name="useAuth", is_custom_hook=True)],
            imports=[local_import("./AuthContext", "AuthContext")],
            exports=[ExportInfo(name="useAuth")],
        ),
        FileAnalysis(
            path=AUTH_REDUCER,
            patterns=[
                ReducerPattern(
                    name="authReducer",
                    actions=["LOGIN_SUCCESS", "LOGOUT", "FETCH_USER"],
                    state_shape={"user": "User", "loading": "boolean"},
                )
            ],
        ),
        FileAnalysis(
            path=AUTH_PROVIDER,
            patterns=[
                ContextPattern(
                    name="AuthProvider",
                    context_name="AuthContext",
                    has_consumer=True,
                )
            ],
            imports=[
                local_import("./AuthContext", "AuthContext"),
                local_import("./authReducer", "authReducer"),
                local_import("react", "useReducer"),
            ],
        ),
        FileAnalysis(path=UTIL_FILE),
    ]


CART_A = "src/features/cart/CartContext.tsx"
CART_B = "src/features/cart/useCart.ts"
SHOP_A = "src/features/shop/cartReducer.ts"
SHOP_B = "src/features/shop/shopApi.ts"


@dataclass
class StaticAnalysis:
    """A finished analyzer data/state pair."""

    data: AnalyzerData
    state: AnalyzerState


def cart_analysis() -> StaticAnalysis:
    """Two candidates in different feature directories, both named cart."""
    cart_context = ContextPattern(
        name="CartContext",
        source_file=CART_A,
        context_name="CartContext",
        context_value="{items: Item[]}",
        has_provider=True,
    )
    cart_hook = HookPattern(
        name="useCart", source_file=CART_B, is_custom_hook=True
    )
    cart_reducer = ReducerPattern(
        name="cartReducer",
        source_file=SHOP_A,
        actions=["ADD_ITEM"],
        state_shape={"items": "Item[]"},
    )
    analyses = [
        FileAnalysis(path=CART_A, patterns=[cart_context]),
        FileAnalysis(path=CART_B, patterns=[cart_hook]),
        FileAnalysis(path=SHOP_A, patterns=[cart_reducer]),
        FileAnalysis(path=SHOP_B),
    ]
    candidates = [
        DomainCandidate(
            id="cart",
            name="cart",
            suggested_by=CandidateStrategy.CONTEXT,
            source_files=[CART_A, CART_B],
            patterns=[cart_context, cart_hook],
            confidence=0.9,
        ),
        DomainCandidate(
            id="cart-2",
            name="Cart",
            suggested_by=CandidateStrategy.REDUCER,
            source_files=[SHOP_A, SHOP_B],
            patterns=[cart_reducer],
            confidence=0.8,
        ),
    ]
    data = analyzer.create_initial_data()
    data = data.model_copy(update={"results": {a.path: a for a in analyses}})
    data = analyzer.set_domain_candidates(data, candidates)
    return StaticAnalysis(data=data, state=analyzer.create_initial_state())

def make_summary(
    domain_id: str,
    files: list[str] | None = None,
    *,
    name: str | None = None,
    contexts: list[str] | None = None,
    confidence: float = 0.8,
    **extra: object,
) -> DomainSummary:
    return DomainSummary(
        id=domain_id,
        name=name or domain_id,
        description=f"{domain_id} domain",
        source_files=files or [],
        context_names=contexts or [],
        suggested_by=f"cand-{domain_id}",
        confidence=confidence,
        **extra,
    )


class ScriptedProvider:
    """Enrichment provider replaying canned replies in order.

    A reply that is an exception is raised instead of returned; the last
    reply repeats once the script runs out.
    """

    def __init__(self, *replies: str | Exception) -> None:
        self.replies = list(replies)
        self.calls: list[list[dict[str, str]]] = []

    async def complete(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
    ) -> CompletionResult:
        self.calls.append(messages)
        index = min(len(self.calls), len(self.replies)) - 1
        reply = self.replies[index]
        if isinstance(reply, Exception):
            raise reply
        return CompletionResult(content=reply, model="fake")


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    """Retries run back to back; backoff math is tested on its own."""
    monkeypatch.setattr(
        "domainscope.summary.enrichment.retry_wait", wait_none()
    )


def uncertain_analysis() -> FileAnalysis:
    """A hook detected with too little confidence to classify unaided."""
    return FileAnalysis(
        path=UNCERTAIN_HOOK,
        patterns=[
            HookPattern(name="useSession", is_custom_hook=True, confidence=0.5)
        ],
    )


@pytest.fixture
def auth_files() -> list[FileAnalysis]:
    return auth_analyses()


@pytest_asyncio.fixture
async def session_factory() -> AsyncIterator[
    async_sessionmaker[AsyncSession]
]:
    """Fresh in-memory database per test, shared by every session."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@dataclass
class Harness:
    """Store-backed effects over fake repositories, plus what got written."""

    effects: StoreBackedEffects
    snapshots: FakeSnapshotRepository
    effect_log: FakeEffectLogRepository
    written: dict[str, dict[str, Any]] = field(
        default_factory=lambda: dict[str, dict[str, Any]]()
    )


def make_harness(
    analyses: list[FileAnalysis],
    *,
    session_id: str = "session-1",
    scanner: Callable[[], Awaitable[list[str]]] | None = None,
    snapshots: FakeSnapshotRepository | None = None,
    effect_log: FakeEffectLogRepository | None = None,
) -> Harness:
    by_path = {a.path: a for a in analyses}

    async def scan() -> list[str]:
        return list(by_path)

    async def analyze(path: str) -> FileAnalysis:
        if path not in by_path:
            raise FileNotFoundError(path)
        return by_path[path]

    snapshots = snapshots or FakeSnapshotRepository()
    effect_log = effect_log or FakeEffectLogRepository()
    written: dict[str, dict[str, Any]] = {}

    async def write(name: str, content: dict[str, Any]) -> str:
        written[name] = content
        return f"/out/{name}.json"

    effects = StoreBackedEffects(
        session_id,
        snapshots=snapshots,
        effect_log=effect_log,
        scanner=scanner or scan,
        file_analyzer=analyze,
        domain_writer=write,
    )
    return Harness(effects, snapshots, effect_log, written)

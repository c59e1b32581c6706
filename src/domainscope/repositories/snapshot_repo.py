"""SQL implementation of SnapshotRepository."""

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domainscope.models.snapshot import StageSnapshot


class SqlSnapshotRepository:
    """Snapshot repo that owns its own sessions.

    Snapshots are written from inside the pipeline between steps, so
    each operation opens a short-lived session from the factory.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def save(
        self,
        session_id: str,
        stage: str,
        data_json: str,
        state_json: str,
    ) -> int:
        """Insert the next version; read-max and insert share a transaction."""
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                select(func.max(StageSnapshot.version)).where(
                    StageSnapshot.session_id == session_id,
                    StageSnapshot.stage == stage,
                )
            )
            version = (result.scalar_one_or_none() or 0) + 1
            session.add(
                StageSnapshot(
                    session_id=session_id,
                    stage=stage,
                    version=version,
                    data_json=data_json,
                    state_json=state_json,
                )
            )
        return version

    async def get_latest(
        self, session_id: str, stage: str
    ) -> StageSnapshot | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StageSnapshot)
                .where(
                    StageSnapshot.session_id == session_id,
                    StageSnapshot.stage == stage,
                )
                .order_by(StageSnapshot.version.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_version(
        self, session_id: str, stage: str, version: int
    ) -> StageSnapshot | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StageSnapshot).where(
                    StageSnapshot.session_id == session_id,
                    StageSnapshot.stage == stage,
                    StageSnapshot.version == version,
                )
            )
            return result.scalar_one_or_none()

    async def list_versions(
        self, session_id: str, stage: str
    ) -> list[int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StageSnapshot.version)
                .where(
                    StageSnapshot.session_id == session_id,
                    StageSnapshot.stage == stage,
                )
                .order_by(StageSnapshot.version)
            )
            return list(result.scalars().all())

    async def prune(
        self, session_id: str, stage: str, keep: int
    ) -> int:
        """Delete all but the newest ``keep`` versions; returns rows removed."""
        versions = await self.list_versions(session_id, stage)
        stale = versions[: max(0, len(versions) - keep)]
        if not stale:
            return 0
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                sa_delete(StageSnapshot).where(
                    StageSnapshot.session_id == session_id,
                    StageSnapshot.stage == stage,
                    StageSnapshot.version.in_(stale),
                )
            )
            return result.rowcount  # type: ignore[return-value]

    async def delete_session(self, session_id: str) -> int:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                sa_delete(StageSnapshot).where(
                    StageSnapshot.session_id == session_id
                )
            )
            return result.rowcount  # type: ignore[return-value]

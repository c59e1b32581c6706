"""SQL implementation of EffectLogRepository."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domainscope.models.effect_log import EffectLogEntry


class SqlEffectLogRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def append(
        self, session_id: str, effect_type: str, payload_json: str
    ) -> int:
        entry = EffectLogEntry(
            session_id=session_id,
            effect_type=effect_type,
            payload_json=payload_json,
        )
        async with self._session_factory() as session, session.begin():
            session.add(entry)
            await session.flush()
            return entry.id

    async def list_for_session(
        self, session_id: str
    ) -> list[EffectLogEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EffectLogEntry)
                .where(EffectLogEntry.session_id == session_id)
                .order_by(EffectLogEntry.id)
            )
            return list(result.scalars().all())

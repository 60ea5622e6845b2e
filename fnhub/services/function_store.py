"""Function store used by git sync: per-document writes, committed one by one."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select, update

from fnhub.models.function import CloudFunction
from fnhub.models.git_config import GitConfig
from fnhub.services.datetime_service import now_utc

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession


class SqlFunctionStore:
    """Function and sync-watermark persistence on top of an async session.

    Every write commits on its own, so a failure part way through a pull keeps
    the writes that already happened.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_user(self, user_id: int) -> list[CloudFunction]:
        stmt = (
            select(CloudFunction)
            .where(CloudFunction.user_id == user_id)
            .order_by(CloudFunction.name)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_names(self, user_id: int, names: list[str]) -> list[CloudFunction]:
        if not names:
            return []
        stmt = select(CloudFunction).where(
            CloudFunction.user_id == user_id, CloudFunction.name.in_(names)
        ).order_by(CloudFunction.name)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def insert(self, record: CloudFunction) -> CloudFunction:
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    async def update_code(self, function_id: int, code: str) -> None:
        """Replace a function's code and invalidate its compiled artifact."""
        stmt = (
            update(CloudFunction)
            .where(CloudFunction.id == function_id)
            .values(code=code, compiled="", updated_at=now_utc())
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def set_last_sync_at(self, user_id: int, timestamp: datetime) -> None:
        stmt = update(GitConfig).where(GitConfig.user_id == user_id).values(last_sync_at=timestamp)
        await self.session.execute(stmt)
        await self.session.commit()

"""Function audit trail for changes made by git sync."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fnhub.models.audit import FunctionAuditLog
from fnhub.services.datetime_service import now_utc
from fnhub.services.function_store import SqlFunctionStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from fnhub.models.user import User
    from fnhub.services.sync_service import PullResult

logger = logging.getLogger(__name__)

GIT_OPERATOR = "git"


async def record_git_pull(
    session: AsyncSession,
    user: User,
    result: PullResult,
    *,
    git_action: str = "pull",
) -> list[FunctionAuditLog]:
    """Write one audit entry per function a pull created or updated."""
    names = [*result.added, *result.updated]
    if not names:
        return []

    added = set(result.added)
    store = SqlFunctionStore(session)
    functions = await store.find_by_names(user.id, names)
    now = now_utc()
    entries: list[FunctionAuditLog] = []
    for fn in functions:
        action = "create" if fn.name in added else "update"
        entry = FunctionAuditLog(
            function_id=fn.id,
            function_name=fn.name,
            user_id=user.id,
            username=user.username,
            action=action,
            operator=GIT_OPERATOR,
            operator_detail=f"Git: {git_action} (account: {user.username})",
            after_code=fn.code,
            description=f"Git {git_action} {'added' if action == 'create' else 'updated'}",
            created_at=now,
        )
        session.add(entry)
        entries.append(entry)

    await session.commit()
    logger.info("Recorded %d git %s audit entries for user %d", len(entries), git_action, user.id)
    return entries

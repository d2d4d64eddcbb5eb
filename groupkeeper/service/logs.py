"""
Service layer for the audit log.

Entries are written with the same session (and so inside the same
transaction) as the change they describe: if the change is rolled back, so
is its entry. Entries are never updated or deleted.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupkeeper.core.logs import LogEntryData
from groupkeeper.core.members import Paginated
from groupkeeper.core.types import LogOperationType, LogTargetType
from groupkeeper.core.uuid import UUID
from groupkeeper.database.logs import LogEntry


def log_comment_body(comment: str) -> dict[str, Any]:
    return {"comment": comment}


async def db_log(
    target: LogTargetType,
    operation: LogOperationType,
    group_id: int,
    host_uuid: UUID,
    conn: AsyncSession,
    user_uuid: UUID | None = None,
    body: dict[str, Any] | None = None,
) -> LogEntry:
    """
    Append an entry to the audit log.
    """
    entry = LogEntry(
        target=target,
        operation=operation,
        group_id=group_id,
        host_uuid=host_uuid,
        user_uuid=user_uuid,
        body=body,
    )

    conn.add(entry)
    await conn.flush()

    return entry


async def raw_logs(
    conn: AsyncSession, limit: int = 20, offset: int = 0
) -> Paginated[LogEntryData]:
    """
    All log entries, newest first.
    """
    result = await conn.execute(
        select(LogEntry)
        .order_by(LogEntry.log_id.desc())
        .offset(offset)
        .limit(limit)
    )

    entries = [x.to_core() for x in result.scalars().all()]

    return Paginated[LogEntryData].from_page(entries, offset)


async def logs_for_group(
    group_id: int,
    conn: AsyncSession,
    user_uuid: UUID | None = None,
) -> list[LogEntryData]:
    """
    Log entries for one group (optionally only those about one user), oldest
    first.
    """
    query = select(LogEntry).where(LogEntry.group_id == group_id)

    if user_uuid is not None:
        query = query.where(LogEntry.user_uuid == user_uuid)

    result = await conn.execute(query.order_by(LogEntry.log_id))

    return [x.to_core() for x in result.scalars().all()]

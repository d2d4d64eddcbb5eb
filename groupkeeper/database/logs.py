"""
Append-only audit log.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from groupkeeper.core.logs import LogEntryData
from groupkeeper.core.time import utcnow
from groupkeeper.core.types import LogOperationType, LogTargetType
from groupkeeper.core.uuid import UUID

from .types import UTCDateTime


class LogEntry(SQLModel, table=True):
    __tablename__ = "logs"

    log_id: int | None = Field(default=None, primary_key=True)
    ts: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False)
    )

    target: LogTargetType
    operation: LogOperationType

    # Not a foreign key: entries outlive the groups they describe.
    group_id: int = Field(index=True)
    host_uuid: UUID
    user_uuid: UUID | None = None

    body: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    def to_core(self) -> LogEntryData:
        return LogEntryData(
            log_id=self.log_id,
            ts=self.ts,
            target=self.target,
            operation=self.operation,
            group_id=self.group_id,
            host_uuid=self.host_uuid,
            user_uuid=self.user_uuid,
            body=self.body,
        )

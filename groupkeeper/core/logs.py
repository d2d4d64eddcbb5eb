"""
Audit log data models.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from groupkeeper.core.types import LogOperationType, LogTargetType
from groupkeeper.core.uuid import UUID


class LogEntryData(BaseModel):
    log_id: int
    ts: datetime
    target: LogTargetType
    operation: LogOperationType
    group_id: int
    host_uuid: UUID
    user_uuid: UUID | None = None
    body: dict[str, Any] | None = None

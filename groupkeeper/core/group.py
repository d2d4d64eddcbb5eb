"""
Core group data models.
"""

from datetime import datetime

from pydantic import BaseModel

from groupkeeper.core.types import GroupType, TrustType


class GroupData(BaseModel):
    group_id: int
    name: str
    description: str
    typ: GroupType
    trust: TrustType
    capabilities: set[str]
    group_expiration: int | None
    active: bool
    created: datetime

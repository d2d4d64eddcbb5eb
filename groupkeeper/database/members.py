"""
Membership information.
"""

from datetime import datetime

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from groupkeeper.core.members import MembershipData
from groupkeeper.core.time import utcnow
from groupkeeper.core.uuid import UUID

from .types import UTCDateTime


class Membership(SQLModel, table=True):
    """
    A user's membership of a group. The composite primary key is what makes
    adding a member an upsert: there is never more than one row per
    (group, user).
    """

    __tablename__ = "memberships"

    group_id: int = Field(
        primary_key=True, foreign_key="groups.group_id", ondelete="CASCADE"
    )
    user_uuid: UUID = Field(primary_key=True)

    role_id: int = Field(foreign_key="roles.role_id", ondelete="CASCADE")

    expiration: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True, index=True)
    )

    # Host; SYSTEM_USER_UUID for system-initiated additions.
    added_by: UUID
    added_ts: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False)
    )

    def to_core(self) -> MembershipData:
        return MembershipData(
            group_id=self.group_id,
            user_uuid=self.user_uuid,
            role_id=self.role_id,
            expiration=self.expiration,
            added_by=self.added_by,
            added_ts=self.added_ts,
        )

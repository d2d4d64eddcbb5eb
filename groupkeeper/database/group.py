"""
Group and role ORM
"""

from datetime import datetime

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from groupkeeper.core.group import GroupData
from groupkeeper.core.time import utcnow
from groupkeeper.core.types import GroupType, RoleType, TrustType

from .types import UTCDateTime


class Group(SQLModel, table=True):
    __tablename__ = "groups"

    group_id: int | None = Field(default=None, primary_key=True)

    name: str = Field(unique=True)
    description: str = ""
    typ: GroupType = GroupType.CLOSED
    trust: TrustType = TrustType.NDAED

    # Space separated list of capability flags.
    capabilities: str = ""

    # Default expiration (in days) applied to new memberships.
    group_expiration: int | None = None

    # Inactive groups are soft-deleted: reserved names and groups left
    # without members by the no-activity sweep.
    active: bool = True

    created: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False)
    )

    def to_core(self) -> GroupData:
        """
        Convert this Group ORM object to a GroupData core object.
        """
        return GroupData(
            group_id=self.group_id,
            name=self.name,
            description=self.description,
            typ=self.typ,
            trust=self.trust,
            capabilities={x for x in (self.capabilities or "").split(" ") if x},
            group_expiration=self.group_expiration,
            active=self.active,
            created=self.created,
        )


class Role(SQLModel, table=True):
    """
    A role within a group. Every group owns exactly one `member` role and one
    `admin` role; `curator` roles are optional.
    """

    __tablename__ = "roles"

    role_id: int | None = Field(default=None, primary_key=True)
    group_id: int = Field(foreign_key="groups.group_id", ondelete="CASCADE", index=True)

    typ: RoleType
    name: str

    # Space separated, opaque to the service.
    permissions: str = ""

"""
Pending requests to join a group, and pending invitations.
"""

from datetime import datetime

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from groupkeeper.core.time import utcnow
from groupkeeper.core.uuid import UUID

from .types import UTCDateTime


class Request(SQLModel, table=True):
    __tablename__ = "requests"

    group_id: int = Field(
        primary_key=True, foreign_key="groups.group_id", ondelete="CASCADE"
    )
    user_uuid: UUID = Field(primary_key=True)

    created: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False)
    )
    request_expiration: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )


class Invitation(SQLModel, table=True):
    __tablename__ = "invitations"

    group_id: int = Field(
        primary_key=True, foreign_key="groups.group_id", ondelete="CASCADE"
    )
    user_uuid: UUID = Field(primary_key=True)

    invitation_expiration: datetime | None = Field(
        default=None, sa_column=Column(UTCDateTime(), nullable=True)
    )
    # Membership expiration (in days) granted when the invitation is accepted.
    group_expiration: int | None = None
    added_by: UUID

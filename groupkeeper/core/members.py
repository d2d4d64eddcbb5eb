"""
Membership models.
"""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from groupkeeper.core.types import RoleType
from groupkeeper.core.uuid import UUID

T = TypeVar("T")


class Paginated(BaseModel, Generic[T]):
    """
    One page of a listing. `next` is the offset of the following page, or
    None once a page comes back empty.
    """

    items: list[T]
    next: int | None = None

    @classmethod
    def from_page(cls, items: list[T], offset: int) -> "Paginated[T]":
        return cls(items=items, next=(offset + len(items)) if items else None)


class MembershipData(BaseModel):
    group_id: int
    user_uuid: UUID
    role_id: int
    expiration: datetime | None = None
    added_by: UUID
    added_ts: datetime


class DisplayHost(BaseModel):
    user_uuid: UUID
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None


class DisplayMemberAndHost(BaseModel):
    user_uuid: UUID
    picture: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    email: str | None = None
    is_staff: bool = False
    since: datetime
    expiration: datetime | None = None
    role: RoleType
    host: DisplayHost


class PendingRequestData(BaseModel):
    group_id: int
    user_uuid: UUID
    username: str | None = None
    email: str | None = None
    created: datetime
    request_expiration: datetime | None = None


class RevokeOutcome(BaseModel):
    """
    Result of removing one user from several groups. Each group is handled
    on its own, so some may succeed while others fail.
    """

    user_uuid: UUID
    removed: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    sync_error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failed and self.sync_error is None

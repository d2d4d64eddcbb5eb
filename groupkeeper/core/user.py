"""
Shared user objects that are serialized.
"""

from pydantic import BaseModel, Field

from groupkeeper.core.types import TrustType
from groupkeeper.core.uuid import UUID


class UserProfileData(BaseModel):
    user_uuid: UUID
    user_id: str
    username: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    picture: str | None = None
    trust: TrustType


class RemoteProfile(BaseModel):
    """
    A user's profile as held by the identity service. `groups` is the
    identity service's view of which of our groups the user belongs to.
    """

    user_uuid: UUID
    user_id: str
    username: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    picture: str | None = None
    trust: TrustType = TrustType.AUTHENTICATED
    groups: set[str] = Field(default_factory=set)

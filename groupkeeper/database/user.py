"""
ORM for the local cache of user profiles.

The identity service is authoritative; only what is needed to render
listings and to join on the user uuid is kept here.
"""

from sqlmodel import Field, SQLModel

from groupkeeper.core.types import TrustType
from groupkeeper.core.user import UserProfileData
from groupkeeper.core.uuid import UUID


class UserProfile(SQLModel, table=True):
    __tablename__ = "user_profiles"

    user_uuid: UUID = Field(primary_key=True)
    # Identifier used by the identity service.
    user_id: str = Field(unique=True)

    username: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    picture: str | None = None

    trust: TrustType = TrustType.AUTHENTICATED

    def to_core(self) -> UserProfileData:
        return UserProfileData(
            user_uuid=self.user_uuid,
            user_id=self.user_id,
            username=self.username,
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            picture=self.picture,
            trust=self.trust,
        )

"""
Enumerations used across the database and service layers.
"""

import enum


class RoleType(str, enum.Enum):
    # Declaration order is the listing order.
    ADMIN = "admin"
    CURATOR = "curator"
    MEMBER = "member"


class TrustType(str, enum.Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    VOUCHED = "vouched"
    NDAED = "ndaed"
    STAFF = "staff"

    @property
    def rank(self) -> int:
        return list(TrustType).index(self)


class GroupType(str, enum.Enum):
    OPEN = "open"
    REVIEWED = "reviewed"
    CLOSED = "closed"


class LogTargetType(str, enum.Enum):
    GROUP = "group"
    ROLE = "role"
    MEMBERSHIP = "membership"
    INVITATION = "invitation"
    REQUEST = "request"


class LogOperationType(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"

"""
Meta functionality for the database.
"""

from .group import Group, Role
from .logs import LogEntry
from .members import Membership
from .requests import Invitation, Request
from .user import UserProfile

ALL_TABLES = (
    Group,
    Role,
    Membership,
    LogEntry,
    Request,
    Invitation,
    UserProfile,
)

"""
UUID creation. Required because uuid7 was not part of the python standard as of 3.12
"""

from uuid import UUID as UUID

from uuid_extensions import uuid7 as uuid7

# Host of every system-initiated action (expiration sweeps, imports,
# reservations). Never a real user, never has a profile or membership.
SYSTEM_USER_UUID = UUID(int=0)

__ALL__ = ["UUID", "uuid7", "SYSTEM_USER_UUID"]

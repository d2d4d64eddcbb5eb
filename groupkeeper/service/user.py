"""
Service layer for the local user profile cache.
"""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from groupkeeper.config.managers import AsyncSessionManager
from groupkeeper.core.errors import NotFound
from groupkeeper.core.types import TrustType
from groupkeeper.core.user import RemoteProfile, UserProfileData
from groupkeeper.core.uuid import UUID
from groupkeeper.database.members import Membership
from groupkeeper.database.requests import Invitation, Request
from groupkeeper.database.user import UserProfile

from .identity import IdentityClient, IdentityNotFound
from .transaction import transaction


class UserNotFound(NotFound):
    pass


async def read_by_uuid(user_uuid: UUID, conn: AsyncSession) -> UserProfile:
    """
    Raises
    ------
    UserNotFound
        If no profile for this user is cached.
    """
    profile = await conn.get(UserProfile, user_uuid)

    if profile is None:
        raise UserNotFound(f"User {user_uuid} not found")

    return profile


async def upsert_profile(
    profile: RemoteProfile, conn: AsyncSession, log: FilteringBoundLogger
) -> UserProfile:
    """
    Store (or refresh) the cached copy of a remote profile.
    """
    log = log.bind(user_uuid=profile.user_uuid, user_id=profile.user_id)

    cached = await conn.get(UserProfile, profile.user_uuid)

    if cached is None:
        cached = UserProfile(user_uuid=profile.user_uuid, user_id=profile.user_id)

    cached.user_id = profile.user_id
    cached.username = profile.username
    cached.first_name = profile.first_name
    cached.last_name = profile.last_name
    cached.email = profile.email
    cached.picture = profile.picture
    cached.trust = profile.trust

    conn.add(cached)
    await conn.flush()

    await log.adebug("user.cached")

    return cached


async def _fetch_and_cache(
    fetch,
    key: str,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> UserProfileData:
    try:
        remote = await fetch()
    except IdentityNotFound as e:
        await log.ainfo("user.not_found")
        raise UserNotFound(f"User {key} not found") from e

    async with transaction(manager) as conn:
        profile = await upsert_profile(profile=remote, conn=conn, log=log)
        return profile.to_core()


async def resolve(
    user_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> UserProfileData:
    """
    A user's profile: from the cache if we have it, otherwise from the
    identity service (and then cached). No session is held while the
    identity service is called.

    Raises
    ------
    UserNotFound
        If the identity service does not know the user.
    UpstreamError
        If the identity service cannot be reached.
    """
    log = log.bind(user_uuid=user_uuid)

    async with manager.session() as conn:
        cached = await conn.get(UserProfile, user_uuid)

        if cached is not None:
            return cached.to_core()

    return await _fetch_and_cache(
        fetch=lambda: identity.get_user_by_uuid(user_uuid),
        key=str(user_uuid),
        manager=manager,
        log=log,
    )


async def resolve_by_identifier(
    user_id: str,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> UserProfileData:
    """
    As `resolve`, by the identity service's user identifier.
    """
    log = log.bind(user_id=user_id)

    async with manager.session() as conn:
        result = await conn.execute(
            select(UserProfile).where(UserProfile.user_id == user_id)
        )
        cached = result.scalar_one_or_none()

        if cached is not None:
            return cached.to_core()

    return await _fetch_and_cache(
        fetch=lambda: identity.get_user_by_identifier(user_id),
        key=user_id,
        manager=manager,
        log=log,
    )


async def get_all_staff_uuids(conn: AsyncSession) -> list[UUID]:
    result = await conn.execute(
        select(UserProfile.user_uuid).where(UserProfile.trust == TrustType.STAFF)
    )

    return list(result.scalars().all())


async def get_all_member_uuids(conn: AsyncSession) -> list[UUID]:
    """
    Every user holding at least one membership in any group.
    """
    result = await conn.execute(select(Membership.user_uuid).distinct())

    return list(result.scalars().all())


async def get_profile_uuids(conn: AsyncSession) -> list[UUID]:
    result = await conn.execute(select(UserProfile.user_uuid))

    return list(result.scalars().all())


async def get_emails(user_uuids: list[UUID], conn: AsyncSession) -> list[str]:
    if not user_uuids:
        return []

    result = await conn.execute(
        select(UserProfile.email)
        .where(UserProfile.user_uuid.in_(user_uuids))
        .where(UserProfile.email.is_not(None))
    )

    return [x for x in result.scalars().all() if x]


async def get_uuids_below_trust(
    user_uuids: list[UUID], trust: TrustType, conn: AsyncSession
) -> list[UUID]:
    """
    Those of `user_uuids` whose cached profile trust is strictly lower than
    `trust`. Users without a cached profile are treated as untrusted.
    """
    if not user_uuids:
        return []

    result = await conn.execute(
        select(UserProfile.user_uuid, UserProfile.trust).where(
            UserProfile.user_uuid.in_(user_uuids)
        )
    )

    trusts = {uuid: t for uuid, t in result.all()}

    return [
        uuid
        for uuid in user_uuids
        if uuid not in trusts or trusts[uuid].rank < trust.rank
    ]


async def delete_profile(
    user_uuid: UUID, conn: AsyncSession, log: FilteringBoundLogger
) -> None:
    """
    Remove everything held locally about a user apart from memberships (and
    audit log entries, which are never deleted).
    """
    log = log.bind(user_uuid=user_uuid)

    await conn.execute(delete(Request).where(Request.user_uuid == user_uuid))
    await conn.execute(delete(Invitation).where(Invitation.user_uuid == user_uuid))
    await conn.execute(delete(UserProfile).where(UserProfile.user_uuid == user_uuid))

    await log.ainfo("user.deleted")

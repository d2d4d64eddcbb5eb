"""
Service layer for roles within groups.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from groupkeeper.core.errors import Conflict, NotFound
from groupkeeper.core.types import LogOperationType, LogTargetType, RoleType
from groupkeeper.core.uuid import UUID
from groupkeeper.database.group import Group, Role
from groupkeeper.database.members import Membership
from groupkeeper.database.user import UserProfile

from . import logs as logs_service

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"
ROLE_CURATOR = "curator"

# At most one role of each of these types per group.
SINGLETON_ROLES = (RoleType.ADMIN, RoleType.MEMBER)


class RoleNotFound(NotFound):
    pass


class RoleInvariantViolation(Conflict):
    pass


class LastAdminError(Conflict):
    pass


async def add_role(
    group_id: int,
    typ: RoleType,
    name: str,
    host_uuid: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    permissions: str = "",
) -> Role:
    """
    Create a role in a group.

    Raises
    ------
    RoleInvariantViolation
        If the group already has a role of a type it may only have once.
    """
    log = log.bind(group_id=group_id, role_type=typ.value, role_name=name)

    if typ in SINGLETON_ROLES:
        existing = await get_role_of_type(group_id=group_id, typ=typ, conn=conn)

        if existing is not None:
            await log.awarning("role.singleton_exists")
            raise RoleInvariantViolation(
                f"Group {group_id} already has a {typ.value} role"
            )

    role = Role(group_id=group_id, typ=typ, name=name, permissions=permissions)
    conn.add(role)
    await conn.flush()

    await logs_service.db_log(
        target=LogTargetType.ROLE,
        operation=LogOperationType.CREATED,
        group_id=group_id,
        host_uuid=host_uuid,
        conn=conn,
        body=logs_service.log_comment_body(name),
    )

    await log.ainfo("role.created", role_id=role.role_id)

    return role


async def add_admin_role(
    group_id: int, host_uuid: UUID, conn: AsyncSession, log: FilteringBoundLogger
) -> Role:
    return await add_role(
        group_id=group_id,
        typ=RoleType.ADMIN,
        name=ROLE_ADMIN,
        host_uuid=host_uuid,
        conn=conn,
        log=log,
    )


async def add_member_role(
    group_id: int, host_uuid: UUID, conn: AsyncSession, log: FilteringBoundLogger
) -> Role:
    return await add_role(
        group_id=group_id,
        typ=RoleType.MEMBER,
        name=ROLE_MEMBER,
        host_uuid=host_uuid,
        conn=conn,
        log=log,
    )


async def get_role_of_type(
    group_id: int, typ: RoleType, conn: AsyncSession
) -> Role | None:
    result = await conn.execute(
        select(Role).where(Role.group_id == group_id).where(Role.typ == typ)
    )
    return result.scalars().first()


async def role_of_type(group_name: str, typ: RoleType, conn: AsyncSession) -> Role:
    """
    The `member` or `admin` role of a group, by group name.

    Raises
    ------
    RoleNotFound
        If the group (or its role) does not exist.
    """
    result = await conn.execute(
        select(Role)
        .join(Group, Group.group_id == Role.group_id)
        .where(Group.name == group_name)
        .where(Role.typ == typ)
    )

    role = result.scalars().first()

    if role is None:
        raise RoleNotFound(f"Group {group_name} has no {typ.value} role")

    return role


async def member_role(group_name: str, conn: AsyncSession) -> Role:
    return await role_of_type(group_name=group_name, typ=RoleType.MEMBER, conn=conn)


async def admin_role(group_name: str, conn: AsyncSession) -> Role:
    return await role_of_type(group_name=group_name, typ=RoleType.ADMIN, conn=conn)


async def curator_role(
    group: Group,
    name: str,
    host_uuid: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Role:
    """
    Find the curator role called `name` in the group, creating it if needed.
    """
    result = await conn.execute(
        select(Role)
        .where(Role.group_id == group.group_id)
        .where(Role.typ == RoleType.CURATOR)
        .where(Role.name == name)
    )

    role = result.scalars().first()

    if role is not None:
        return role

    return await add_role(
        group_id=group.group_id,
        typ=RoleType.CURATOR,
        name=name,
        host_uuid=host_uuid,
        conn=conn,
        log=log,
    )


async def role_for(user_uuid: UUID, group_name: str, conn: AsyncSession) -> Role | None:
    """
    The role a user holds in a group, or None if they are not a member.
    """
    result = await conn.execute(
        select(Role)
        .join(Membership, Membership.role_id == Role.role_id)
        .join(Group, Group.group_id == Membership.group_id)
        .where(Membership.user_uuid == user_uuid)
        .where(Group.name == group_name)
    )

    return result.scalars().first()


async def count_role_holders(group_id: int, typ: RoleType, conn: AsyncSession) -> int:
    result = await conn.execute(
        select(func.count())
        .select_from(Membership)
        .join(Role, Role.role_id == Membership.role_id)
        .where(Membership.group_id == group_id)
        .where(Role.typ == typ)
    )

    return result.scalar_one()


async def ensure_not_last_admin(
    group_id: int, user_uuid: UUID, conn: AsyncSession
) -> None:
    """
    Raises
    ------
    LastAdminError
        If `user_uuid` is the only admin left in the group.
    """
    result = await conn.execute(
        select(Role.typ)
        .join(Membership, Membership.role_id == Role.role_id)
        .where(Membership.group_id == group_id)
        .where(Membership.user_uuid == user_uuid)
    )

    typ = result.scalar_one_or_none()

    if typ != RoleType.ADMIN:
        return

    if await count_role_holders(group_id=group_id, typ=RoleType.ADMIN, conn=conn) <= 1:
        raise LastAdminError(f"User {user_uuid} is the last admin of group {group_id}")


async def check_role_invariant(group_id: int, conn: AsyncSession) -> None:
    """
    Raises
    ------
    RoleInvariantViolation
        Unless the group has exactly one `member` and one `admin` role.
    """
    result = await conn.execute(
        select(Role.typ, func.count())
        .where(Role.group_id == group_id)
        .group_by(Role.typ)
    )

    counts = {typ: count for typ, count in result.all()}

    for typ in SINGLETON_ROLES:
        if counts.get(typ, 0) != 1:
            raise RoleInvariantViolation(
                f"Group {group_id} has {counts.get(typ, 0)} {typ.value} roles"
            )


async def get_curator_emails(group_id: int, conn: AsyncSession) -> list[str]:
    """
    Email addresses of everyone holding a curator or admin role in the group.
    """
    result = await conn.execute(
        select(UserProfile.email)
        .join(Membership, Membership.user_uuid == UserProfile.user_uuid)
        .join(Role, Role.role_id == Membership.role_id)
        .where(Membership.group_id == group_id)
        .where(Role.typ != RoleType.MEMBER)
        .where(UserProfile.email.is_not(None))
    )

    return [x for x in result.scalars().all() if x]

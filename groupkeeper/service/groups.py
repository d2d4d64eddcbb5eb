"""
Service layer for groups.
"""

from sqlalchemy import delete as sql_delete
from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from groupkeeper.core.errors import Conflict, NotFound
from groupkeeper.core.group import GroupData
from groupkeeper.core.members import Paginated
from groupkeeper.core.types import (
    GroupType,
    LogOperationType,
    LogTargetType,
    TrustType,
)
from groupkeeper.core.uuid import SYSTEM_USER_UUID, UUID
from groupkeeper.database.group import Group, Role
from groupkeeper.database.members import Membership
from groupkeeper.database.requests import Invitation, Request

from . import logs as logs_service
from . import roles as roles_service


class GroupNotFound(NotFound):
    pass


class GroupExistsError(Conflict):
    pass


class GroupStillActive(Conflict):
    pass


def normalize_name(group_name: str) -> str:
    return group_name.strip().lower().replace(" ", "_")


async def create(
    group_name: str,
    host_uuid: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    description: str = "",
    typ: GroupType = GroupType.CLOSED,
    trust: TrustType = TrustType.NDAED,
    capabilities: str = "",
    group_expiration: int | None = None,
    active: bool = True,
) -> Group:
    """
    Create a new group together with its `admin` and `member` roles.

    Parameters
    ----------
    group_name: str
        The new group.
    host_uuid: UUID
        The user creating the group. Unless this is the system actor, they
        become the group's first admin.
    group_expiration: int | None
        Default membership expiration, in days, for members added without
        an explicit expiration.

    Raises
    ------
    GroupExistsError
        If a group with this name already exists.
    """

    group_name = normalize_name(group_name)

    log = log.bind(
        group_name=group_name,
        host_uuid=host_uuid,
        trust=trust.value,
        typ=typ.value,
    )

    try:
        group = Group(
            name=group_name,
            description=description,
            typ=typ,
            trust=trust,
            capabilities=capabilities,
            group_expiration=group_expiration,
            active=active,
        )
        conn.add(group)
        await conn.flush()
    except IntegrityError as e:
        log = log.bind(error=e)
        await log.ainfo("group.exists")
        raise GroupExistsError(f"Group {group_name} already exists")

    await logs_service.db_log(
        target=LogTargetType.GROUP,
        operation=LogOperationType.CREATED,
        group_id=group.group_id,
        host_uuid=host_uuid,
        conn=conn,
    )

    admin = await roles_service.add_admin_role(
        group_id=group.group_id, host_uuid=host_uuid, conn=conn, log=log
    )
    await roles_service.add_member_role(
        group_id=group.group_id, host_uuid=host_uuid, conn=conn, log=log
    )

    if host_uuid != SYSTEM_USER_UUID:
        conn.add(
            Membership(
                group_id=group.group_id,
                user_uuid=host_uuid,
                role_id=admin.role_id,
                added_by=host_uuid,
            )
        )
        await conn.flush()

        await logs_service.db_log(
            target=LogTargetType.MEMBERSHIP,
            operation=LogOperationType.CREATED,
            group_id=group.group_id,
            host_uuid=host_uuid,
            user_uuid=host_uuid,
            conn=conn,
            body=logs_service.log_comment_body("creator"),
        )

    await log.ainfo("group.created", group_id=group.group_id)

    return group


async def reserve_group(
    group_name: str, conn: AsyncSession, log: FilteringBoundLogger
) -> Group:
    """
    Reserve a group name. The reserved group is inactive and owned by the
    system actor until an administrator takes it over.

    Raises
    ------
    GroupExistsError
        If the name is already taken.
    """
    group = await create(
        group_name=group_name,
        host_uuid=SYSTEM_USER_UUID,
        conn=conn,
        log=log,
        typ=GroupType.CLOSED,
        trust=TrustType.STAFF,
        active=False,
    )

    await log.ainfo("group.reserved", group_name=group.name)

    return group


async def read_by_name(
    group_name: str,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Read a group by its name.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    """
    group_name = normalize_name(group_name)
    log = log.bind(group_name=group_name)
    result = await conn.execute(select(Group).where(Group.name == group_name))
    group = result.scalar_one_or_none()
    if not group:
        await log.ainfo("group.not_found")
        raise GroupNotFound(f"Group with name {group_name} not found")
    await log.adebug("group.found")
    return group


async def read_by_id(
    group_id: int,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Read a group by its ID.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    """
    log = log.bind(group_id=group_id)
    group = await conn.get(Group, group_id)
    if not group:
        await log.ainfo("group.not_found")
        raise GroupNotFound(f"Group with id {group_id} not found")
    await log.adebug("group.found")
    return group


async def get_groups_by_ids(group_ids: list[int], conn: AsyncSession) -> list[Group]:
    if not group_ids:
        return []

    result = await conn.execute(select(Group).where(Group.group_id.in_(group_ids)))

    return list(result.scalars().all())


async def set_trust(
    group_name: str,
    trust: TrustType,
    host_uuid: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> Group:
    """
    Change a group's trust classification. Use `lifecycle.change_trust` to
    also remove members that no longer qualify.
    """
    group = await read_by_name(group_name=group_name, conn=conn, log=log)
    log = log.bind(group_id=group.group_id, old_trust=group.trust, trust=trust)

    group.trust = trust
    conn.add(group)
    await conn.flush()

    await logs_service.db_log(
        target=LogTargetType.GROUP,
        operation=LogOperationType.UPDATED,
        group_id=group.group_id,
        host_uuid=host_uuid,
        conn=conn,
        body={"comment": "trust_changed", "trust": trust.value},
    )

    await log.ainfo("group.trust_changed")

    return group


async def list_inactive_groups(
    conn: AsyncSession,
    log: FilteringBoundLogger,
    limit: int = 20,
    offset: int = 0,
) -> Paginated[GroupData]:
    result = await conn.execute(
        select(Group)
        .where(Group.active.is_(False))
        .order_by(Group.name)
        .offset(offset)
        .limit(limit)
    )

    groups = [g.to_core() for g in result.scalars().all()]

    await log.adebug("group.inactive_listed", number_of_groups=len(groups))

    return Paginated[GroupData].from_page(groups, offset)


async def delete(
    group: Group,
    host_uuid: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> None:
    """
    Hard-delete a group with its roles, memberships, requests and
    invitations. Audit log entries are kept.
    """
    group_id = group.group_id
    log = log.bind(group_id=group_id, group_name=group.name)

    await conn.execute(sql_delete(Membership).where(Membership.group_id == group_id))
    await conn.execute(sql_delete(Request).where(Request.group_id == group_id))
    await conn.execute(sql_delete(Invitation).where(Invitation.group_id == group_id))
    await conn.execute(sql_delete(Role).where(Role.group_id == group_id))
    await conn.delete(group)
    await conn.flush()

    await logs_service.db_log(
        target=LogTargetType.GROUP,
        operation=LogOperationType.DELETED,
        group_id=group_id,
        host_uuid=host_uuid,
        conn=conn,
    )

    await log.ainfo("group.deleted")


async def delete_inactive_group(
    group_name: str,
    host_uuid: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> None:
    """
    Raises
    ------
    GroupNotFound
        If the group does not exist.
    GroupStillActive
        If the group has not been marked inactive.
    """
    group = await read_by_name(group_name=group_name, conn=conn, log=log)

    if group.active:
        await log.awarning("group.delete_inactive.still_active")
        raise GroupStillActive(f"Group {group.name} is still active")

    await delete(group=group, host_uuid=host_uuid, conn=conn, log=log)


async def deactivate_empty_groups(
    conn: AsyncSession, log: FilteringBoundLogger
) -> list[str]:
    """
    No-activity sweep: mark every active group without members inactive.
    """
    has_members = exists().where(Membership.group_id == Group.group_id)

    result = await conn.execute(
        select(Group).where(Group.active.is_(True)).where(~has_members)
    )

    groups = result.scalars().all()

    for group in groups:
        group.active = False
        conn.add(group)

        await logs_service.db_log(
            target=LogTargetType.GROUP,
            operation=LogOperationType.UPDATED,
            group_id=group.group_id,
            host_uuid=SYSTEM_USER_UUID,
            conn=conn,
            body=logs_service.log_comment_body("deactivated"),
        )

    await conn.flush()

    await log.ainfo("group.deactivated_empty", number_of_groups=len(groups))

    return [g.name for g in groups]

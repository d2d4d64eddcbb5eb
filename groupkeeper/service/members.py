"""
Service layer for the membership store: the mapping of (group, user) to a
role, an optional expiration and its provenance.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from structlog.typing import FilteringBoundLogger

from groupkeeper.core.errors import NotFound
from groupkeeper.core.members import DisplayHost, DisplayMemberAndHost, Paginated
from groupkeeper.core.time import utcnow
from groupkeeper.core.types import LogOperationType, LogTargetType, RoleType, TrustType
from groupkeeper.core.uuid import UUID
from groupkeeper.database.group import Group, Role
from groupkeeper.database.members import Membership
from groupkeeper.database.user import UserProfile

from . import groups as groups_service
from . import logs as logs_service
from . import roles as roles_service


class MembershipNotFound(NotFound):
    pass


@dataclass(frozen=True)
class ScopeView:
    """
    What a viewer with a given trust tier may see of other users.
    """

    name: str
    fields: frozenset[str]


_NAMES = frozenset({"username", "first_name", "last_name", "picture"})

SCOPE_VIEWS: dict[TrustType, ScopeView] = {
    TrustType.PUBLIC: ScopeView("public", frozenset({"username"})),
    TrustType.AUTHENTICATED: ScopeView("authenticated", _NAMES),
    TrustType.VOUCHED: ScopeView("vouched", _NAMES),
    TrustType.NDAED: ScopeView("ndaed", _NAMES | {"email"}),
    TrustType.STAFF: ScopeView("staff", _NAMES | {"email"}),
}


def _insert_for(conn: AsyncSession):
    match conn.get_bind().dialect.name:
        case "postgresql":
            return postgresql.insert
        case "sqlite":
            return sqlite.insert
        case name:
            raise ValueError(f"Upserts are not supported on {name}")


async def add_to_group(
    group_name: str,
    host_uuid: UUID,
    member_uuid: UUID,
    expiration: datetime | None,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    role: Role | None = None,
    comment: str = "added",
) -> None:
    """
    Add a user to a group, or re-confirm an existing membership. Adding an
    existing (group, user) pair updates its role, expiration and host; there
    is never more than one row per pair.

    Parameters
    ----------
    role: Role | None
        The role to grant. Defaults to the group's `member` role.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    RoleNotFound
        If the group has no member role.
    RoleInvariantViolation
        If `role` belongs to another group.
    """
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)

    log = log.bind(
        group_id=group.group_id, host_uuid=host_uuid, member_uuid=member_uuid
    )

    if role is None:
        role = await roles_service.member_role(group_name=group.name, conn=conn)
    elif role.group_id != group.group_id:
        await log.awarning("membership.foreign_role", role_id=role.role_id)
        raise roles_service.RoleInvariantViolation(
            f"Role {role.role_id} does not belong to group {group.name}"
        )

    insert = _insert_for(conn)

    stmt = insert(Membership).values(
        group_id=group.group_id,
        user_uuid=member_uuid,
        role_id=role.role_id,
        expiration=expiration,
        added_by=host_uuid,
        added_ts=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["group_id", "user_uuid"],
        set_={
            "role_id": stmt.excluded.role_id,
            "expiration": stmt.excluded.expiration,
            "added_by": stmt.excluded.added_by,
        },
    )

    await conn.execute(stmt)

    await logs_service.db_log(
        target=LogTargetType.MEMBERSHIP,
        operation=LogOperationType.CREATED,
        group_id=group.group_id,
        host_uuid=host_uuid,
        user_uuid=member_uuid,
        conn=conn,
        body=logs_service.log_comment_body(comment),
    )

    await log.ainfo("membership.added", role=role.typ.value, expiration=expiration)


async def remove_from_group(
    host_uuid: UUID,
    user_uuid: UUID,
    group_name: str,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    comment: str | None = None,
    expired_before: datetime | None = None,
) -> bool:
    """
    Remove a user from a group. Returns whether a membership was actually
    deleted; whether a missing membership is an error is up to the caller.
    With `expired_before`, only a membership that expires at or before it is
    deleted.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    """
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)

    log = log.bind(group_id=group.group_id, host_uuid=host_uuid, user_uuid=user_uuid)

    query = (
        delete(Membership)
        .where(Membership.group_id == group.group_id)
        .where(Membership.user_uuid == user_uuid)
    )

    if expired_before is not None:
        query = query.where(Membership.expiration <= expired_before)

    result = await conn.execute(query)

    deleted = result.rowcount > 0

    if deleted:
        await logs_service.db_log(
            target=LogTargetType.MEMBERSHIP,
            operation=LogOperationType.DELETED,
            group_id=group.group_id,
            host_uuid=host_uuid,
            user_uuid=user_uuid,
            conn=conn,
            body=logs_service.log_comment_body(comment) if comment else None,
        )

    await log.ainfo("membership.removed", deleted=deleted, comment=comment)

    return deleted


async def renew(
    host_uuid: UUID,
    group_name: str,
    member_uuid: UUID,
    expiration: datetime | None,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> None:
    """
    Change only the expiration of a membership.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    """
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)

    log = log.bind(group_id=group.group_id, host_uuid=host_uuid, member_uuid=member_uuid)

    await conn.execute(
        update(Membership)
        .where(Membership.group_id == group.group_id)
        .where(Membership.user_uuid == member_uuid)
        .values(expiration=expiration)
    )

    await logs_service.db_log(
        target=LogTargetType.MEMBERSHIP,
        operation=LogOperationType.UPDATED,
        group_id=group.group_id,
        host_uuid=host_uuid,
        user_uuid=member_uuid,
        conn=conn,
        body=logs_service.log_comment_body("renewed"),
    )

    await log.ainfo("membership.renewed", expiration=expiration)


async def get_membership(
    group_name: str, user_uuid: UUID, conn: AsyncSession
) -> Membership:
    """
    Raises
    ------
    MembershipNotFound
        If the user is not a member of the group (or the group does not exist).
    """
    result = await conn.execute(
        select(Membership)
        .join(Group, Group.group_id == Membership.group_id)
        .where(Group.name == groups_service.normalize_name(group_name))
        .where(Membership.user_uuid == user_uuid)
        .execution_options(populate_existing=True)
    )

    membership = result.scalar_one_or_none()

    if membership is None:
        raise MembershipNotFound(
            f"User {user_uuid} is not a member of group {group_name}"
        )

    return membership


async def get_memberships_expired_before(
    before: datetime, conn: AsyncSession
) -> list[Membership]:
    result = await conn.execute(
        select(Membership).where(Membership.expiration <= before)
    )

    return list(result.scalars().all())


async def get_memberships_expire_between(
    lower: datetime, upper: datetime, conn: AsyncSession
) -> list[Membership]:
    result = await conn.execute(
        select(Membership)
        .where(Membership.expiration >= lower)
        .where(Membership.expiration <= upper)
    )

    return list(result.scalars().all())


async def get_members_not_current(
    group_name: str, current_uuid: UUID, conn: AsyncSession, log: FilteringBoundLogger
) -> list[UUID]:
    """
    Everyone in the group except `current_uuid`.
    """
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)

    result = await conn.execute(
        select(Membership.user_uuid)
        .where(Membership.group_id == group.group_id)
        .where(Membership.user_uuid != current_uuid)
    )

    return list(result.scalars().all())


async def get_group_names_for_user(user_uuid: UUID, conn: AsyncSession) -> set[str]:
    """
    Names of all groups the user is a member of, as held locally.
    """
    result = await conn.execute(
        select(Group.name)
        .join(Membership, Membership.group_id == Group.group_id)
        .where(Membership.user_uuid == user_uuid)
    )

    return set(result.scalars().all())


def _visible(view: ScopeView, field: str, value):
    return value if field in view.fields else None


async def members_and_host(
    group_name: str,
    scope: TrustType,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    query: str | None = None,
    roles: list[RoleType] | None = None,
    limit: int = 20,
    offset: int = 0,
) -> Paginated[DisplayMemberAndHost]:
    """
    List the members of a group with their hosts, as seen by a viewer with
    trust tier `scope`. Fields the viewer may not see are left empty.

    Parameters
    ----------
    query: str | None
        Case-insensitive prefix matched against the full name, first name,
        last name, username and email.
    roles: list[RoleType] | None
        Only list members holding one of these role types (default: all).
    """
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)

    view = SCOPE_VIEWS[scope]
    roles = roles or list(RoleType)
    pattern = f"{query or ''}%"

    log = log.bind(group_id=group.group_id, scope=view.name, limit=limit, offset=offset)

    member = aliased(UserProfile)
    host = aliased(UserProfile)

    result = await conn.execute(
        select(Membership, member, Role, host)
        .join(member, member.user_uuid == Membership.user_uuid)
        .join(Role, Role.role_id == Membership.role_id)
        .outerjoin(host, host.user_uuid == Membership.added_by)
        .where(Membership.group_id == group.group_id)
        .where(Role.typ.in_(roles))
        .where(
            (member.first_name + " " + member.last_name).ilike(pattern)
            | member.first_name.ilike(pattern)
            | member.last_name.ilike(pattern)
            | member.username.ilike(pattern)
            | member.email.ilike(pattern)
        )
        .order_by(Role.typ, member.username)
        .offset(offset)
        .limit(limit)
    )

    items = []

    for membership, profile, role, host_profile in result.all():
        items.append(
            DisplayMemberAndHost(
                user_uuid=membership.user_uuid,
                picture=_visible(view, "picture", profile.picture),
                first_name=_visible(view, "first_name", profile.first_name),
                last_name=_visible(view, "last_name", profile.last_name),
                username=_visible(view, "username", profile.username),
                email=_visible(view, "email", profile.email),
                is_staff=profile.trust == TrustType.STAFF,
                since=membership.added_ts,
                expiration=membership.expiration,
                role=role.typ,
                host=DisplayHost(
                    user_uuid=membership.added_by,
                    username=_visible(
                        view, "username", host_profile.username if host_profile else None
                    ),
                    first_name=_visible(
                        view,
                        "first_name",
                        host_profile.first_name if host_profile else None,
                    ),
                    last_name=_visible(
                        view,
                        "last_name",
                        host_profile.last_name if host_profile else None,
                    ),
                    email=_visible(
                        view, "email", host_profile.email if host_profile else None
                    ),
                ),
            )
        )

    await log.adebug("membership.listed", number_of_members=len(items))

    return Paginated[DisplayMemberAndHost].from_page(items, offset)

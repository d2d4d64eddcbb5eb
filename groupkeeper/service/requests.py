"""
Service layer for pending requests to join a group and pending
invitations into one.
"""

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from groupkeeper.config.managers import AsyncSessionManager
from groupkeeper.core.errors import Conflict, NotFound
from groupkeeper.core.members import MembershipData, Paginated, PendingRequestData
from groupkeeper.core.types import GroupType, LogOperationType, LogTargetType
from groupkeeper.core.uuid import SYSTEM_USER_UUID, UUID
from groupkeeper.database.members import Membership
from groupkeeper.database.requests import Invitation, Request
from groupkeeper.database.user import UserProfile

from . import groups as groups_service
from . import lifecycle
from . import logs as logs_service
from .identity import IdentityClient
from .transaction import transaction


class RequestNotFound(NotFound):
    pass


class InvitationNotFound(NotFound):
    pass


class RequestNotAllowed(Conflict):
    pass


class AlreadyMember(Conflict):
    pass


async def _ensure_not_member(group_id: int, user_uuid: UUID, conn: AsyncSession):
    if await conn.get(Membership, (group_id, user_uuid)) is not None:
        raise AlreadyMember(f"User {user_uuid} is already a member of group {group_id}")


async def create_request(
    group_name: str,
    user_uuid: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    request_expiration: datetime | None = None,
) -> Request:
    """
    Ask to join a reviewed group. Asking again returns the pending request.

    Raises
    ------
    RequestNotAllowed
        If the group does not take requests.
    AlreadyMember
        If the user is already in the group.
    """
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)
    log = log.bind(group_id=group.group_id, user_uuid=user_uuid)

    if group.typ != GroupType.REVIEWED or not group.active:
        await log.ainfo("request.not_allowed", typ=group.typ.value)
        raise RequestNotAllowed(f"Group {group.name} does not accept requests")

    await _ensure_not_member(group.group_id, user_uuid, conn)

    existing = await conn.get(Request, (group.group_id, user_uuid))

    if existing is not None:
        await log.adebug("request.exists")
        return existing

    request = Request(
        group_id=group.group_id,
        user_uuid=user_uuid,
        request_expiration=request_expiration,
    )
    conn.add(request)
    await conn.flush()

    await logs_service.db_log(
        target=LogTargetType.REQUEST,
        operation=LogOperationType.CREATED,
        group_id=group.group_id,
        host_uuid=user_uuid,
        user_uuid=user_uuid,
        conn=conn,
    )

    await log.ainfo("request.created")

    return request


async def read_request(group_id: int, user_uuid: UUID, conn: AsyncSession) -> Request:
    request = await conn.get(Request, (group_id, user_uuid))

    if request is None:
        raise RequestNotFound(f"No request from {user_uuid} for group {group_id}")

    return request


async def pending_requests(
    group_name: str,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    limit: int = 20,
    offset: int = 0,
) -> Paginated[PendingRequestData]:
    """
    Pending requests of a group, oldest first.
    """
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)

    result = await conn.execute(
        select(Request, UserProfile)
        .outerjoin(UserProfile, UserProfile.user_uuid == Request.user_uuid)
        .where(Request.group_id == group.group_id)
        .order_by(Request.created)
        .offset(offset)
        .limit(limit)
    )

    items = [
        PendingRequestData(
            group_id=request.group_id,
            user_uuid=request.user_uuid,
            username=profile.username if profile else None,
            email=profile.email if profile else None,
            created=request.created,
            request_expiration=request.request_expiration,
        )
        for request, profile in result.all()
    ]

    return Paginated[PendingRequestData].from_page(items, offset)


async def _delete_request(
    request: Request,
    host_uuid: UUID,
    comment: str,
    conn: AsyncSession,
) -> None:
    await conn.delete(request)
    await conn.flush()

    await logs_service.db_log(
        target=LogTargetType.REQUEST,
        operation=LogOperationType.DELETED,
        group_id=request.group_id,
        host_uuid=host_uuid,
        user_uuid=request.user_uuid,
        conn=conn,
        body=logs_service.log_comment_body(comment),
    )


async def accept_request(
    group_name: str,
    user_uuid: UUID,
    host_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    expiration_days: int | None = None,
) -> MembershipData:
    """
    Add the requesting user to the group (with the group's expiration policy
    unless `expiration_days` is given) and close the request.

    Raises
    ------
    RequestNotFound
        If there is no such request.
    """
    log = log.bind(group_name=group_name, user_uuid=user_uuid, host_uuid=host_uuid)

    async with manager.session() as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )
        await read_request(group_id=group.group_id, user_uuid=user_uuid, conn=conn)

    membership = await lifecycle.add(
        group_name=group_name,
        host_uuid=host_uuid,
        member_uuid=user_uuid,
        identity=identity,
        manager=manager,
        log=log,
        expiration_days=expiration_days,
    )

    async with transaction(manager) as conn:
        request = await conn.get(Request, (membership.group_id, user_uuid))

        if request is not None:
            await _delete_request(
                request=request, host_uuid=host_uuid, comment="accepted", conn=conn
            )

    await log.ainfo("request.accepted")

    return membership


async def reject_request(
    group_name: str,
    user_uuid: UUID,
    host_uuid: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
) -> None:
    """
    Raises
    ------
    RequestNotFound
        If there is no such request.
    """
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)
    log = log.bind(group_id=group.group_id, user_uuid=user_uuid, host_uuid=host_uuid)

    request = await read_request(group_id=group.group_id, user_uuid=user_uuid, conn=conn)

    await _delete_request(
        request=request, host_uuid=host_uuid, comment="rejected", conn=conn
    )

    await log.ainfo("request.rejected")


async def create_invitation(
    group_name: str,
    user_uuid: UUID,
    host_uuid: UUID,
    conn: AsyncSession,
    log: FilteringBoundLogger,
    invitation_expiration: datetime | None = None,
    group_expiration: int | None = None,
) -> Invitation:
    """
    Invite a user into a group. Inviting again replaces the pending
    invitation.

    Parameters
    ----------
    invitation_expiration: datetime | None
        When the invitation itself lapses.
    group_expiration: int | None
        Days of membership granted when the invitation is accepted.

    Raises
    ------
    AlreadyMember
        If the user is already in the group.
    """
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)
    log = log.bind(group_id=group.group_id, user_uuid=user_uuid, host_uuid=host_uuid)

    await _ensure_not_member(group.group_id, user_uuid, conn)

    invitation = await conn.get(Invitation, (group.group_id, user_uuid))

    if invitation is None:
        invitation = Invitation(
            group_id=group.group_id, user_uuid=user_uuid, added_by=host_uuid
        )

    invitation.added_by = host_uuid
    invitation.invitation_expiration = invitation_expiration
    invitation.group_expiration = group_expiration

    conn.add(invitation)
    await conn.flush()

    await logs_service.db_log(
        target=LogTargetType.INVITATION,
        operation=LogOperationType.CREATED,
        group_id=group.group_id,
        host_uuid=host_uuid,
        user_uuid=user_uuid,
        conn=conn,
    )

    await log.ainfo("invitation.created")

    return invitation


async def accept_invitation(
    group_name: str,
    user_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> MembershipData:
    """
    Join a group through a pending invitation. The inviting user is
    recorded as the host.

    Raises
    ------
    InvitationNotFound
        If there is no such invitation.
    """
    log = log.bind(group_name=group_name, user_uuid=user_uuid)

    async with manager.session() as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )
        invitation = await conn.get(Invitation, (group.group_id, user_uuid))

        if invitation is None:
            raise InvitationNotFound(
                f"No invitation for {user_uuid} into group {group.name}"
            )

        host_uuid = invitation.added_by
        group_expiration = invitation.group_expiration

    membership = await lifecycle.add(
        group_name=group_name,
        host_uuid=host_uuid,
        member_uuid=user_uuid,
        identity=identity,
        manager=manager,
        log=log,
        expiration_days=group_expiration,
    )

    async with transaction(manager) as conn:
        invitation = await conn.get(Invitation, (membership.group_id, user_uuid))

        if invitation is not None:
            await conn.delete(invitation)
            await conn.flush()

            await logs_service.db_log(
                target=LogTargetType.INVITATION,
                operation=LogOperationType.DELETED,
                group_id=membership.group_id,
                host_uuid=user_uuid,
                user_uuid=user_uuid,
                conn=conn,
                body=logs_service.log_comment_body("accepted"),
            )

    await log.ainfo("invitation.accepted")

    return membership


async def expire_requests_before(
    before: datetime, conn: AsyncSession, log: FilteringBoundLogger
) -> int:
    """
    Delete every request whose expiration is at or before `before`.
    """
    result = await conn.execute(
        select(Request).where(Request.request_expiration <= before)
    )
    requests = result.scalars().all()

    for request in requests:
        await logs_service.db_log(
            target=LogTargetType.REQUEST,
            operation=LogOperationType.DELETED,
            group_id=request.group_id,
            host_uuid=SYSTEM_USER_UUID,
            user_uuid=request.user_uuid,
            conn=conn,
            body=logs_service.log_comment_body("expired"),
        )

    await conn.execute(delete(Request).where(Request.request_expiration <= before))

    await log.ainfo("request.expired", number_of_requests=len(requests))

    return len(requests)


async def expire_invitations_before(
    before: datetime, conn: AsyncSession, log: FilteringBoundLogger
) -> int:
    """
    Delete every invitation whose expiration is at or before `before`.
    """
    result = await conn.execute(
        select(Invitation).where(Invitation.invitation_expiration <= before)
    )
    invitations = result.scalars().all()

    for invitation in invitations:
        await logs_service.db_log(
            target=LogTargetType.INVITATION,
            operation=LogOperationType.DELETED,
            group_id=invitation.group_id,
            host_uuid=SYSTEM_USER_UUID,
            user_uuid=invitation.user_uuid,
            conn=conn,
            body=logs_service.log_comment_body("expired"),
        )

    await conn.execute(
        delete(Invitation).where(Invitation.invitation_expiration <= before)
    )

    await log.ainfo("invitation.expired", number_of_invitations=len(invitations))

    return len(invitations)


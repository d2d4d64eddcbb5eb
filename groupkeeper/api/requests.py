"""
Requests to join reviewed groups, handled by the group's curators.
"""

from fastapi import APIRouter, HTTPException, status

from groupkeeper.api.dependencies import (
    IdentityDependency,
    LoggerDependency,
    ManagerDependency,
    SettingsDependency,
)
from groupkeeper.core.members import MembershipData, Paginated, PendingRequestData
from groupkeeper.core.models import AcceptRequestContent
from groupkeeper.core.types import RoleType
from groupkeeper.core.user import UserProfileData
from groupkeeper.core.uuid import UUID
from groupkeeper.service import requests as requests_service
from groupkeeper.service import roles as roles_service
from groupkeeper.service.transaction import transaction

from .scope import HostDependency, ScopeAndUser, ScopeDependency

requests_app = APIRouter(tags=["Requests"])


async def ensure_curator(
    group_name: str,
    scope: ScopeAndUser,
    host: UserProfileData,
    manager,
    log,
) -> None:
    if scope.is_sudo:
        return

    async with manager.session() as conn:
        role = await roles_service.role_for(
            user_uuid=host.user_uuid, group_name=group_name, conn=conn
        )

    if role is None or role.typ == RoleType.MEMBER:
        await log.awarning("request.not_curator", group_name=group_name)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@requests_app.get(
    "/{group_name}",
    summary="Pending requests of a group",
    responses={403: {"description": "Not a curator of the group."}},
)
async def pending(
    group_name: str,
    scope: ScopeDependency,
    host: HostDependency,
    settings: SettingsDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
    limit: int | None = None,
    offset: int = 0,
) -> Paginated[PendingRequestData]:
    await ensure_curator(group_name, scope, host, manager, log)

    async with manager.session() as conn:
        return await requests_service.pending_requests(
            group_name=group_name,
            conn=conn,
            log=log,
            limit=limit or settings.default_page_size,
            offset=offset,
        )


@requests_app.post(
    "/{group_name}/{user_uuid}/accept",
    summary="Accept a request",
    responses={
        403: {"description": "Not a curator of the group."},
        404: {"description": "No such request."},
    },
)
async def accept(
    group_name: str,
    user_uuid: UUID,
    content: AcceptRequestContent,
    scope: ScopeDependency,
    host: HostDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> MembershipData:
    await ensure_curator(group_name, scope, host, manager, log)

    return await requests_service.accept_request(
        group_name=group_name,
        user_uuid=user_uuid,
        host_uuid=host.user_uuid,
        identity=identity,
        manager=manager,
        log=log,
        expiration_days=content.group_expiration,
    )


@requests_app.delete(
    "/{group_name}/{user_uuid}",
    summary="Reject a request",
    responses={
        403: {"description": "Not a curator of the group."},
        404: {"description": "No such request."},
    },
)
async def reject(
    group_name: str,
    user_uuid: UUID,
    scope: ScopeDependency,
    host: HostDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> None:
    await ensure_curator(group_name, scope, host, manager, log)

    async with transaction(manager) as conn:
        await requests_service.reject_request(
            group_name=group_name,
            user_uuid=user_uuid,
            host_uuid=host.user_uuid,
            conn=conn,
            log=log,
        )

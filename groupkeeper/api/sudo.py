"""
Administrative (sudo) endpoints. Only available to staff with the admin
groups scope.
"""

from fastapi import APIRouter

from groupkeeper.api.dependencies import (
    DatabaseDependency,
    IdentityDependency,
    LoggerDependency,
    ManagerDependency,
    SenderDependency,
    SettingsDependency,
)
from groupkeeper.core.group import GroupData
from groupkeeper.core.logs import LogEntryData
from groupkeeper.core.members import MembershipData, Paginated, RevokeOutcome
from groupkeeper.core.models import (
    AddCuratorContent,
    AddMemberContent,
    BatchOutcome,
    ChangeTrustContent,
    ConsolidationReport,
    RenewMemberContent,
    TransferMembershipContent,
)
from groupkeeper.core.uuid import SYSTEM_USER_UUID, UUID
from groupkeeper.service import groups as groups_service
from groupkeeper.service import lifecycle
from groupkeeper.service import logs as logs_service
from groupkeeper.service import roles as roles_service
from groupkeeper.service import sync as sync_service
from groupkeeper.service import user as user_service

from .scope import SudoHostDependency, SudoScopeDependency

sudo_app = APIRouter(tags=["Administration"])


@sudo_app.post(
    "/member/{group_name}",
    summary="Add a member to a group",
    description="Add a user to a group (or re-confirm their membership). With "
    "`no_host` the system actor is recorded as host.",
    responses={
        200: {"description": "Membership created."},
        404: {"description": "Group or user not found."},
        502: {"description": "Committed, but the identity service was not updated."},
    },
)
async def add_member(
    group_name: str,
    content: AddMemberContent,
    host: SudoHostDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> MembershipData:
    return await lifecycle.add(
        group_name=group_name,
        host_uuid=SYSTEM_USER_UUID if content.no_host else host.user_uuid,
        member_uuid=content.user_uuid,
        identity=identity,
        manager=manager,
        log=log,
        expiration_days=content.group_expiration,
    )


@sudo_app.delete(
    "/member/{group_name}/{user_uuid}",
    summary="Remove a member from a group",
    responses={
        200: {"description": "Membership removed."},
        404: {"description": "Group or membership not found."},
        409: {"description": "The user is the last admin."},
    },
)
async def remove_member(
    group_name: str,
    user_uuid: UUID,
    host: SudoHostDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> None:
    await lifecycle.remove(
        group_name=group_name,
        host_uuid=host.user_uuid,
        member_uuid=user_uuid,
        identity=identity,
        manager=manager,
        log=log,
    )


@sudo_app.post(
    "/member/{group_name}/{user_uuid}/renew",
    summary="Renew a membership",
    responses={
        200: {"description": "Membership renewed."},
        404: {"description": "Group or membership not found."},
    },
)
async def renew_member(
    group_name: str,
    user_uuid: UUID,
    content: RenewMemberContent,
    host: SudoHostDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> MembershipData:
    return await lifecycle.renew(
        group_name=group_name,
        host_uuid=host.user_uuid,
        member_uuid=user_uuid,
        manager=manager,
        log=log,
        expiration_days=content.group_expiration,
    )


@sudo_app.post(
    "/transfer",
    summary="Transfer a membership to another user",
    responses={
        200: {"description": "Membership transferred."},
        404: {"description": "Group, user or membership not found."},
        500: {"description": "Old profile updated, new profile not updated."},
    },
)
async def transfer_member(
    content: TransferMembershipContent,
    host: SudoHostDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> MembershipData:
    return await lifecycle.transfer(
        group_name=content.group_name,
        old_uuid=content.old_user_uuid,
        new_uuid=content.new_user_uuid,
        host_uuid=host.user_uuid,
        identity=identity,
        manager=manager,
        log=log,
    )


@sudo_app.post("/admin/{group_name}", summary="Make a user an admin of a group")
async def add_admin(
    group_name: str,
    content: AddMemberContent,
    host: SudoHostDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> MembershipData:
    return await lifecycle.add_admin(
        group_name=group_name,
        host_uuid=SYSTEM_USER_UUID if content.no_host else host.user_uuid,
        member_uuid=content.user_uuid,
        identity=identity,
        manager=manager,
        log=log,
    )


@sudo_app.post("/curator/{group_name}", summary="Make a user a curator of a group")
async def add_curator(
    group_name: str,
    content: AddCuratorContent,
    host: SudoHostDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> MembershipData:
    return await lifecycle.add_curator(
        group_name=group_name,
        host_uuid=host.user_uuid,
        member_uuid=content.user_uuid,
        identity=identity,
        manager=manager,
        log=log,
        role_name=content.role_name,
    )


@sudo_app.post(
    "/demote/{group_name}/{user_uuid}",
    summary="Demote an admin or curator to member",
    responses={409: {"description": "The user is the last admin."}},
)
async def demote(
    group_name: str,
    user_uuid: UUID,
    content: RenewMemberContent,
    host: SudoHostDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> MembershipData:
    return await lifecycle.demote(
        group_name=group_name,
        host_uuid=host.user_uuid,
        member_uuid=user_uuid,
        manager=manager,
        log=log,
        expiration_days=content.group_expiration,
    )


@sudo_app.post("/trust/{group_name}", summary="Change a group's trust level")
async def change_trust(
    group_name: str,
    content: ChangeTrustContent,
    host: SudoHostDependency,
    identity: IdentityDependency,
    sender: SenderDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> BatchOutcome:
    return await lifecycle.change_trust(
        group_name=group_name,
        trust=content.trust,
        host_uuid=host.user_uuid,
        identity=identity,
        sender=sender,
        manager=manager,
        log=log,
    )


@sudo_app.get("/groups/inactive", summary="List inactive groups")
async def list_inactive_groups(
    scope: SudoScopeDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    limit: int | None = None,
    offset: int = 0,
) -> Paginated[GroupData]:
    return await groups_service.list_inactive_groups(
        conn=conn,
        log=log,
        limit=limit or settings.default_page_size,
        offset=offset,
    )


@sudo_app.delete(
    "/groups/inactive/{group_name}",
    summary="Delete an inactive group",
    responses={409: {"description": "The group is still active."}},
)
async def delete_inactive_group(
    group_name: str,
    host: SudoHostDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> None:
    await groups_service.delete_inactive_group(
        group_name=group_name, host_uuid=host.user_uuid, conn=conn, log=log
    )


@sudo_app.delete("/groups/{group_name}", summary="Delete a group")
async def delete_group(
    group_name: str,
    host: SudoHostDependency,
    identity: IdentityDependency,
    sender: SenderDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> BatchOutcome:
    return await lifecycle.delete_group(
        group_name=group_name,
        host_uuid=host.user_uuid,
        identity=identity,
        sender=sender,
        manager=manager,
        log=log,
    )


@sudo_app.post(
    "/groups/reserve/{group_name}",
    summary="Reserve a group name",
    responses={409: {"description": "The name is taken."}},
)
async def reserve_group(
    group_name: str,
    scope: SudoScopeDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> GroupData:
    group = await groups_service.reserve_group(group_name=group_name, conn=conn, log=log)

    return group.to_core()


@sudo_app.get("/curators/{group_name}", summary="Emails of a group's curators")
async def curator_emails(
    group_name: str,
    scope: SudoScopeDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
) -> list[str]:
    group = await groups_service.read_by_name(group_name=group_name, conn=conn, log=log)

    return await roles_service.get_curator_emails(group_id=group.group_id, conn=conn)


@sudo_app.get("/user/staff", summary="UUIDs of all staff")
async def all_staff_uuids(
    scope: SudoScopeDependency, conn: DatabaseDependency
) -> list[UUID]:
    return await user_service.get_all_staff_uuids(conn=conn)


@sudo_app.get("/user/members", summary="UUIDs of all users in any group")
async def all_member_uuids(
    scope: SudoScopeDependency, conn: DatabaseDependency
) -> list[UUID]:
    return await user_service.get_all_member_uuids(conn=conn)


@sudo_app.delete("/user/{user_uuid}", summary="Delete a user")
async def delete_user(
    user_uuid: UUID,
    host: SudoHostDependency,
    identity: IdentityDependency,
    sender: SenderDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> RevokeOutcome:
    return await lifecycle.delete_user(
        user_uuid=user_uuid,
        host_uuid=host.user_uuid,
        identity=identity,
        sender=sender,
        manager=manager,
        log=log,
    )


@sudo_app.post(
    "/user/{user_uuid}/sync",
    summary="Push a user's groups to the identity service",
)
async def update_identity_for_user(
    user_uuid: UUID,
    scope: SudoScopeDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
) -> list[str]:
    groups = await sync_service.send_groups_to_profile(
        user_uuid=user_uuid, identity=identity, manager=manager, log=log
    )

    return sorted(groups)


@sudo_app.post(
    "/consolidate",
    summary="Reconcile every user's groups with the identity service",
)
async def consolidate(
    scope: SudoScopeDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
    log: LoggerDependency,
    dry_run: bool = True,
) -> ConsolidationReport:
    return await sync_service.consolidate(
        identity=identity, manager=manager, log=log, dry_run=dry_run
    )


@sudo_app.get("/logs/all/raw", summary="The audit log, newest first")
async def all_raw_logs(
    scope: SudoScopeDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    limit: int | None = None,
    offset: int = 0,
) -> Paginated[LogEntryData]:
    return await logs_service.raw_logs(
        conn=conn, limit=limit or settings.default_page_size, offset=offset
    )

"""
The membership lifecycle: how users enter, move within, are renewed in, are
transferred between and leave groups.

Every operation follows the same shape:

1. Resolve the identities involved (may call the identity service).
2. One local transaction for the change and its audit log entries.
3. After commit, push the change to the identity service and send any
   notifications.

A failure in step 1 leaves nothing written. A failure in step 2 rolls the
whole transaction back, audit entries included. A failure in step 3 is
reported (`SyncError`) but never undoes the committed change.
"""

import asyncio
from datetime import datetime
from functools import partial

from structlog.typing import FilteringBoundLogger

from groupkeeper.config.managers import AsyncSessionManager
from groupkeeper.core.errors import (
    Conflict,
    NotFound,
    StorageError,
    SyncError,
    TransferIncomplete,
)
from groupkeeper.core.group import GroupData
from groupkeeper.core.members import MembershipData, RevokeOutcome
from groupkeeper.core.models import BatchOutcome
from groupkeeper.core.time import to_expiration_ts
from groupkeeper.core.types import GroupType, RoleType, TrustType
from groupkeeper.core.uuid import SYSTEM_USER_UUID, UUID
from groupkeeper.database.group import Role

from . import groups as groups_service
from . import members as members_service
from . import roles as roles_service
from . import sync as sync_service
from . import user as user_service
from .identity import IdentityClient
from .notify import NotificationSender, Template, TemplateKind, send_email, send_emails
from .transaction import PostCommitHooks, transaction


class TransferToSelf(Conflict):
    pass


async def create_group(
    group_name: str,
    host_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    description: str = "",
    typ: GroupType = GroupType.CLOSED,
    trust: TrustType = TrustType.NDAED,
    group_expiration: int | None = None,
) -> GroupData:
    """
    Create a group with the host as its first admin.

    Raises
    ------
    UserNotFound
        If the host is unknown to the identity service.
    GroupExistsError
        If the name is taken.
    SyncError
        If the group could not be added to the host's remote profile. The
        group has been created.
    """
    log = log.bind(group_name=group_name, host_uuid=host_uuid)

    if host_uuid != SYSTEM_USER_UUID:
        await user_service.resolve(
            user_uuid=host_uuid, identity=identity, manager=manager, log=log
        )

    hooks = PostCommitHooks(log=log)

    async with transaction(manager) as conn:
        group = await groups_service.create(
            group_name=group_name,
            host_uuid=host_uuid,
            conn=conn,
            log=log,
            description=description,
            typ=typ,
            trust=trust,
            group_expiration=group_expiration,
        )
        data = group.to_core()

        if host_uuid != SYSTEM_USER_UUID:
            hooks.add(
                partial(
                    sync_service.add_group_to_profile,
                    user_uuid=host_uuid,
                    group_name=data.name,
                    identity=identity,
                    log=log,
                )
            )

    await hooks.run()

    return data


async def _add_with_role(
    group_name: str,
    host_uuid: UUID,
    member_uuid: UUID,
    role_type: RoleType,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    expiration_days: int | None = None,
    role_name: str | None = None,
) -> MembershipData:
    log = log.bind(
        group_name=group_name,
        host_uuid=host_uuid,
        member_uuid=member_uuid,
        role_type=role_type.value,
    )

    await user_service.resolve(
        user_uuid=member_uuid, identity=identity, manager=manager, log=log
    )

    hooks = PostCommitHooks(log=log)

    async with transaction(manager) as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )

        if role_type != RoleType.ADMIN:
            await roles_service.ensure_not_last_admin(
                group_id=group.group_id, user_uuid=member_uuid, conn=conn
            )

        role: Role
        expiration = None

        match role_type:
            case RoleType.MEMBER:
                role = await roles_service.member_role(group_name=group.name, conn=conn)
                days = (
                    expiration_days
                    if expiration_days is not None
                    else group.group_expiration
                )
                expiration = to_expiration_ts(days)
            case RoleType.ADMIN:
                role = await roles_service.admin_role(group_name=group.name, conn=conn)
            case RoleType.CURATOR:
                role = await roles_service.curator_role(
                    group=group,
                    name=role_name or roles_service.ROLE_CURATOR,
                    host_uuid=host_uuid,
                    conn=conn,
                    log=log,
                )

        await members_service.add_to_group(
            group_name=group.name,
            host_uuid=host_uuid,
            member_uuid=member_uuid,
            expiration=expiration,
            conn=conn,
            log=log,
            role=role,
        )

        membership = await members_service.get_membership(
            group_name=group.name, user_uuid=member_uuid, conn=conn
        )
        data = membership.to_core()

        hooks.add(
            partial(
                sync_service.add_group_to_profile,
                user_uuid=member_uuid,
                group_name=group.name,
                identity=identity,
                log=log,
            )
        )

    await hooks.run()

    return data


async def add(
    group_name: str,
    host_uuid: UUID,
    member_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    expiration_days: int | None = None,
) -> MembershipData:
    """
    Add a user to a group as a plain member, or re-confirm an existing
    membership (which is then demoted to `member`, with the new expiration
    and host).

    Parameters
    ----------
    expiration_days: int | None
        Days until the membership expires. Defaults to the group's
        expiration policy; no expiration if the group has none.

    Raises
    ------
    UserNotFound
        If the member is unknown to the identity service. Nothing is written.
    UpstreamError
        If the identity service cannot be reached. Nothing is written.
    GroupNotFound
        If the group does not exist.
    LastAdminError
        If the member is the group's only admin.
    StorageError
        If the local change could not be committed.
    SyncError
        If the member's remote profile could not be updated. The membership
        has been committed.
    """
    return await _add_with_role(
        group_name=group_name,
        host_uuid=host_uuid,
        member_uuid=member_uuid,
        role_type=RoleType.MEMBER,
        identity=identity,
        manager=manager,
        log=log,
        expiration_days=expiration_days,
    )


async def add_admin(
    group_name: str,
    host_uuid: UUID,
    member_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> MembershipData:
    """
    Make a user an admin of the group (adding them if needed). Admin
    memberships do not expire.
    """
    return await _add_with_role(
        group_name=group_name,
        host_uuid=host_uuid,
        member_uuid=member_uuid,
        role_type=RoleType.ADMIN,
        identity=identity,
        manager=manager,
        log=log,
    )


async def add_curator(
    group_name: str,
    host_uuid: UUID,
    member_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    role_name: str = roles_service.ROLE_CURATOR,
) -> MembershipData:
    """
    Give a user the curator role called `role_name`, creating the role if
    the group does not have it yet. Curator memberships do not expire.
    """
    return await _add_with_role(
        group_name=group_name,
        host_uuid=host_uuid,
        member_uuid=member_uuid,
        role_type=RoleType.CURATOR,
        identity=identity,
        manager=manager,
        log=log,
        role_name=role_name,
    )


async def demote(
    group_name: str,
    host_uuid: UUID,
    member_uuid: UUID,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    expiration_days: int | None = None,
) -> MembershipData:
    """
    Turn an admin or curator back into a plain member. The group list of the
    user does not change, so nothing is pushed to the identity service.

    Raises
    ------
    MembershipNotFound
        If the user is not a member.
    LastAdminError
        If the user is the group's only admin.
    """
    log = log.bind(group_name=group_name, host_uuid=host_uuid, member_uuid=member_uuid)

    async with transaction(manager) as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )

        await members_service.get_membership(
            group_name=group.name, user_uuid=member_uuid, conn=conn
        )
        await roles_service.ensure_not_last_admin(
            group_id=group.group_id, user_uuid=member_uuid, conn=conn
        )

        days = expiration_days if expiration_days is not None else group.group_expiration

        await members_service.add_to_group(
            group_name=group.name,
            host_uuid=host_uuid,
            member_uuid=member_uuid,
            expiration=to_expiration_ts(days),
            conn=conn,
            log=log,
            comment="demoted",
        )

        membership = await members_service.get_membership(
            group_name=group.name, user_uuid=member_uuid, conn=conn
        )
        data = membership.to_core()

    await log.ainfo("lifecycle.demoted")

    return data


async def remove(
    group_name: str,
    host_uuid: UUID,
    member_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    comment: str | None = None,
) -> None:
    """
    Remove a member from a group.

    Raises
    ------
    GroupNotFound
        If the group does not exist.
    MembershipNotFound
        If the user is not a member.
    LastAdminError
        If the user is the group's only admin.
    SyncError
        If the group could not be removed from the remote profile. The
        membership has been removed.
    """
    log = log.bind(group_name=group_name, host_uuid=host_uuid, member_uuid=member_uuid)

    hooks = PostCommitHooks(log=log)

    async with transaction(manager) as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )

        await members_service.get_membership(
            group_name=group.name, user_uuid=member_uuid, conn=conn
        )
        await roles_service.ensure_not_last_admin(
            group_id=group.group_id, user_uuid=member_uuid, conn=conn
        )
        await members_service.remove_from_group(
            host_uuid=host_uuid,
            user_uuid=member_uuid,
            group_name=group.name,
            conn=conn,
            log=log,
            comment=comment,
        )

        hooks.add(
            partial(
                sync_service.remove_groups_from_profile,
                user_uuid=member_uuid,
                group_names=[group.name],
                identity=identity,
                log=log,
            )
        )

    await hooks.run()


async def renew(
    group_name: str,
    host_uuid: UUID,
    member_uuid: UUID,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    expiration_days: int | None = None,
) -> MembershipData:
    """
    Set a new expiration on an existing membership, counted from now.
    Defaults to the group's expiration policy.

    Raises
    ------
    MembershipNotFound
        If the user is not a member.
    """
    log = log.bind(group_name=group_name, host_uuid=host_uuid, member_uuid=member_uuid)

    async with transaction(manager) as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )

        await members_service.get_membership(
            group_name=group.name, user_uuid=member_uuid, conn=conn
        )

        days = expiration_days if expiration_days is not None else group.group_expiration

        await members_service.renew(
            host_uuid=host_uuid,
            group_name=group.name,
            member_uuid=member_uuid,
            expiration=to_expiration_ts(days),
            conn=conn,
            log=log,
        )

        membership = await members_service.get_membership(
            group_name=group.name, user_uuid=member_uuid, conn=conn
        )
        data = membership.to_core()

    return data


async def transfer(
    group_name: str,
    old_uuid: UUID,
    new_uuid: UUID,
    host_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> MembershipData:
    """
    Move a membership, with its exact role and expiration, from one user to
    another. Both local changes are committed together. The old user's
    profile is updated first, then the new user's.

    Raises
    ------
    TransferToSelf
        If both users are the same.
    UserNotFound
        If the new user is unknown to the identity service.
    MembershipNotFound
        If the old user is not a member.
    LastAdminError
        If the new user is the group's only admin and would be downgraded.
    SyncError
        If the old user's profile could not be updated (the new user's
        profile is still attempted).
    TransferIncomplete
        If the old user's profile lost the group but the new user's profile
        could not gain it.
    """
    log = log.bind(
        group_name=group_name, old_uuid=old_uuid, new_uuid=new_uuid, host_uuid=host_uuid
    )

    if old_uuid == new_uuid:
        raise TransferToSelf(f"Cannot transfer a membership of {group_name} to its owner")

    await user_service.resolve(
        user_uuid=new_uuid, identity=identity, manager=manager, log=log
    )

    async with transaction(manager) as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )

        old = await members_service.get_membership(
            group_name=group.name, user_uuid=old_uuid, conn=conn
        )
        role = await conn.get(Role, old.role_id)
        expiration = old.expiration

        if role.typ != RoleType.ADMIN:
            await roles_service.ensure_not_last_admin(
                group_id=group.group_id, user_uuid=new_uuid, conn=conn
            )

        await members_service.add_to_group(
            group_name=group.name,
            host_uuid=host_uuid,
            member_uuid=new_uuid,
            expiration=expiration,
            conn=conn,
            log=log,
            role=role,
            comment="transferred",
        )
        await members_service.remove_from_group(
            host_uuid=host_uuid,
            user_uuid=old_uuid,
            group_name=group.name,
            conn=conn,
            log=log,
            comment="transferred",
        )

        membership = await members_service.get_membership(
            group_name=group.name, user_uuid=new_uuid, conn=conn
        )
        data = membership.to_core()
        group_name = group.name

    await log.ainfo("lifecycle.transferred", role=role.typ.value)

    old_error: SyncError | None = None

    try:
        await sync_service.remove_groups_from_profile(
            user_uuid=old_uuid, group_names=[group_name], identity=identity, log=log
        )
    except SyncError as e:
        old_error = e

    try:
        await sync_service.add_group_to_profile(
            user_uuid=new_uuid, group_name=group_name, identity=identity, log=log
        )
    except SyncError as e:
        if old_error is None:
            await log.aerror("lifecycle.transfer_incomplete", error=str(e))
            raise TransferIncomplete(
                f"Group {group_name} was removed from the profile of {old_uuid} "
                f"but could not be added to the profile of {new_uuid}: {e}",
                user_uuid=new_uuid,
                group_names=[group_name],
            ) from e
        raise

    if old_error is not None:
        raise old_error

    return data


async def revoke_membership(
    user_uuid: UUID,
    group_names: list[str],
    host_uuid: UUID,
    identity: IdentityClient,
    sender: NotificationSender,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    force: bool = False,
    notify: bool = False,
    comment: str | None = None,
    expired_before: datetime | None = None,
) -> RevokeOutcome:
    """
    Remove one user from several groups. Each group is removed in its own
    transaction, and a failure for one group does not stop the others.

    Parameters
    ----------
    force: bool
        Skip the ordinary checks (the membership must exist, the last admin
        may not be removed). Used by the expiration sweep.
    notify: bool
        Email the user once per group they were removed from.
    expired_before: datetime | None
        Only remove memberships that expire at or before this time, so that
        a membership renewed since it was read is kept.

    Returns
    -------
    RevokeOutcome
        The groups removed, the groups that failed (with the reason) and,
        if pushing the removals to the identity service failed, that error.
        A sync failure never undoes the removals.
    """
    log = log.bind(user_uuid=user_uuid, host_uuid=host_uuid, force=force)

    outcome = RevokeOutcome(user_uuid=user_uuid)

    for group_name in group_names:
        try:
            async with transaction(manager) as conn:
                group = await groups_service.read_by_name(
                    group_name=group_name, conn=conn, log=log
                )

                if not force:
                    await members_service.get_membership(
                        group_name=group.name, user_uuid=user_uuid, conn=conn
                    )
                    await roles_service.ensure_not_last_admin(
                        group_id=group.group_id, user_uuid=user_uuid, conn=conn
                    )

                removed = await members_service.remove_from_group(
                    host_uuid=host_uuid,
                    user_uuid=user_uuid,
                    group_name=group.name,
                    conn=conn,
                    log=log,
                    comment=comment,
                    expired_before=expired_before,
                )
        except (NotFound, Conflict, StorageError) as e:
            await log.awarning("revoke.group_failed", group_name=group_name, error=str(e))
            outcome.failed[group_name] = str(e)
            continue

        if removed:
            outcome.removed.append(group.name)

    if notify and outcome.removed:
        async with manager.session() as conn:
            emails = await user_service.get_emails(user_uuids=[user_uuid], conn=conn)

        for group_name in outcome.removed:
            await send_email(
                address=emails[0] if emails else None,
                template=Template(kind=TemplateKind.MEMBER_REMOVED, group_name=group_name),
                sender=sender,
                log=log,
            )

    if outcome.removed:
        try:
            await sync_service.remove_groups_from_profile(
                user_uuid=user_uuid,
                group_names=outcome.removed,
                identity=identity,
                log=log,
            )
        except SyncError as e:
            outcome.sync_error = str(e)

    await log.ainfo(
        "revoke.finished",
        removed=outcome.removed,
        number_failed=len(outcome.failed),
        sync_error=outcome.sync_error,
    )

    return outcome


async def change_trust(
    group_name: str,
    trust: TrustType,
    host_uuid: UUID,
    identity: IdentityClient,
    sender: NotificationSender,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> BatchOutcome:
    """
    Change a group's trust classification. When the trust is raised, every
    member whose profile trust is now too low is removed from the group.

    Returns
    -------
    BatchOutcome
        One entry per member that had to be removed.
    """
    log = log.bind(group_name=group_name, trust=trust.value, host_uuid=host_uuid)

    async with transaction(manager) as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )
        old_trust = group.trust

        await groups_service.set_trust(
            group_name=group.name, trust=trust, host_uuid=host_uuid, conn=conn, log=log
        )

        below = []

        if trust.rank > old_trust.rank:
            members = await members_service.get_members_not_current(
                group_name=group.name, current_uuid=SYSTEM_USER_UUID, conn=conn, log=log
            )
            below = await user_service.get_uuids_below_trust(
                user_uuids=members, trust=trust, conn=conn
            )

        group_name = group.name

    outcome = BatchOutcome()

    for user_uuid in below:
        result = await revoke_membership(
            user_uuid=user_uuid,
            group_names=[group_name],
            host_uuid=host_uuid,
            identity=identity,
            sender=sender,
            manager=manager,
            log=log,
            force=True,
            comment="trust_changed",
        )

        if result.ok:
            outcome.succeeded += 1
        else:
            outcome.failed[str(user_uuid)] = result.sync_error or "; ".join(
                result.failed.values()
            )

    await log.ainfo(
        "lifecycle.trust_changed",
        old_trust=old_trust.value,
        removed=outcome.succeeded,
        failed=outcome.failed_count,
    )

    return outcome


async def delete_group(
    group_name: str,
    host_uuid: UUID,
    identity: IdentityClient,
    sender: NotificationSender,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> BatchOutcome:
    """
    Hard-delete a group. Everyone else who was in it is notified, and the
    group is removed from every former member's remote profile.

    Returns
    -------
    BatchOutcome
        The profile updates, one per former member.
    """
    log = log.bind(group_name=group_name, host_uuid=host_uuid)

    async with transaction(manager) as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )
        group_name = group.name

        others = await members_service.get_members_not_current(
            group_name=group.name, current_uuid=host_uuid, conn=conn, log=log
        )
        former = await members_service.get_members_not_current(
            group_name=group.name, current_uuid=SYSTEM_USER_UUID, conn=conn, log=log
        )
        emails = await user_service.get_emails(user_uuids=others, conn=conn)

        await groups_service.delete(group=group, host_uuid=host_uuid, conn=conn, log=log)

    await send_emails(
        addresses=emails,
        template=Template(kind=TemplateKind.GROUP_DELETED, group_name=group_name),
        sender=sender,
        log=log,
    )

    results = await asyncio.gather(
        *[
            sync_service.remove_groups_from_profile(
                user_uuid=u, group_names=[group_name], identity=identity, log=log
            )
            for u in former
        ],
        return_exceptions=True,
    )

    outcome = BatchOutcome()

    for user_uuid, result in zip(former, results):
        if isinstance(result, SyncError):
            outcome.failed[str(user_uuid)] = str(result)
        elif isinstance(result, BaseException):
            raise result
        else:
            outcome.succeeded += 1

    await log.ainfo(
        "lifecycle.group_deleted",
        number_of_members=len(former),
        failed=outcome.failed_count,
    )

    return outcome


async def delete_user(
    user_uuid: UUID,
    host_uuid: UUID,
    identity: IdentityClient,
    sender: NotificationSender,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> RevokeOutcome:
    """
    Remove a user from every group and forget everything held locally about
    them (except the audit log).
    """
    log = log.bind(user_uuid=user_uuid, host_uuid=host_uuid)

    async with manager.session() as conn:
        group_names = await members_service.get_group_names_for_user(
            user_uuid=user_uuid, conn=conn
        )

    outcome = await revoke_membership(
        user_uuid=user_uuid,
        group_names=sorted(group_names),
        host_uuid=host_uuid,
        identity=identity,
        sender=sender,
        manager=manager,
        log=log,
        force=True,
        comment="user_deleted",
    )

    async with transaction(manager) as conn:
        await user_service.delete_profile(user_uuid=user_uuid, conn=conn, log=log)

    return outcome

"""
Reconciliation of local memberships with the group lists held by the
identity service.

Local state is the source of truth. Every push here happens after the local
change has been committed, so a failure never rolls anything back: it is
reported as a `SyncError` and healed by the next consolidation.
"""

import asyncio

from structlog.typing import FilteringBoundLogger

from groupkeeper.config.managers import AsyncSessionManager
from groupkeeper.core.errors import NotFound, SyncError, UpstreamError
from groupkeeper.core.models import ConsolidationReport, ProfileDiff
from groupkeeper.core.user import RemoteProfile
from groupkeeper.core.uuid import UUID

from . import members as members_service
from . import user as user_service
from .identity import IdentityClient


async def _fetch(
    user_uuid: UUID, group_names: list[str], identity: IdentityClient
) -> RemoteProfile:
    try:
        return await identity.get_user_by_uuid(user_uuid)
    except (NotFound, UpstreamError) as e:
        raise SyncError(
            f"Could not read profile of {user_uuid}: {e}",
            user_uuid=user_uuid,
            group_names=group_names,
        ) from e


async def _push(
    profile: RemoteProfile, group_names: list[str], identity: IdentityClient
) -> None:
    try:
        await identity.update_user(profile)
    except (NotFound, UpstreamError) as e:
        raise SyncError(
            f"Could not update profile of {profile.user_uuid}: {e}",
            user_uuid=profile.user_uuid,
            group_names=group_names,
        ) from e


async def add_group_to_profile(
    user_uuid: UUID,
    group_name: str,
    identity: IdentityClient,
    log: FilteringBoundLogger,
) -> None:
    """
    Raises
    ------
    SyncError
        If the profile could not be read or written.
    """
    log = log.bind(user_uuid=user_uuid, group_name=group_name)

    try:
        profile = await _fetch(user_uuid, [group_name], identity)
        profile.groups.add(group_name)
        await _push(profile, [group_name], identity)
    except SyncError as e:
        await log.aerror("sync.failed", error=str(e))
        raise

    await log.ainfo("sync.group_added")


async def remove_groups_from_profile(
    user_uuid: UUID,
    group_names: list[str],
    identity: IdentityClient,
    log: FilteringBoundLogger,
) -> None:
    """
    Raises
    ------
    SyncError
        If the profile could not be read or written.
    """
    log = log.bind(user_uuid=user_uuid, group_names=group_names)

    try:
        profile = await _fetch(user_uuid, group_names, identity)
        profile.groups.difference_update(group_names)
        await _push(profile, group_names, identity)
    except SyncError as e:
        await log.aerror("sync.failed", error=str(e))
        raise

    await log.ainfo("sync.groups_removed")


async def send_groups_to_profile(
    user_uuid: UUID,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> set[str]:
    """
    Overwrite the user's remote group list with the local one. Returns the
    groups that were pushed.

    Raises
    ------
    SyncError
        If the profile could not be read or written.
    """
    log = log.bind(user_uuid=user_uuid)

    async with manager.session() as conn:
        local = await members_service.get_group_names_for_user(
            user_uuid=user_uuid, conn=conn
        )

    try:
        profile = await _fetch(user_uuid, sorted(local), identity)
        profile.groups = set(local)
        await _push(profile, sorted(local), identity)
    except SyncError as e:
        await log.aerror("sync.failed", error=str(e))
        raise

    await log.ainfo("sync.groups_sent", number_of_groups=len(local))

    return local


async def _consolidate_user(
    user_uuid: UUID,
    dry_run: bool,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> ProfileDiff | None:
    async with manager.session() as conn:
        local = await members_service.get_group_names_for_user(
            user_uuid=user_uuid, conn=conn
        )

    profile = await _fetch(user_uuid, sorted(local), identity)

    diff = ProfileDiff(
        user_uuid=user_uuid,
        missing_remote=sorted(local - profile.groups),
        extra_remote=sorted(profile.groups - local),
    )

    if not diff.missing_remote and not diff.extra_remote:
        return None

    await log.ainfo(
        "consolidate.diff",
        user_uuid=user_uuid,
        missing_remote=diff.missing_remote,
        extra_remote=diff.extra_remote,
    )

    if not dry_run:
        profile.groups = set(local)
        await _push(profile, sorted(local), identity)

    return diff


async def consolidate(
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    dry_run: bool = True,
) -> ConsolidationReport:
    """
    Compare the local and remote group lists of every known user (anyone
    with a cached profile or a membership). In a dry run only the
    differences are reported; otherwise the local list is pushed for every
    user that differs. A failure for one user does not stop the others.
    """
    log = log.bind(dry_run=dry_run)

    async with manager.session() as conn:
        user_uuids = set(await user_service.get_profile_uuids(conn=conn))
        user_uuids |= set(await user_service.get_all_member_uuids(conn=conn))

    user_uuids = sorted(user_uuids)

    results = await asyncio.gather(
        *[
            _consolidate_user(
                user_uuid=u,
                dry_run=dry_run,
                identity=identity,
                manager=manager,
                log=log,
            )
            for u in user_uuids
        ],
        return_exceptions=True,
    )

    report = ConsolidationReport(dry_run=dry_run, checked=len(user_uuids))

    for user_uuid, result in zip(user_uuids, results):
        if isinstance(result, Exception):
            await log.aerror(
                "consolidate.user_failed", user_uuid=user_uuid, error=str(result)
            )
            report.failed[str(user_uuid)] = str(result)
        elif isinstance(result, BaseException):
            raise result
        elif result is not None:
            report.diffs.append(result)
            if not dry_run:
                report.updated += 1

    await log.ainfo(
        "consolidate.finished",
        checked=report.checked,
        number_of_diffs=len(report.diffs),
        updated=report.updated,
        failed=len(report.failed),
    )

    return report

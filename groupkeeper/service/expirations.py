"""
Scheduled sweeps: membership expiration, expiration warnings, and the
expiry of pending requests and invitations.

These run from cron through the CLI. A failure for one user never stops the
sweep; it is logged and counted in the returned outcome.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, time, timedelta, timezone
from typing import Iterable

from structlog.typing import FilteringBoundLogger

from groupkeeper.config.managers import AsyncSessionManager
from groupkeeper.core.models import BatchOutcome
from groupkeeper.core.time import utcnow
from groupkeeper.core.types import RoleType
from groupkeeper.core.uuid import SYSTEM_USER_UUID, UUID
from groupkeeper.database.members import Membership

from . import groups as groups_service
from . import lifecycle
from . import members as members_service
from . import requests as requests_service
from . import roles as roles_service
from . import user as user_service
from .identity import IdentityClient
from .notify import NotificationSender, Template, TemplateKind, send_email, send_emails
from .transaction import transaction

FIRST_NOTIFICATION_DAYS = 14
SECOND_NOTIFICATION_DAYS = 7


def group_expired_by_user(
    memberships: Iterable[Membership], group_names: dict[int, str]
) -> dict[UUID, list[str]]:
    """
    Partition expired memberships by user: user uuid to the names of the
    groups they have expired from.
    """
    by_user: dict[UUID, list[str]] = defaultdict(list)

    for membership in memberships:
        by_user[membership.user_uuid].append(group_names[membership.group_id])

    return dict(by_user)


async def expire_memberships(
    identity: IdentityClient,
    sender: NotificationSender,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    now: datetime | None = None,
) -> BatchOutcome:
    """
    Remove every membership whose expiration is at or before `now`. Users are
    processed concurrently, each through one `revoke_membership`.
    """
    now = now or utcnow()
    log = log.bind(now=now)

    async with manager.session() as conn:
        expired = await members_service.get_memberships_expired_before(
            before=now, conn=conn
        )
        groups = await groups_service.get_groups_by_ids(
            group_ids=list({m.group_id for m in expired}), conn=conn
        )

    by_user = group_expired_by_user(expired, {g.group_id: g.name for g in groups})
    user_uuids = list(by_user.keys())

    await log.ainfo(
        "expire.started",
        number_of_memberships=len(expired),
        number_of_users=len(user_uuids),
    )

    results = await asyncio.gather(
        *[
            lifecycle.revoke_membership(
                user_uuid=user_uuid,
                group_names=by_user[user_uuid],
                host_uuid=SYSTEM_USER_UUID,
                identity=identity,
                sender=sender,
                manager=manager,
                log=log,
                force=True,
                notify=True,
                comment="expired",
                expired_before=now,
            )
            for user_uuid in user_uuids
        ],
        return_exceptions=True,
    )

    outcome = BatchOutcome()

    for user_uuid, result in zip(user_uuids, results):
        if isinstance(result, Exception):
            message = str(result)
        elif isinstance(result, BaseException):
            raise result
        elif not result.ok:
            message = "; ".join(
                [f"{g}: {e}" for g, e in result.failed.items()]
                + ([result.sync_error] if result.sync_error else [])
            )
        else:
            outcome.succeeded += 1
            continue

        await log.aerror(
            "expire.user_failed",
            user_uuid=user_uuid,
            group_names=by_user[user_uuid],
            error=message,
        )
        outcome.failed[str(user_uuid)] = message

    await log.ainfo(
        "expire.finished", succeeded=outcome.succeeded, failed=outcome.failed_count
    )

    return outcome


def notification_window(days: int, now: datetime) -> tuple[datetime, datetime]:
    """
    The whole UTC calendar day `days` days from `now`.
    """
    day = (now.astimezone(timezone.utc) + timedelta(days=days)).date()

    return (
        datetime.combine(day, time.min, tzinfo=timezone.utc),
        datetime.combine(day, time.max, tzinfo=timezone.utc),
    )


async def expiration_notification(
    first: bool,
    sender: NotificationSender,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    now: datetime | None = None,
) -> int:
    """
    Warn about memberships expiring in 14 days (`first`) or in 7 days. The
    warning goes to the host if they still hold a curator or admin role in
    the group, otherwise to all of the group's curators and admins. The
    second warning also goes to the member. Nothing is removed.

    Returns
    -------
    int
        The number of memberships warned about.
    """
    days = FIRST_NOTIFICATION_DAYS if first else SECOND_NOTIFICATION_DAYS
    host_kind = (
        TemplateKind.FIRST_HOST_EXPIRATION
        if first
        else TemplateKind.SECOND_HOST_EXPIRATION
    )

    lower, upper = notification_window(days=days, now=now or utcnow())
    log = log.bind(first=first, lower=lower, upper=upper)

    # (recipients, bcc, template) triples, sent once the session is closed.
    outgoing: list[tuple[list[str], bool, Template]] = []

    async with manager.session() as conn:
        memberships = await members_service.get_memberships_expire_between(
            lower=lower, upper=upper, conn=conn
        )

        for membership in memberships:
            group = await groups_service.read_by_id(
                group_id=membership.group_id, conn=conn, log=log
            )

            try:
                member = await user_service.read_by_uuid(
                    user_uuid=membership.user_uuid, conn=conn
                )
                username, member_email = member.username, member.email
            except user_service.UserNotFound:
                username, member_email = str(membership.user_uuid), None

            template = Template(kind=host_kind, group_name=group.name, username=username)

            host_role = await roles_service.role_for(
                user_uuid=membership.added_by, group_name=group.name, conn=conn
            )

            if host_role is not None and host_role.typ != RoleType.MEMBER:
                outgoing.append(
                    (
                        await user_service.get_emails(
                            user_uuids=[membership.added_by], conn=conn
                        ),
                        False,
                        template,
                    )
                )
            else:
                outgoing.append(
                    (
                        await roles_service.get_curator_emails(
                            group_id=group.group_id, conn=conn
                        ),
                        True,
                        template,
                    )
                )

            if not first:
                outgoing.append(
                    (
                        [member_email] if member_email else [],
                        False,
                        Template(
                            kind=TemplateKind.MEMBER_EXPIRATION,
                            group_name=group.name,
                            username=username,
                        ),
                    )
                )

    for recipients, bcc, template in outgoing:
        if bcc:
            await send_emails(
                addresses=recipients, template=template, sender=sender, log=log
            )
        else:
            await send_email(
                address=recipients[0] if recipients else None,
                template=template,
                sender=sender,
                log=log,
            )

    await log.ainfo("expire.notified", number_of_memberships=len(memberships))

    return len(memberships)


async def expire_invitations(
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    now: datetime | None = None,
) -> int:
    async with transaction(manager) as conn:
        return await requests_service.expire_invitations_before(
            before=now or utcnow(), conn=conn, log=log
        )


async def expire_requests(
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    now: datetime | None = None,
) -> int:
    async with transaction(manager) as conn:
        return await requests_service.expire_requests_before(
            before=now or utcnow(), conn=conn, log=log
        )


async def deactivate_empty_groups(
    manager: AsyncSessionManager, log: FilteringBoundLogger
) -> list[str]:
    """
    Mark groups left without any members inactive.
    """
    async with transaction(manager) as conn:
        return await groups_service.deactivate_empty_groups(conn=conn, log=log)

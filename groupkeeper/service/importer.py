"""
Bulk import of groups, their curators and their members from an older
directory. Records arrive already parsed.

Each curator and member is imported on its own: one that fails is logged
and reported, and the import carries on with the next one.
"""

from datetime import datetime
from functools import partial

from pydantic import BaseModel, Field
from sqlalchemy import update
from structlog.typing import FilteringBoundLogger

from groupkeeper.config.managers import AsyncSessionManager
from groupkeeper.core.errors import (
    Conflict,
    NotFound,
    StorageError,
    SyncError,
    UpstreamError,
)
from groupkeeper.core.models import BatchOutcome
from groupkeeper.core.time import as_utc, to_expiration_ts, utcnow
from groupkeeper.core.types import GroupType, TrustType
from groupkeeper.core.uuid import SYSTEM_USER_UUID
from groupkeeper.database.group import Group
from groupkeeper.database.members import Membership

from . import groups as groups_service
from . import lifecycle
from . import members as members_service
from . import roles as roles_service
from . import sync as sync_service
from . import user as user_service
from .identity import IdentityClient
from .transaction import PostCommitHooks, transaction

EXPIRATION_BUFFER_DAYS = 60

IMPORT_ERRORS = (NotFound, Conflict, StorageError, SyncError, UpstreamError)


class ImportGroup(BaseModel):
    name: str
    typ: str = "closed"
    description: str = ""
    website: str = ""
    wiki: str = ""
    # Membership expiration policy in days; zero for none.
    expiration: int = 0


class ImportCurator(BaseModel):
    user_id: str


class ImportMembership(BaseModel):
    user_id: str
    # Identifier of the inviting user; empty when unknown.
    host: str = ""
    expiration: int = 0
    updated_on: datetime
    date_joined: datetime


class GroupImport(BaseModel):
    group: ImportGroup
    curators: list[ImportCurator] = Field(default_factory=list)
    memberships: list[ImportMembership] = Field(default_factory=list)


class ImportOutcome(BaseModel):
    group_name: str
    curators: BatchOutcome
    members: BatchOutcome


def calc_expiration(
    days: int,
    updated: datetime,
    now: datetime | None = None,
    buffer: int = EXPIRATION_BUFFER_DAYS,
) -> int | None:
    """
    Remaining days of an imported membership that lasted `days` from its
    last update. Memberships that would expire (or have expired) within the
    buffer get the buffer instead, so nobody is dropped right after the
    import. Non-positive `days` means no expiration.
    """
    if days <= 0:
        return None

    remaining = days - ((now or utcnow()) - as_utc(updated)).days

    return remaining if remaining > buffer else buffer


def describe(group: ImportGroup) -> str:
    website, wiki = group.website, group.wiki

    if website and wiki and website != wiki:
        return (
            f"{group.description}\n\n**Website:** [{website}]({website})"
            f"\n\n**Wiki:** [{wiki}]({wiki})"
        )
    if website:
        return f"{group.description}\n\n**Website:** [{website}]({website})"
    if wiki:
        return f"{group.description}\n\n**Wiki:** [{wiki}]({wiki})"

    return group.description


async def import_group(
    group: ImportGroup, manager: AsyncSessionManager, log: FilteringBoundLogger
) -> str:
    """
    Create the group, owned by the system actor. Returns its name.
    """
    async with transaction(manager) as conn:
        created = await groups_service.create(
            group_name=group.name,
            host_uuid=SYSTEM_USER_UUID,
            conn=conn,
            log=log,
            description=describe(group),
            typ=GroupType.REVIEWED if group.typ == "by_request" else GroupType.CLOSED,
            trust=TrustType.NDAED,
            group_expiration=group.expiration if group.expiration > 0 else None,
        )
        return created.name


async def import_curators(
    group_name: str,
    curators: list[ImportCurator],
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
) -> BatchOutcome:
    """
    Make every curator an admin of the group.
    """
    outcome = BatchOutcome()

    for curator in curators:
        try:
            profile = await user_service.resolve_by_identifier(
                user_id=curator.user_id, identity=identity, manager=manager, log=log
            )
            await lifecycle.add_admin(
                group_name=group_name,
                host_uuid=SYSTEM_USER_UUID,
                member_uuid=profile.user_uuid,
                identity=identity,
                manager=manager,
                log=log,
            )
        except IMPORT_ERRORS as e:
            await log.awarning(
                "import.curator_failed",
                user_id=curator.user_id,
                group_name=group_name,
                error=str(e),
            )
            outcome.failed[curator.user_id] = str(e)
            continue

        outcome.succeeded += 1

    return outcome


async def import_member(
    group_name: str,
    member: ImportMembership,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    buffer: int = EXPIRATION_BUFFER_DAYS,
) -> None:
    """
    Import one membership. Someone who is already in the group (for example
    as a curator) only gets their join date backdated.
    """
    log = log.bind(group_name=group_name, user_id=member.user_id)

    profile = await user_service.resolve_by_identifier(
        user_id=member.user_id, identity=identity, manager=manager, log=log
    )

    host_uuid = SYSTEM_USER_UUID

    if member.host:
        host = await user_service.resolve_by_identifier(
            user_id=member.host, identity=identity, manager=manager, log=log
        )
        host_uuid = host.user_uuid

    days = calc_expiration(member.expiration, member.updated_on, buffer=buffer)

    hooks = PostCommitHooks(log=log)

    async with transaction(manager) as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )

        role = await roles_service.role_for(
            user_uuid=profile.user_uuid, group_name=group.name, conn=conn
        )

        if role is None:
            await members_service.add_to_group(
                group_name=group.name,
                host_uuid=host_uuid,
                member_uuid=profile.user_uuid,
                expiration=to_expiration_ts(days),
                conn=conn,
                log=log,
                comment="imported",
            )
            hooks.add(
                partial(
                    sync_service.add_group_to_profile,
                    user_uuid=profile.user_uuid,
                    group_name=group.name,
                    identity=identity,
                    log=log,
                )
            )

        await conn.execute(
            update(Membership)
            .where(Membership.group_id == group.group_id)
            .where(Membership.user_uuid == profile.user_uuid)
            .values(added_ts=as_utc(member.date_joined))
        )

    await hooks.run()

    await log.adebug("import.member_imported", existing=role is not None)


async def import_members(
    group_name: str,
    members: list[ImportMembership],
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    buffer: int = EXPIRATION_BUFFER_DAYS,
) -> BatchOutcome:
    """
    Import every membership, then backdate the group's creation to the
    earliest join date seen.
    """
    async with manager.session() as conn:
        group = await groups_service.read_by_name(
            group_name=group_name, conn=conn, log=log
        )
        group_id, created = group.group_id, group.created

    outcome = BatchOutcome()

    for member in members:
        created = min(created, as_utc(member.date_joined))

        try:
            await import_member(
                group_name=group_name,
                member=member,
                identity=identity,
                manager=manager,
                log=log,
                buffer=buffer,
            )
        except IMPORT_ERRORS as e:
            await log.awarning(
                "import.member_failed",
                user_id=member.user_id,
                group_name=group_name,
                error=str(e),
            )
            outcome.failed[member.user_id] = str(e)
            continue

        outcome.succeeded += 1

    async with transaction(manager) as conn:
        await conn.execute(
            update(Group).where(Group.group_id == group_id).values(created=created)
        )

    return outcome


async def run_import(
    group_import: GroupImport,
    identity: IdentityClient,
    manager: AsyncSessionManager,
    log: FilteringBoundLogger,
    buffer: int = EXPIRATION_BUFFER_DAYS,
) -> ImportOutcome:
    """
    Import one group with its curators and members.

    Raises
    ------
    GroupExistsError
        If the group already exists. Nothing is imported.
    """
    log = log.bind(group_name=group_import.group.name)

    group_name = await import_group(group=group_import.group, manager=manager, log=log)

    curators = await import_curators(
        group_name=group_name,
        curators=group_import.curators,
        identity=identity,
        manager=manager,
        log=log,
    )
    members = await import_members(
        group_name=group_name,
        members=group_import.memberships,
        identity=identity,
        manager=manager,
        log=log,
        buffer=buffer,
    )

    await log.ainfo(
        "import.finished",
        curators_imported=curators.succeeded,
        curators_failed=curators.failed_count,
        members_imported=members.succeeded,
        members_failed=members.failed_count,
    )

    return ImportOutcome(group_name=group_name, curators=curators, members=members)

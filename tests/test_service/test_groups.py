"""
Tests for the group and role services.
"""

import pytest
from sqlalchemy import select

from groupkeeper.core.types import LogOperationType, LogTargetType, RoleType
from groupkeeper.core.uuid import SYSTEM_USER_UUID
from groupkeeper.database.group import Role
from groupkeeper.service import groups as groups_service
from groupkeeper.service import lifecycle
from groupkeeper.service import logs as logs_service
from groupkeeper.service import roles as roles_service
from groupkeeper.service.expirations import deactivate_empty_groups



@pytest.mark.asyncio(loop_scope="session")
async def test_create_group(group, admin, identity, session_manager):
    assert group.active
    assert group.group_expiration == 365

    async with session_manager.session() as conn:
        await roles_service.check_role_invariant(group_id=group.group_id, conn=conn)

        role = await roles_service.role_for(
            user_uuid=admin.user_uuid, group_name=group.name, conn=conn
        )
        assert role.typ == RoleType.ADMIN

        entries = await logs_service.logs_for_group(group_id=group.group_id, conn=conn)

    assert [(e.target, e.operation) for e in entries] == [
        (LogTargetType.GROUP, LogOperationType.CREATED),
        (LogTargetType.ROLE, LogOperationType.CREATED),
        (LogTargetType.ROLE, LogOperationType.CREATED),
        (LogTargetType.MEMBERSHIP, LogOperationType.CREATED),
    ]

    assert group.name in identity.groups_of(admin.user_uuid)


@pytest.mark.asyncio(loop_scope="session")
async def test_create_group_normalizes_name(
    admin,
    identity,
    session_manager,
    logger,
    unique,
):
    name = unique("Spaced Name")

    group = await lifecycle.create_group(
        group_name=f"  {name} ",
        host_uuid=admin.user_uuid,
        identity=identity,
        manager=session_manager,
        log=logger,
    )

    assert group.name == name.lower().replace(" ", "_")


@pytest.mark.asyncio(loop_scope="session")
async def test_create_existing_group(group, admin, identity, session_manager, logger):
    with pytest.raises(groups_service.GroupExistsError):
        await lifecycle.create_group(
            group_name=group.name,
            host_uuid=admin.user_uuid,
            identity=identity,
            manager=session_manager,
            log=logger,
        )


@pytest.mark.asyncio(loop_scope="session")
async def test_singleton_roles(group, admin, session_manager, logger):
    async with session_manager.session() as conn:
        async with conn.begin():
            with pytest.raises(roles_service.RoleInvariantViolation):
                await roles_service.add_member_role(
                    group_id=group.group_id,
                    host_uuid=admin.user_uuid,
                    conn=conn,
                    log=logger,
                )

    # Curator roles are not limited.
    async with session_manager.session() as conn:
        async with conn.begin():
            for name in ["curator", "moderator"]:
                await roles_service.add_role(
                    group_id=group.group_id,
                    typ=RoleType.CURATOR,
                    name=name,
                    host_uuid=admin.user_uuid,
                    conn=conn,
                    log=logger,
                )

    async with session_manager.session() as conn:
        await roles_service.check_role_invariant(group_id=group.group_id, conn=conn)

        result = await conn.execute(
            select(Role).where(Role.group_id == group.group_id)
        )
        assert len(result.scalars().all()) == 4


@pytest.mark.asyncio(loop_scope="session")
async def test_read_missing_group(session_manager, logger, unique):
    async with session_manager.session() as conn:
        with pytest.raises(groups_service.GroupNotFound):
            await groups_service.read_by_name(
                group_name=unique("missing"), conn=conn, log=logger
            )

        with pytest.raises(groups_service.GroupNotFound):
            await groups_service.read_by_id(group_id=-1, conn=conn, log=logger)


@pytest.mark.asyncio(loop_scope="session")
async def test_reserve_and_delete_inactive(session_manager, logger, unique):
    name = unique("reserved")

    async with session_manager.session() as conn:
        async with conn.begin():
            reserved = await groups_service.reserve_group(
                group_name=name, conn=conn, log=logger
            )

    assert not reserved.active

    async with session_manager.session() as conn:
        async with conn.begin():
            with pytest.raises(groups_service.GroupExistsError):
                await groups_service.reserve_group(
                    group_name=name, conn=conn, log=logger
                )

    async with session_manager.session() as conn:
        # Reserved groups are owned by nobody.
        assert await roles_service.count_role_holders(
            group_id=reserved.group_id, typ=RoleType.ADMIN, conn=conn
        ) == 0

        inactive = await groups_service.list_inactive_groups(
            conn=conn, log=logger, limit=1000
        )
        assert name in [g.name for g in inactive.items]

    async with session_manager.session() as conn:
        async with conn.begin():
            await groups_service.delete_inactive_group(
                group_name=name, host_uuid=SYSTEM_USER_UUID, conn=conn, log=logger
            )

    async with session_manager.session() as conn:
        with pytest.raises(groups_service.GroupNotFound):
            await groups_service.read_by_name(group_name=name, conn=conn, log=logger)

        # The audit trail outlives the group.
        entries = await logs_service.logs_for_group(
            group_id=reserved.group_id, conn=conn
        )
        assert entries[-1].target == LogTargetType.GROUP
        assert entries[-1].operation == LogOperationType.DELETED


@pytest.mark.asyncio(loop_scope="session")
async def test_delete_active_group_as_inactive(group, admin, session_manager, logger):
    async with session_manager.session() as conn:
        async with conn.begin():
            with pytest.raises(groups_service.GroupStillActive):
                await groups_service.delete_inactive_group(
                    group_name=group.name,
                    host_uuid=admin.user_uuid,
                    conn=conn,
                    log=logger,
                )


@pytest.mark.asyncio(loop_scope="session")
async def test_deactivate_empty_groups(group, session_manager, logger, unique):
    name = unique("empty")

    async with session_manager.session() as conn:
        async with conn.begin():
            await groups_service.create(
                group_name=name, host_uuid=SYSTEM_USER_UUID, conn=conn, log=logger
            )

    deactivated = await deactivate_empty_groups(manager=session_manager, log=logger)

    assert name in deactivated
    assert group.name not in deactivated

    async with session_manager.session() as conn:
        empty = await groups_service.read_by_name(
            group_name=name, conn=conn, log=logger
        )
        assert not empty.active

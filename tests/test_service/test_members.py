"""
Tests for the membership store.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from groupkeeper.core.time import utcnow
from groupkeeper.core.types import LogOperationType, RoleType, TrustType
from groupkeeper.database.members import Membership
from groupkeeper.service import lifecycle
from groupkeeper.service import logs as logs_service
from groupkeeper.service import members as members_service
from groupkeeper.service import roles as roles_service



@pytest.mark.asyncio(loop_scope="session")
async def test_add_is_idempotent(group, admin, make_user, session_manager, logger):
    member = make_user()
    first = utcnow() + timedelta(days=10)
    second = utcnow() + timedelta(days=20)

    for expiration in [first, second]:
        async with session_manager.session() as conn:
            async with conn.begin():
                await members_service.add_to_group(
                    group_name=group.name,
                    host_uuid=admin.user_uuid,
                    member_uuid=member.user_uuid,
                    expiration=expiration,
                    conn=conn,
                    log=logger,
                )

    async with session_manager.session() as conn:
        result = await conn.execute(
            select(func.count())
            .select_from(Membership)
            .where(Membership.group_id == group.group_id)
            .where(Membership.user_uuid == member.user_uuid)
        )
        assert result.scalar_one() == 1

        membership = await members_service.get_membership(
            group_name=group.name, user_uuid=member.user_uuid, conn=conn
        )
        assert membership.expiration == second

        # Both additions are in the audit log.
        entries = await logs_service.logs_for_group(
            group_id=group.group_id, conn=conn, user_uuid=member.user_uuid
        )
        assert [e.operation for e in entries] == [LogOperationType.CREATED] * 2


@pytest.mark.asyncio(loop_scope="session")
async def test_add_with_foreign_role(
    group,
    admin,
    make_user,
    identity,
    session_manager,
    logger,
    unique,
):
    other = await lifecycle.create_group(
        group_name=unique("other"),
        host_uuid=admin.user_uuid,
        identity=identity,
        manager=session_manager,
        log=logger,
    )
    member = make_user()

    async with session_manager.session() as conn:
        foreign = await roles_service.member_role(group_name=other.name, conn=conn)

    async with session_manager.session() as conn:
        async with conn.begin():
            with pytest.raises(roles_service.RoleInvariantViolation):
                await members_service.add_to_group(
                    group_name=group.name,
                    host_uuid=admin.user_uuid,
                    member_uuid=member.user_uuid,
                    expiration=None,
                    conn=conn,
                    log=logger,
                    role=foreign,
                )

    async with session_manager.session() as conn:
        with pytest.raises(members_service.MembershipNotFound):
            await members_service.get_membership(
                group_name=group.name, user_uuid=member.user_uuid, conn=conn
            )


@pytest.mark.asyncio(loop_scope="session")
async def test_remove_missing_membership(
    group,
    admin,
    make_user,
    session_manager,
    logger,
):
    member = make_user()

    async with session_manager.session() as conn:
        async with conn.begin():
            removed = await members_service.remove_from_group(
                host_uuid=admin.user_uuid,
                user_uuid=member.user_uuid,
                group_name=group.name,
                conn=conn,
                log=logger,
            )

    assert not removed

    async with session_manager.session() as conn:
        entries = await logs_service.logs_for_group(
            group_id=group.group_id, conn=conn, user_uuid=member.user_uuid
        )
        assert entries == []


@pytest.mark.asyncio(loop_scope="session")
async def test_expiry_queries(group, admin, make_user, session_manager, logger):
    now = utcnow()
    soon, later = make_user(), make_user()

    async with session_manager.session() as conn:
        async with conn.begin():
            for member, days in [(soon, 3), (later, 30)]:
                await members_service.add_to_group(
                    group_name=group.name,
                    host_uuid=admin.user_uuid,
                    member_uuid=member.user_uuid,
                    expiration=now + timedelta(days=days),
                    conn=conn,
                    log=logger,
                )

    async with session_manager.session() as conn:
        expired = await members_service.get_memberships_expired_before(
            before=now + timedelta(days=3), conn=conn
        )
        expired = {m.user_uuid for m in expired if m.group_id == group.group_id}
        assert expired == {soon.user_uuid}

        between = await members_service.get_memberships_expire_between(
            lower=now + timedelta(days=29), upper=now + timedelta(days=31), conn=conn
        )
        between = {m.user_uuid for m in between if m.group_id == group.group_id}
        assert between == {later.user_uuid}

        others = await members_service.get_members_not_current(
            group_name=group.name, current_uuid=admin.user_uuid, conn=conn, log=logger
        )
        assert set(others) == {soon.user_uuid, later.user_uuid}


@pytest.mark.asyncio(loop_scope="session")
async def test_members_and_host(
    group,
    admin,
    make_user,
    identity,
    session_manager,
    logger,
    unique,
):
    alice = make_user(username=unique("alice"))
    bob = make_user(username=unique("bob"))

    for member in [alice, bob]:
        await lifecycle.add(
            group_name=group.name,
            host_uuid=admin.user_uuid,
            member_uuid=member.user_uuid,
            identity=identity,
            manager=session_manager,
            log=logger,
        )

    async with session_manager.session() as conn:
        everyone = await members_service.members_and_host(
            group_name=group.name, scope=TrustType.STAFF, conn=conn, log=logger
        )

        assert [m.role for m in everyone.items] == [
            RoleType.ADMIN,
            RoleType.MEMBER,
            RoleType.MEMBER,
        ]
        assert everyone.items[0].is_staff
        assert everyone.items[1].username == alice.username
        assert everyone.items[1].email == alice.email
        assert everyone.items[1].host.username == admin.username
        assert everyone.next == 3

        public = await members_service.members_and_host(
            group_name=group.name, scope=TrustType.PUBLIC, conn=conn, log=logger
        )

        assert public.items[1].username == alice.username
        assert public.items[1].first_name is None
        assert public.items[1].email is None
        assert public.items[1].host.email is None

        vouched = await members_service.members_and_host(
            group_name=group.name, scope=TrustType.VOUCHED, conn=conn, log=logger
        )

        assert vouched.items[1].first_name == alice.first_name
        assert vouched.items[1].email is None

        searched = await members_service.members_and_host(
            group_name=group.name,
            scope=TrustType.STAFF,
            conn=conn,
            log=logger,
            query=bob.username[:6].upper(),
        )

        assert [m.user_uuid for m in searched.items] == [bob.user_uuid]

        admins = await members_service.members_and_host(
            group_name=group.name,
            scope=TrustType.STAFF,
            conn=conn,
            log=logger,
            roles=[RoleType.ADMIN],
        )

        assert [m.user_uuid for m in admins.items] == [admin.user_uuid]

        page = await members_service.members_and_host(
            group_name=group.name,
            scope=TrustType.STAFF,
            conn=conn,
            log=logger,
            limit=2,
            offset=2,
        )

        assert [m.user_uuid for m in page.items] == [bob.user_uuid]
        assert page.next == 3

        empty = await members_service.members_and_host(
            group_name=group.name,
            scope=TrustType.STAFF,
            conn=conn,
            log=logger,
            offset=3,
        )

        assert empty.items == []
        assert empty.next is None

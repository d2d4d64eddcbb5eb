"""
Tests for reconciliation with the identity service, and for the post-commit
hooks that push changes to it.
"""

import pytest
from sqlalchemy import text

from groupkeeper.core.errors import StorageError, SyncError
from groupkeeper.service import lifecycle
from groupkeeper.service import sync as sync_service
from groupkeeper.service.transaction import PostCommitHooks, transaction


async def add_member(group, admin, member, identity, session_manager, logger):
    await lifecycle.add(
        group_name=group.name,
        host_uuid=admin.user_uuid,
        member_uuid=member.user_uuid,
        identity=identity,
        manager=session_manager,
        log=logger,
    )


@pytest.mark.asyncio(loop_scope="session")
async def test_send_groups_to_profile(
    group, admin, make_user, identity, session_manager, logger
):
    member = make_user(groups={"stale"})

    await add_member(group, admin, member, identity, session_manager, logger)
    assert identity.groups_of(member.user_uuid) == {"stale", group.name}

    sent = await sync_service.send_groups_to_profile(
        user_uuid=member.user_uuid,
        identity=identity,
        manager=session_manager,
        log=logger,
    )

    assert sent == {group.name}
    assert identity.groups_of(member.user_uuid) == {group.name}

    identity.failing.add(member.user_uuid)

    with pytest.raises(SyncError):
        await sync_service.send_groups_to_profile(
            user_uuid=member.user_uuid,
            identity=identity,
            manager=session_manager,
            log=logger,
        )


@pytest.mark.asyncio(loop_scope="session")
async def test_consolidate(
    group, admin, make_user, identity, session_manager, logger, unique
):
    member, in_sync = make_user(), make_user()

    for user in [member, in_sync]:
        await add_member(group, admin, user, identity, session_manager, logger)

    stale = unique("stale")
    identity.profiles[member.user_uuid].groups = {stale}

    dry = await sync_service.consolidate(
        identity=identity, manager=session_manager, log=logger, dry_run=True
    )

    assert dry.dry_run
    assert dry.updated == 0

    diffs = {d.user_uuid: d for d in dry.diffs}
    assert diffs[member.user_uuid].missing_remote == [group.name]
    assert diffs[member.user_uuid].extra_remote == [stale]
    assert in_sync.user_uuid not in diffs
    assert admin.user_uuid not in diffs

    # Nothing is pushed in a dry run.
    assert identity.groups_of(member.user_uuid) == {stale}

    live = await sync_service.consolidate(
        identity=identity, manager=session_manager, log=logger, dry_run=False
    )

    assert not live.dry_run
    assert live.updated >= 1
    assert str(member.user_uuid) not in live.failed
    assert identity.groups_of(member.user_uuid) == {group.name}

    again = await sync_service.consolidate(
        identity=identity, manager=session_manager, log=logger, dry_run=True
    )

    assert member.user_uuid not in {d.user_uuid for d in again.diffs}


@pytest.mark.asyncio(loop_scope="session")
async def test_consolidate_isolates_failures(
    group, admin, make_user, identity, session_manager, logger
):
    failing, healthy = make_user(), make_user()

    for user in [failing, healthy]:
        await add_member(group, admin, user, identity, session_manager, logger)

    for user in [failing, healthy]:
        identity.profiles[user.user_uuid].groups = set()

    identity.failing.add(failing.user_uuid)

    report = await sync_service.consolidate(
        identity=identity, manager=session_manager, log=logger, dry_run=False
    )

    assert str(failing.user_uuid) in report.failed
    assert str(healthy.user_uuid) not in report.failed
    assert identity.groups_of(healthy.user_uuid) == {group.name}
    assert identity.groups_of(failing.user_uuid) == set()


@pytest.mark.asyncio(loop_scope="session")
async def test_hooks_run_after_failure(logger):
    calls = []

    async def fail(n):
        calls.append(n)
        raise SyncError(f"hook {n} failed")

    async def succeed():
        calls.append("ok")

    hooks = PostCommitHooks(log=logger)
    hooks.add(lambda: fail(1))
    hooks.add(succeed)
    hooks.add(lambda: fail(2))

    assert len(hooks) == 3

    with pytest.raises(SyncError, match="hook 1 failed"):
        await hooks.run()

    assert calls == [1, "ok", 2]
    assert len(hooks) == 0


@pytest.mark.asyncio(loop_scope="session")
async def test_transaction_storage_error(session_manager):
    with pytest.raises(StorageError):
        async with transaction(session_manager) as conn:
            await conn.execute(text("SELECT * FROM no_such_table"))

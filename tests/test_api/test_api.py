"""
Tests for the HTTP API.
"""

import pytest

from groupkeeper.core.types import GroupType, TrustType
from groupkeeper.core.uuid import uuid7
from groupkeeper.service import lifecycle
from groupkeeper.service import requests as requests_service
from groupkeeper.service.transaction import transaction


@pytest.mark.asyncio(loop_scope="session")
async def test_missing_scope(client, group):
    response = await client.get(f"/members/{group.name}")
    assert response.status_code == 401

    response = await client.get(f"/members/{group.name}", headers={"sau": "{}"})
    assert response.status_code == 401


@pytest.mark.asyncio(loop_scope="session")
async def test_sudo_requires_admin_scope(client, group, admin, scope_header):
    response = await client.get(
        "/sudo/user/staff", headers=scope_header(admin, groups_scope=None)
    )
    assert response.status_code == 403

    response = await client.get(
        "/sudo/user/staff", headers=scope_header(admin, scope="ndaed")
    )
    assert response.status_code == 403

    response = await client.get("/sudo/user/staff", headers=scope_header(admin))
    assert response.status_code == 200
    assert str(admin.user_uuid) in response.json()


@pytest.mark.asyncio(loop_scope="session")
async def test_add_and_list_members(
    client, group, admin, make_user, identity, scope_header
):
    member = make_user()

    response = await client.post(
        f"/sudo/member/{group.name}",
        json={"user_uuid": str(member.user_uuid), "group_expiration": 30},
        headers=scope_header(admin),
    )

    assert response.status_code == 200
    assert response.json()["user_uuid"] == str(member.user_uuid)
    assert response.json()["added_by"] == str(admin.user_uuid)
    assert group.name in identity.groups_of(member.user_uuid)

    response = await client.get(
        f"/members/{group.name}", headers=scope_header(admin, groups_scope=None)
    )

    assert response.status_code == 200
    items = response.json()["items"]
    assert [x["role"] for x in items] == ["admin", "member"]
    assert items[1]["email"] == member.email

    response = await client.get(
        f"/members/{group.name}",
        params={"r": "member"},
        headers=scope_header(member, scope=TrustType.PUBLIC.value, groups_scope=None),
    )

    assert response.status_code == 200
    (item,) = response.json()["items"]
    assert item["username"] == member.username
    assert item["email"] is None
    assert item["first_name"] is None


@pytest.mark.asyncio(loop_scope="session")
async def test_not_found(client, group, admin, unique, scope_header):
    response = await client.post(
        f"/sudo/member/{unique('missing')}",
        json={"user_uuid": str(admin.user_uuid)},
        headers=scope_header(admin),
    )

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"

    response = await client.post(
        f"/sudo/member/{group.name}",
        json={"user_uuid": str(uuid7())},
        headers=scope_header(admin),
    )

    assert response.status_code == 404


@pytest.mark.asyncio(loop_scope="session")
async def test_last_admin_conflict(client, group, admin, scope_header):
    response = await client.delete(
        f"/sudo/member/{group.name}/{admin.user_uuid}", headers=scope_header(admin)
    )

    assert response.status_code == 409
    assert response.json()["error"] == "conflict"


@pytest.mark.asyncio(loop_scope="session")
async def test_sync_failure(client, group, admin, make_user, identity, scope_header):
    member = make_user()
    identity.failing.add(member.user_uuid)

    response = await client.post(
        f"/sudo/member/{group.name}",
        json={"user_uuid": str(member.user_uuid)},
        headers=scope_header(admin),
    )

    assert response.status_code == 502
    assert response.json()["error"] == "sync_failed"
    assert "committed" in response.json()["message"]

    # The membership was committed regardless.
    response = await client.get(
        f"/members/{group.name}", headers=scope_header(admin, groups_scope=None)
    )

    assert str(member.user_uuid) in [x["user_uuid"] for x in response.json()["items"]]


@pytest.mark.asyncio(loop_scope="session")
async def test_transfer_incomplete(
    client, group, admin, make_user, identity, scope_header
):
    old, new = make_user(), make_user()

    response = await client.post(
        f"/sudo/member/{group.name}",
        json={"user_uuid": str(old.user_uuid)},
        headers=scope_header(admin),
    )
    assert response.status_code == 200

    identity.failing.add(new.user_uuid)

    response = await client.post(
        "/sudo/transfer",
        json={
            "group_name": group.name,
            "old_user_uuid": str(old.user_uuid),
            "new_user_uuid": str(new.user_uuid),
        },
        headers=scope_header(admin),
    )

    assert response.status_code == 500
    assert response.json()["error"] == "transfer_incomplete"


@pytest.mark.asyncio(loop_scope="session")
async def test_change_trust(client, group, admin, make_user, scope_header):
    low = make_user(trust=TrustType.AUTHENTICATED)

    await client.post(
        f"/sudo/member/{group.name}",
        json={"user_uuid": str(low.user_uuid)},
        headers=scope_header(admin),
    )

    response = await client.post(
        f"/sudo/trust/{group.name}",
        json={"trust": "staff"},
        headers=scope_header(admin),
    )

    assert response.status_code == 200
    assert response.json()["succeeded"] == 1

    response = await client.get(
        f"/sudo/curators/{group.name}", headers=scope_header(admin)
    )

    assert response.json() == [admin.email]


@pytest.mark.asyncio(loop_scope="session")
async def test_requests(
    client, admin, make_user, identity, session_manager, logger, unique, scope_header
):
    applicant, outsider = make_user(), make_user()

    reviewed = await lifecycle.create_group(
        group_name=unique("reviewed"),
        host_uuid=admin.user_uuid,
        identity=identity,
        manager=session_manager,
        log=logger,
        typ=GroupType.REVIEWED,
    )

    async with transaction(session_manager) as conn:
        await requests_service.create_request(
            group_name=reviewed.name,
            user_uuid=applicant.user_uuid,
            conn=conn,
            log=logger,
        )

    response = await client.get(
        f"/requests/{reviewed.name}", headers=scope_header(outsider, groups_scope=None)
    )
    assert response.status_code == 403

    curator = scope_header(admin, scope="ndaed", groups_scope=None)

    response = await client.get(f"/requests/{reviewed.name}", headers=curator)
    assert response.status_code == 200
    assert [x["user_uuid"] for x in response.json()["items"]] == [
        str(applicant.user_uuid)
    ]

    response = await client.post(
        f"/requests/{reviewed.name}/{applicant.user_uuid}/accept",
        json={"group_expiration": 10},
        headers=curator,
    )
    assert response.status_code == 200
    assert reviewed.name in identity.groups_of(applicant.user_uuid)

    response = await client.delete(
        f"/requests/{reviewed.name}/{applicant.user_uuid}", headers=curator
    )
    assert response.status_code == 404


@pytest.mark.asyncio(loop_scope="session")
async def test_consolidate_and_logs(client, group, admin, scope_header):
    response = await client.post("/sudo/consolidate", headers=scope_header(admin))

    assert response.status_code == 200
    assert response.json()["dry_run"]

    response = await client.get(
        "/sudo/logs/all/raw", params={"limit": 5}, headers=scope_header(admin)
    )

    assert response.status_code == 200
    assert len(response.json()["items"]) == 5
    assert response.json()["next"] == 5

"""
Tests for the HTTP clients of the identity and notification services.
"""

import json

import httpx
import pytest

from groupkeeper.core.errors import SyncError, UpstreamError
from groupkeeper.core.user import RemoteProfile
from groupkeeper.core.uuid import uuid7
from groupkeeper.service import lifecycle
from groupkeeper.service import members as members_service
from groupkeeper.service import user as user_service
from groupkeeper.service.identity import HttpIdentityClient, IdentityNotFound
from groupkeeper.service.notify import (
    HttpNotificationSender,
    NotificationError,
    Template,
    TemplateKind,
    send_email,
)


def with_transport(client, handler, base_url):
    client.client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url=base_url
    )
    return client


@pytest.mark.asyncio(loop_scope="session")
async def test_identity_client():
    profile = RemoteProfile(
        user_uuid=uuid7(), user_id="ad|example|x", username="x", groups={"a"}
    )
    pushed = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            pushed.append(RemoteProfile.model_validate_json(request.content))
            return httpx.Response(200)
        if request.url.path == f"/v2/user/uuid/{profile.user_uuid}":
            return httpx.Response(200, json=profile.model_dump(mode="json"))
        if request.url.path == "/v2/user/uuid/broken":
            return httpx.Response(503)
        return httpx.Response(404)

    client = with_transport(
        HttpIdentityClient(base_url="http://identity"), handler, "http://identity"
    )

    fetched = await client.get_user_by_uuid(profile.user_uuid)
    assert fetched == profile

    with pytest.raises(IdentityNotFound):
        await client.get_user_by_identifier("ad|example|nobody")

    with pytest.raises(UpstreamError):
        await client.get_user_by_uuid("broken")

    await client.update_user(fetched)
    assert pushed == [profile]

    await client.aclose()


@pytest.mark.asyncio(loop_scope="session")
async def test_notification_sender(logger):
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(202)

    sender = with_transport(
        HttpNotificationSender(base_url="http://mail", from_address="groups@x"),
        handler,
        "http://mail",
    )

    template = Template(kind=TemplateKind.GROUP_DELETED, group_name="g")

    await sender.send_emails(["a@x", "b@x"], template)

    (request,) = received
    assert request.url.path == "/send"
    assert json.loads(request.content)["bcc"] == ["a@x", "b@x"]

    await sender.aclose()


@pytest.mark.asyncio(loop_scope="session")
async def test_notification_failure_is_logged(logger):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    sender = with_transport(
        HttpNotificationSender(base_url="http://mail", from_address="groups@x"),
        handler,
        "http://mail",
    )

    template = Template(kind=TemplateKind.MEMBER_REMOVED, group_name="g")

    with pytest.raises(NotificationError):
        await sender.send_email("a@x", template)

    # The fire-and-forget wrapper never raises.
    await send_email(address="a@x", template=template, sender=sender, log=logger)

    await sender.aclose()


@pytest.mark.asyncio(loop_scope="session")
async def test_malformed_profile(
    group, admin, make_user, identity, session_manager, logger
):
    member = make_user()

    # Cached up front, so only the sync after the commit sees the bad reply.
    await user_service.resolve(
        user_uuid=member.user_uuid,
        identity=identity,
        manager=session_manager,
        log=logger,
    )

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/missing-field"):
            return httpx.Response(200, json={"username": "x"})
        return httpx.Response(200, text="<html>oops</html>")

    client = with_transport(
        HttpIdentityClient(base_url="http://identity"), handler, "http://identity"
    )

    with pytest.raises(UpstreamError):
        await client.get_user_by_uuid(member.user_uuid)

    with pytest.raises(UpstreamError):
        await client.get_user_by_identifier("missing-field")

    with pytest.raises(SyncError):
        await lifecycle.add(
            group_name=group.name,
            host_uuid=admin.user_uuid,
            member_uuid=member.user_uuid,
            identity=client,
            manager=session_manager,
            log=logger,
        )

    async with session_manager.session() as conn:
        membership = await members_service.get_membership(
            group_name=group.name, user_uuid=member.user_uuid, conn=conn
        )

    assert membership.user_uuid == member.user_uuid

    await client.aclose()

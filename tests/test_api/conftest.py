"""
Fixtures for the API tests. The app runs in-process against the test
database, with the mock identity service and notification sender.
"""

import json

import httpx
import pytest_asyncio

from groupkeeper.api.app import app
from groupkeeper.api.dependencies import get_identity, get_manager, get_sender


@pytest_asyncio.fixture(loop_scope="session")
async def client(session_manager, identity, sender):
    app.dependency_overrides[get_manager] = lambda: session_manager
    app.dependency_overrides[get_identity] = lambda: identity
    app.dependency_overrides[get_sender] = lambda: sender

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="session")
def scope_header():
    """
    The header the authenticating gateway would set for `user`.
    """

    def make(user, scope: str = "staff", groups_scope: str | None = "admin"):
        return {
            "sau": json.dumps(
                {"user_id": user.user_id, "scope": scope, "groups_scope": groups_scope}
            )
        }

    yield make

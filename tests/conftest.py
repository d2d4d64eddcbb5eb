"""
Core configuration. Tests run against a SQLite file by default; set
GROUPKEEPER_TEST_DATABASE=postgres to run them against a Postgres container.
"""

import os

import pytest_asyncio
import structlog

from groupkeeper.config.settings import Settings
from groupkeeper.core.types import TrustType
from groupkeeper.core.user import RemoteProfile
from groupkeeper.core.uuid import uuid7
from groupkeeper.service import lifecycle
from groupkeeper.service.mock import MockIdentityClient, MockNotificationSender


@pytest_asyncio.fixture(scope="session")
def database_config(tmp_path_factory):
    if os.environ.get("GROUPKEEPER_TEST_DATABASE") == "postgres":
        from testcontainers.postgres import PostgresContainer

        with PostgresContainer() as container:
            yield {
                "database_type": "postgres",
                "database_user": container.username,
                "database_password": container.password,
                "database_port": container.get_exposed_port(container.port),
                "database_host": "localhost",
                "database_db": container.dbname,
                "database_echo": False,
            }
    else:
        yield {
            "database_type": "sqlite",
            "database_db": str(tmp_path_factory.mktemp("database") / "groupkeeper.db"),
            "database_echo": False,
        }


@pytest_asyncio.fixture(scope="session")
def server_settings(database_config):
    yield Settings(**database_config)


@pytest_asyncio.fixture(scope="session")
def database(server_settings: Settings):
    manager = server_settings.sync_manager()
    manager.create_all()

    yield

    manager.drop_all()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def session_manager(server_settings: Settings, database):
    manager = server_settings.async_manager()

    yield manager

    await manager.dispose()


@pytest_asyncio.fixture(scope="session")
def logger():
    yield structlog.get_logger()


@pytest_asyncio.fixture(scope="session")
def unique():
    """
    Build names that no other test uses. The tail of a uuid7 is random; its
    head is a timestamp.
    """

    def make(prefix: str) -> str:
        return f"{prefix}_{uuid7().hex[-12:]}"

    yield make


@pytest_asyncio.fixture
def identity():
    yield MockIdentityClient()


@pytest_asyncio.fixture
def sender():
    yield MockNotificationSender()


@pytest_asyncio.fixture
def make_user(identity, unique):
    """
    Register a new user with the mock identity service.
    """

    def make(
        username: str | None = None,
        trust: TrustType = TrustType.NDAED,
        groups: set[str] | None = None,
    ) -> RemoteProfile:
        username = username or unique("user")

        return identity.add(
            RemoteProfile(
                user_uuid=uuid7(),
                user_id=f"ad|example|{username}",
                username=username,
                first_name=username.capitalize(),
                last_name="Tester",
                email=f"{username}@example.com",
                trust=trust,
                groups=groups or set(),
            )
        )

    yield make


@pytest_asyncio.fixture
def admin(make_user):
    yield make_user(trust=TrustType.STAFF)


@pytest_asyncio.fixture(loop_scope="session")
async def group(admin, identity, session_manager, logger, unique):
    """
    A fresh group with `admin` as its only admin.
    """
    yield await lifecycle.create_group(
        group_name=unique("group"),
        host_uuid=admin.user_uuid,
        identity=identity,
        manager=session_manager,
        log=logger,
        group_expiration=365,
    )

"""
Main settings object.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import URL

from groupkeeper.service.identity import HttpIdentityClient
from groupkeeper.service.notify import HttpNotificationSender

from .managers import AsyncSessionManager, SyncSessionManager


class Settings(BaseSettings):
    database_type: Literal["sqlite", "postgres"] = "sqlite"
    database_user: str | None = None
    database_password: str | None = None
    database_port: int | None = None
    database_host: str | None = None
    database_db: str = "groupkeeper.db"

    database_echo: bool = False

    # Identity/profile service. The timeout is enforced by the client and
    # surfaces as an UpstreamError (SyncError after a local commit).
    identity_service_url: str = "http://localhost:8085"
    identity_service_token: str | None = None
    identity_service_timeout: float = 10.0

    notification_service_url: str = "http://localhost:8086"
    notification_from_address: str = "groups@localhost"

    default_page_size: int = 20
    import_expiration_buffer_days: int = 60

    model_config = SettingsConfigDict(env_prefix="GROUPKEEPER_", env_file=".env")

    @property
    def sync_driver(self) -> str:
        match self.database_type:
            case "sqlite":
                return "sqlite"
            case "postgres":
                return "postgresql+psycopg"
            case _:
                raise ValueError

    @property
    def async_driver(self) -> str:
        match self.database_type:
            case "sqlite":
                return "sqlite+aiosqlite"
            case "postgres":
                return "postgresql+asyncpg"
            case _:
                raise ValueError

    @property
    def sync_uri(self) -> URL:
        return URL.create(
            drivername=self.sync_driver,
            username=self.database_user,
            password=self.database_password,
            host=self.database_host,
            port=self.database_port,
            database=self.database_db,
        )

    def sync_manager(self) -> SyncSessionManager:
        return SyncSessionManager(connection_url=self.sync_uri, echo=self.database_echo)

    @property
    def async_uri(self) -> URL:
        return URL.create(
            drivername=self.async_driver,
            username=self.database_user,
            password=self.database_password,
            host=self.database_host,
            port=self.database_port,
            database=self.database_db,
        )

    def async_manager(self) -> AsyncSessionManager:
        return AsyncSessionManager(
            connection_url=self.async_uri, echo=self.database_echo
        )

    def identity_client(self) -> HttpIdentityClient:
        return HttpIdentityClient(
            base_url=self.identity_service_url,
            token=self.identity_service_token,
            timeout=self.identity_service_timeout,
        )

    def notification_sender(self) -> HttpNotificationSender:
        return HttpNotificationSender(
            base_url=self.notification_service_url,
            from_address=self.notification_from_address,
        )

"""
Dependencies used by the API.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger
from structlog.typing import FilteringBoundLogger

from groupkeeper.config.managers import AsyncSessionManager
from groupkeeper.config.settings import Settings
from groupkeeper.service.identity import IdentityClient
from groupkeeper.service.notify import NotificationSender


@lru_cache
def SETTINGS():
    return Settings()


DATABASE_MANAGER = SETTINGS().async_manager()


def get_manager() -> AsyncSessionManager:
    return DATABASE_MANAGER


async def get_async_session(
    manager: Annotated[AsyncSessionManager, Depends(get_manager)],
):
    async with manager.session() as session:
        async with session.begin():
            yield session


def logger():
    return get_logger()


@lru_cache
def get_identity() -> IdentityClient:
    return SETTINGS().identity_client()


@lru_cache
def get_sender() -> NotificationSender:
    return SETTINGS().notification_sender()


SettingsDependency = Annotated[Settings, Depends(SETTINGS)]
ManagerDependency = Annotated[AsyncSessionManager, Depends(get_manager)]
DatabaseDependency = Annotated[AsyncSession, Depends(get_async_session)]
LoggerDependency = Annotated[FilteringBoundLogger, Depends(logger)]
IdentityDependency = Annotated[IdentityClient, Depends(get_identity)]
SenderDependency = Annotated[NotificationSender, Depends(get_sender)]

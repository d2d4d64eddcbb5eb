"""
FastAPI app
"""

from importlib.metadata import version

from fastapi import FastAPI

from .dependencies import DATABASE_MANAGER, SETTINGS, get_identity, get_sender
from .errors import add_exception_handlers
from .members import members_app
from .requests import requests_app
from .sudo import sudo_app

settings = SETTINGS()


async def lifespan(app: FastAPI):
    app.settings = settings

    yield

    await get_identity().aclose()
    await get_sender().aclose()
    await DATABASE_MANAGER.dispose()


app = FastAPI(
    lifespan=lifespan,
    title="groupkeeper API",
    summary="Administrative API for group memberships, roles and trust levels, "
    "kept in sync with the identity service.",
    version=version("groupkeeper"),
)

app = add_exception_handlers(app)

app.include_router(members_app, prefix="/members")
app.include_router(requests_app, prefix="/requests")
app.include_router(sudo_app, prefix="/sudo")

"""
Member listings.
"""

from typing import Annotated

from fastapi import APIRouter, Query

from groupkeeper.api.dependencies import (
    DatabaseDependency,
    LoggerDependency,
    SettingsDependency,
)
from groupkeeper.core.members import DisplayMemberAndHost, Paginated
from groupkeeper.core.types import RoleType
from groupkeeper.service import members as members_service

from .scope import ScopeDependency

members_app = APIRouter(tags=["Members"])


@members_app.get(
    "/{group_name}",
    summary="List the members of a group",
    description="Members of a group with their hosts. Which profile fields are "
    "filled in depends on the caller's scope.",
    responses={
        200: {"description": "One page of members."},
        404: {"description": "Group not found."},
    },
)
async def list_members(
    group_name: str,
    scope: ScopeDependency,
    settings: SettingsDependency,
    conn: DatabaseDependency,
    log: LoggerDependency,
    q: str | None = None,
    r: Annotated[list[RoleType] | None, Query()] = None,
    limit: int | None = None,
    offset: int = 0,
) -> Paginated[DisplayMemberAndHost]:
    log = log.bind(user_id=scope.user_id)

    return await members_service.members_and_host(
        group_name=group_name,
        scope=scope.scope,
        conn=conn,
        log=log,
        query=q,
        roles=r,
        limit=limit or settings.default_page_size,
        offset=offset,
    )

"""
The actor and their scope, as established by the authenticating gateway in
front of this service. The gateway passes a JSON `ScopeAndUser` document in
the `sau` header; it is trusted as is.

To use the dependencies:

```
@router.post("/endpoint")
async def endpoint(host: HostDependency):
    ...

# Raises a 403 HTTPException unless the user is staff with admin groups scope
@router.post("/sudo_only")
async def sudo_endpoint(host: SudoHostDependency):
    ...
```
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel, ValidationError
from structlog import get_logger

from groupkeeper.core.types import TrustType
from groupkeeper.core.user import UserProfileData
from groupkeeper.service import user as user_service

from .dependencies import IdentityDependency, ManagerDependency


class ScopeAndUser(BaseModel):
    user_id: str
    scope: TrustType
    groups_scope: str | None = None
    aal: str = "UNKNOWN"

    @property
    def is_sudo(self) -> bool:
        return self.scope == TrustType.STAFF and self.groups_scope == "admin"


async def get_scope_and_user(
    sau: Annotated[str | None, Header()] = None,
) -> ScopeAndUser:
    log = get_logger()

    if sau is None:
        await log.adebug("scope.missing")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )

    try:
        return ScopeAndUser.model_validate_json(sau)
    except ValidationError:
        await log.ainfo("scope.invalid")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid scope"
        )


ScopeDependency = Annotated[ScopeAndUser, Depends(get_scope_and_user)]


async def get_sudo_scope(scope: ScopeDependency) -> ScopeAndUser:
    if not scope.is_sudo:
        await get_logger().awarning("scope.not_sudo", user_id=scope.user_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    return scope


SudoScopeDependency = Annotated[ScopeAndUser, Depends(get_sudo_scope)]


async def get_host(
    scope: ScopeDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
) -> UserProfileData:
    """
    The acting user's profile.
    """
    return await user_service.resolve_by_identifier(
        user_id=scope.user_id, identity=identity, manager=manager, log=get_logger()
    )


async def get_sudo_host(
    scope: SudoScopeDependency,
    identity: IdentityDependency,
    manager: ManagerDependency,
) -> UserProfileData:
    return await user_service.resolve_by_identifier(
        user_id=scope.user_id, identity=identity, manager=manager, log=get_logger()
    )


HostDependency = Annotated[UserProfileData, Depends(get_host)]
SudoHostDependency = Annotated[UserProfileData, Depends(get_sudo_host)]

"""
Client for the external identity/profile service.

The identity service is the source of truth for profile attributes and keeps
its own record of which groups each user belongs to. One client instance is
shared by all concurrent tasks.
"""

import abc
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from groupkeeper.core.errors import NotFound, UpstreamError
from groupkeeper.core.user import RemoteProfile
from groupkeeper.core.uuid import UUID


class IdentityNotFound(NotFound):
    pass


class IdentityClient(abc.ABC):
    """
    The base class for identity service clients. Downstream must implement:

    - get_user_by_uuid: fetch a profile by the user's uuid.
    - get_user_by_identifier: fetch a profile by the identity service's own
                              user identifier.
    - update_user: push a (modified) profile back to the service.

    All three raise `IdentityNotFound` for unknown users and `UpstreamError`
    when the service cannot be reached, times out, or fails.
    """

    @abc.abstractmethod
    async def get_user_by_uuid(self, user_uuid: UUID) -> RemoteProfile:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_user_by_identifier(self, user_id: str) -> RemoteProfile:
        raise NotImplementedError

    @abc.abstractmethod
    async def update_user(self, profile: RemoteProfile) -> None:
        raise NotImplementedError


class HttpIdentityClient(IdentityClient):
    """
    Identity client talking JSON over HTTP. The timeout applies to every
    request.
    """

    client: httpx.AsyncClient

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 10.0):
        headers = {
            "Accept": "application/json",
        }

        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Error contacting identity service at {url}: {e}") from e

        if response.status_code == 404:
            raise IdentityNotFound(f"Identity service has no user at {url}")

        if response.status_code >= 400:
            raise UpstreamError(
                f"Identity service returned {response.status_code} for {url}"
            )

        return response

    async def _get_profile(self, url: str) -> RemoteProfile:
        response = await self._request("GET", url)

        try:
            return RemoteProfile.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UpstreamError(
                f"Identity service returned a malformed profile for {url}: {e}"
            ) from e

    async def get_user_by_uuid(self, user_uuid: UUID) -> RemoteProfile:
        return await self._get_profile(f"/v2/user/uuid/{user_uuid}")

    async def get_user_by_identifier(self, user_id: str) -> RemoteProfile:
        return await self._get_profile(f"/v2/user/user_id/{quote(user_id, safe='')}")

    async def update_user(self, profile: RemoteProfile) -> None:
        await self._request(
            "POST",
            "/v2/user",
            params={"user_id": profile.user_id},
            json=profile.model_dump(mode="json"),
        )

    async def aclose(self):
        await self.client.aclose()

"""
In-memory identity service and notification sender, used for testing and for
running the service locally without its collaborators.
"""

from groupkeeper.core.errors import UpstreamError
from groupkeeper.core.user import RemoteProfile
from groupkeeper.core.uuid import UUID

from .identity import IdentityClient, IdentityNotFound
from .notify import NotificationError, NotificationSender, Template


class MockIdentityClient(IdentityClient):
    """
    Holds profiles in a dictionary keyed by user uuid. Profiles are copied on
    the way in and out, so callers cannot change the stored state without
    going through `update_user`.

    - `failing`: users whose profile updates fail with `UpstreamError`.
    - `unreachable`: every call fails with `UpstreamError`.
    - `updates`: every profile successfully pushed, in order.
    """

    profiles: dict[UUID, RemoteProfile]
    failing: set[UUID]
    unreachable: bool
    updates: list[RemoteProfile]

    def __init__(self, profiles: list[RemoteProfile] | None = None):
        self.profiles = {p.user_uuid: p.model_copy(deep=True) for p in profiles or []}
        self.failing = set()
        self.unreachable = False
        self.updates = []

    def add(self, profile: RemoteProfile) -> RemoteProfile:
        self.profiles[profile.user_uuid] = profile.model_copy(deep=True)
        return profile

    def groups_of(self, user_uuid: UUID) -> set[str]:
        return set(self.profiles[user_uuid].groups)

    def _check(self):
        if self.unreachable:
            raise UpstreamError("Identity service unreachable")

    async def get_user_by_uuid(self, user_uuid: UUID) -> RemoteProfile:
        self._check()

        if user_uuid not in self.profiles:
            raise IdentityNotFound(f"No profile for {user_uuid}")

        return self.profiles[user_uuid].model_copy(deep=True)

    async def get_user_by_identifier(self, user_id: str) -> RemoteProfile:
        self._check()

        for profile in self.profiles.values():
            if profile.user_id == user_id:
                return profile.model_copy(deep=True)

        raise IdentityNotFound(f"No profile for {user_id}")

    async def update_user(self, profile: RemoteProfile) -> None:
        self._check()

        if profile.user_uuid in self.failing:
            raise UpstreamError(f"Update of {profile.user_uuid} failed")

        if profile.user_uuid not in self.profiles:
            raise IdentityNotFound(f"No profile for {profile.user_uuid}")

        self.profiles[profile.user_uuid] = profile.model_copy(deep=True)
        self.updates.append(profile.model_copy(deep=True))


class MockNotificationSender(NotificationSender):
    """
    Records every email instead of sending it. `sent` holds
    (recipients, bcc, template) triples.
    """

    sent: list[tuple[list[str], bool, Template]]
    fail: bool

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_email(self, address: str, template: Template) -> None:
        if self.fail:
            raise NotificationError("Mock sender configured to fail")

        self.sent.append(([address], False, template))

    async def send_emails(self, addresses: list[str], template: Template) -> None:
        if self.fail:
            raise NotificationError("Mock sender configured to fail")

        self.sent.append((list(addresses), True, template))

    def of_kind(self, kind) -> list[tuple[list[str], bool, Template]]:
        return [x for x in self.sent if x[2].kind == kind]

"""
Email notifications.

Sending is fire-and-forget from the point of view of the lifecycle: a failed
delivery is logged and never changes the result of the operation that
triggered it.
"""

import abc
import enum

import httpx
from pydantic import BaseModel
from structlog.typing import FilteringBoundLogger


class NotificationError(Exception):
    pass


class TemplateKind(str, enum.Enum):
    FIRST_HOST_EXPIRATION = "first_host_expiration"
    SECOND_HOST_EXPIRATION = "second_host_expiration"
    MEMBER_EXPIRATION = "member_expiration"
    MEMBER_REMOVED = "member_removed"
    GROUP_DELETED = "group_deleted"


SUBJECTS = {
    TemplateKind.FIRST_HOST_EXPIRATION: "[{group_name}] membership of {username} expires in two weeks",
    TemplateKind.SECOND_HOST_EXPIRATION: "[{group_name}] membership of {username} expires in one week",
    TemplateKind.MEMBER_EXPIRATION: "[{group_name}] your membership expires in one week",
    TemplateKind.MEMBER_REMOVED: "[{group_name}] you have been removed from the group",
    TemplateKind.GROUP_DELETED: "[{group_name}] the group has been deleted",
}

BODIES = {
    TemplateKind.FIRST_HOST_EXPIRATION: (
        "The membership of {username} in {group_name} will expire in 14 days. "
        "Renew it from the group's member list if they should stay."
    ),
    TemplateKind.SECOND_HOST_EXPIRATION: (
        "The membership of {username} in {group_name} will expire in 7 days. "
        "Renew it from the group's member list if they should stay."
    ),
    TemplateKind.MEMBER_EXPIRATION: (
        "Your membership in {group_name} will expire in 7 days. "
        "Please contact one of the group's curators if you need to stay."
    ),
    TemplateKind.MEMBER_REMOVED: "You are no longer a member of {group_name}.",
    TemplateKind.GROUP_DELETED: "The group {group_name} has been deleted.",
}


class Template(BaseModel):
    kind: TemplateKind
    group_name: str
    username: str | None = None

    @property
    def subject(self) -> str:
        return SUBJECTS[self.kind].format(
            group_name=self.group_name, username=self.username
        )

    @property
    def body(self) -> str:
        return BODIES[self.kind].format(
            group_name=self.group_name, username=self.username
        )


class NotificationSender(abc.ABC):
    """
    Base class for email senders. Both methods raise `NotificationError` on
    failure.
    """

    @abc.abstractmethod
    async def send_email(self, address: str, template: Template) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def send_emails(self, addresses: list[str], template: Template) -> None:
        """
        Send one email with every address in blind copy.
        """
        raise NotImplementedError


class HttpNotificationSender(NotificationSender):
    client: httpx.AsyncClient
    from_address: str

    def __init__(self, base_url: str, from_address: str, timeout: float = 10.0):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.from_address = from_address

    async def _post(self, payload: dict) -> None:
        try:
            response = await self.client.post("/send", json=payload)
        except httpx.HTTPError as e:
            raise NotificationError(f"Error contacting notification service: {e}") from e

        if response.status_code not in [200, 202, 204]:
            raise NotificationError(
                f"Notification service returned {response.status_code}"
            )

    async def send_email(self, address: str, template: Template) -> None:
        await self._post(
            {
                "from": self.from_address,
                "to": [address],
                "bcc": [],
                "subject": template.subject,
                "body": template.body,
            }
        )

    async def send_emails(self, addresses: list[str], template: Template) -> None:
        await self._post(
            {
                "from": self.from_address,
                "to": [],
                "bcc": addresses,
                "subject": template.subject,
                "body": template.body,
            }
        )

    async def aclose(self):
        await self.client.aclose()


async def send_email(
    address: str | None,
    template: Template,
    sender: NotificationSender,
    log: FilteringBoundLogger,
) -> None:
    log = log.bind(template=template.kind.value, group_name=template.group_name)

    if not address:
        await log.awarning("notify.no_address")
        return

    try:
        await sender.send_email(address, template)
    except NotificationError as e:
        await log.aerror("notify.failed", error=str(e))
        return

    await log.adebug("notify.sent")


async def send_emails(
    addresses: list[str],
    template: Template,
    sender: NotificationSender,
    log: FilteringBoundLogger,
) -> None:
    addresses = [a for a in addresses if a]
    log = log.bind(
        template=template.kind.value,
        group_name=template.group_name,
        number_of_recipients=len(addresses),
    )

    if not addresses:
        await log.awarning("notify.no_recipients")
        return

    try:
        await sender.send_emails(addresses, template)
    except NotificationError as e:
        await log.aerror("notify.failed", error=str(e))
        return

    await log.adebug("notify.sent")

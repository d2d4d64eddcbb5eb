"""
Pydantic models for batch results and request/responses to APIs.
"""

from pydantic import BaseModel, Field

from groupkeeper.core.types import TrustType
from groupkeeper.core.uuid import UUID


class BatchOutcome(BaseModel):
    """
    Aggregate result of a batch job. `failed` maps an item key (usually a
    user uuid or user id) to the error message recorded for it.
    """

    succeeded: int = 0
    failed: dict[str, str] = Field(default_factory=dict)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class ProfileDiff(BaseModel):
    user_uuid: UUID
    missing_remote: list[str] = Field(default_factory=list)
    extra_remote: list[str] = Field(default_factory=list)


class ConsolidationReport(BaseModel):
    dry_run: bool
    checked: int = 0
    diffs: list[ProfileDiff] = Field(default_factory=list)
    updated: int = 0
    failed: dict[str, str] = Field(default_factory=dict)


class AddMemberContent(BaseModel):
    user_uuid: UUID
    group_expiration: int | None = None
    no_host: bool = False


class RenewMemberContent(BaseModel):
    group_expiration: int | None = None


class AddCuratorContent(BaseModel):
    user_uuid: UUID
    role_name: str = "curator"


class TransferMembershipContent(BaseModel):
    group_name: str
    old_user_uuid: UUID
    new_user_uuid: UUID


class ChangeTrustContent(BaseModel):
    trust: TrustType


class AcceptRequestContent(BaseModel):
    group_expiration: int | None = None

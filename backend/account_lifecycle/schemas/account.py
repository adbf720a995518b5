from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class DeletionInitiatedResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message: str
    scheduled_for_deletion_at: datetime


class DeletionStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pending: bool
    requested_at: datetime | None = None
    scheduled_for_deletion_at: datetime | None = None


class RestoreAccountRequest(BaseModel):
    # Blank tokens are rejected by the service as a typed validation error.
    token: str | None = None


class MessageResponse(BaseModel):
    message: str


class LinkedIdentityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider: str
    email: str | None = None


class IdentitiesResponse(BaseModel):
    has_password: bool
    identities: list[LinkedIdentityResponse]


class UnlinkProviderRequest(BaseModel):
    provider: str | None = None


class SweepFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    request_id: UUID
    reason: str


class SweepSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: str
    processed: int
    succeeded: int
    skipped: int
    failed: list[SweepFailureResponse]
    started_at: datetime
    finished_at: datetime | None = None

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, Field, StringConstraints

DisplayName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


class ProfileInsertRequest(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    name: DisplayName
    role: str = Field(default="user")


class CreateUserProfileRequest(BaseModel):
    user_id: str | None = Field(default=None, max_length=64)
    user_name: str | None = Field(default=None, max_length=255)
    user_role: str | None = Field(default="user")


class ProfileNameUpdateRequest(BaseModel):
    name: DisplayName


class RoleAssignmentRequest(BaseModel):
    role: str


class InternalRoleAssignmentRequest(RoleAssignmentRequest):
    id: str = Field(min_length=1, max_length=64)


class IdentityCreatedEvent(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None


class BackfillRequest(BaseModel):
    identities: list[IdentityCreatedEvent] = Field(default_factory=list)

"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from galaxy_workflow.session.models import ParticipantIdentity, Role


class MemberIn(BaseModel):
    id: str | None = None
    handle: str = Field(min_length=1)
    role: Role


class CreateSessionRequest(BaseModel):
    identity_key: str = Field(min_length=1)
    # None creates the demo trio; an empty list creates a session without members.
    members: list[MemberIn] | None = None

    def to_identities(self) -> list[ParticipantIdentity] | None:
        if self.members is None:
            return None
        return [
            ParticipantIdentity.model_validate(m.model_dump(exclude_none=True))
            for m in self.members
        ]


class SessionResponse(BaseModel):
    created: bool
    identity_key: str
    step: int
    members: list[ParticipantIdentity]


class StepResponse(BaseModel):
    identity_key: str
    step: int
    step_name: str | None = None
    role: Role | None = None
    completed: bool = False


class OperationRequest(BaseModel):
    required_step: int = Field(ge=0)
    op_name: str = Field(min_length=1)
    op_args: dict[str, Any] = Field(default_factory=dict)


class CreateGalaxyRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    project_link: str = ""
    tags: list[str] = Field(default_factory=list)


class PlacementRequest(BaseModel):
    # Both or neither; omitted coordinates come from the coordinate source.
    x: float | None = None
    y: float | None = None


class ErrorDetail(BaseModel):
    success: bool = False
    error: str
    message: str

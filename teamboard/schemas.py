"""
Pydantic schemas for the teamboard HTTP API.

Request bodies use the camelCase keys the web client sends; the models
expose snake_case attributes.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel


def _coerce_id(value: Any) -> Any:
    # Clients may send numeric ids back to us.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


Identifier = Annotated[str, BeforeValidator(_coerce_id)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginPayload(CamelModel):
    name: str
    password: str


class SignupPayload(CamelModel):
    name: str
    email: Optional[str] = None
    password: str


class CreateTeamPayload(CamelModel):
    team_name: str
    user_id: Identifier


class JoinTeamPayload(CamelModel):
    team_code: str
    user_id: Identifier


class LeaveTeamPayload(CamelModel):
    user_id: Identifier


class RenameTeamPayload(CamelModel):
    name: str


class TaskCreatePayload(CamelModel):
    title: str
    user_id: Identifier
    description: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    estimated_time: Optional[float] = None
    time_unit: Optional[str] = None
    team_id: Optional[Identifier] = None


class TaskUpdatePayload(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    estimated_time: Optional[float] = None
    time_unit: Optional[str] = None
    team_id: Optional[Identifier] = None


class StatusResponse(BaseModel):
    success: bool
    message: Optional[str] = None


class UserResponse(StatusResponse):
    user: Optional[dict] = None


class TeamResponse(StatusResponse):
    team: Optional[dict] = None
    members: Optional[list[dict]] = None


class TaskResponse(StatusResponse):
    task: Optional[dict] = None


class TaskListResponse(StatusResponse):
    tasks: list[dict] = []


class HealthResponse(BaseModel):
    success: bool
    service: str
    store: str

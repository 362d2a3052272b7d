"""
HTTP routes for the teamboard API.

Every route answers with ``success`` set; repository errors become
``{"success": false, "message": ...}`` instead of an error status. Writes
that other team members should see are published to the team room after
the response, as a background task.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends

from teamboard.config import Settings, get_settings
from teamboard.db import Store
from teamboard.dependencies import get_hub, get_store
from teamboard.errors import StoreOperationFailed, TeamboardError
from teamboard.realtime import Broadcast, RoomHub, publish_all, room_key
from teamboard.repository import tasks, teams, users
from teamboard.schemas import (
    CreateTeamPayload,
    JoinTeamPayload,
    LeaveTeamPayload,
    LoginPayload,
    RenameTeamPayload,
    SignupPayload,
    StatusResponse,
    TaskCreatePayload,
    TaskListResponse,
    TaskResponse,
    TaskUpdatePayload,
    TeamResponse,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _failure(response_cls, exc: TeamboardError, action: str):
    if isinstance(exc, StoreOperationFailed):
        logger.error("%s failed: %s", action, exc.message)
    else:
        logger.info("%s rejected: %s", action, exc.message)
    return response_cls(success=False, message=exc.message)


def _notify(background_tasks: BackgroundTasks, hub: RoomHub, *broadcasts: Broadcast):
    background_tasks.add_task(publish_all, hub, list(broadcasts))


@router.post("/login", response_model=UserResponse)
def login(payload: LoginPayload, store: Store = Depends(get_store)):
    try:
        user = users.authenticate(store, payload.name, payload.password)
    except TeamboardError as exc:
        return _failure(UserResponse, exc, "Login")
    return UserResponse(success=True, user=user.as_dict())


@router.post("/signup", response_model=UserResponse)
def signup(payload: SignupPayload, store: Store = Depends(get_store)):
    try:
        user = users.create_user(store, payload.name, payload.email, payload.password)
    except TeamboardError as exc:
        return _failure(UserResponse, exc, "Signup")
    return UserResponse(success=True, user=user.as_dict())


@router.post("/create-team", response_model=TeamResponse)
def create_team(payload: CreateTeamPayload, store: Store = Depends(get_store)):
    try:
        team = teams.create_team(store, payload.team_name, payload.user_id)
    except TeamboardError as exc:
        return _failure(TeamResponse, exc, "Create team")
    return TeamResponse(success=True, team=team.as_dict())


@router.post("/join-team", response_model=TeamResponse)
def join_team(
    payload: JoinTeamPayload,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    hub: RoomHub = Depends(get_hub),
):
    try:
        team = teams.join_team(store, payload.team_code, payload.user_id)
    except TeamboardError as exc:
        return _failure(TeamResponse, exc, "Join team")
    team_data = team.as_dict()
    _notify(
        background_tasks,
        hub,
        Broadcast(
            room_key(team.id),
            "team-updated",
            {"type": "member-joined", "team": team_data, "userId": payload.user_id},
        ),
    )
    return TeamResponse(success=True, team=team_data)


@router.get("/team/{team_id}", response_model=TeamResponse)
def get_team(team_id: str, store: Store = Depends(get_store)):
    try:
        team, members = teams.get_team(store, team_id)
    except TeamboardError as exc:
        return _failure(TeamResponse, exc, "Get team")
    return TeamResponse(
        success=True,
        team=team.as_dict(),
        members=[member.as_dict() for member in members],
    )


@router.post("/leave-team", response_model=StatusResponse)
def leave_team(
    payload: LeaveTeamPayload,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    hub: RoomHub = Depends(get_hub),
):
    try:
        team = teams.leave_team(store, payload.user_id)
    except TeamboardError as exc:
        return _failure(StatusResponse, exc, "Leave team")
    if team is not None:
        _notify(
            background_tasks,
            hub,
            Broadcast(
                room_key(team.id),
                "team-updated",
                {
                    "type": "member-left",
                    "team": team.as_dict(),
                    "userId": payload.user_id,
                },
            ),
        )
    return StatusResponse(success=True)


@router.put("/team/{team_id}", response_model=TeamResponse)
def rename_team(
    team_id: str,
    payload: RenameTeamPayload,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    hub: RoomHub = Depends(get_hub),
):
    try:
        team = teams.rename_team(store, team_id, payload.name)
    except TeamboardError as exc:
        return _failure(TeamResponse, exc, "Rename team")
    team_data = team.as_dict()
    _notify(
        background_tasks,
        hub,
        Broadcast(
            room_key(team.id), "team-updated", {"type": "renamed", "team": team_data}
        ),
    )
    return TeamResponse(success=True, team=team_data)


@router.delete("/team/{team_id}", response_model=StatusResponse)
def delete_team(
    team_id: str,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    hub: RoomHub = Depends(get_hub),
):
    try:
        team = teams.delete_team(store, team_id)
    except TeamboardError as exc:
        return _failure(StatusResponse, exc, "Delete team")
    _notify(
        background_tasks,
        hub,
        Broadcast(
            room_key(team.id), "team-updated", {"type": "deleted", "teamId": team.id}
        ),
    )
    return StatusResponse(success=True)


@router.post("/tasks", response_model=TaskResponse)
def create_task(
    payload: TaskCreatePayload,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    hub: RoomHub = Depends(get_hub),
    settings: Settings = Depends(get_settings),
):
    try:
        task = tasks.create_task(
            store,
            payload.model_dump(),
            validate_enums=settings.validate_task_fields,
        )
    except TeamboardError as exc:
        return _failure(TaskResponse, exc, "Create task")
    task_data = task.as_dict()
    if task.team_id:
        _notify(
            background_tasks,
            hub,
            Broadcast(
                room_key(task.team_id),
                "task-updated",
                {"type": "added", "task": task_data},
            ),
        )
    return TaskResponse(success=True, task=task_data)


@router.get("/tasks/team/{team_id}", response_model=TaskListResponse)
def list_team_tasks(team_id: str, store: Store = Depends(get_store)):
    try:
        found = tasks.list_tasks_by_team(store, team_id)
    except TeamboardError as exc:
        return _failure(TaskListResponse, exc, "List team tasks")
    return TaskListResponse(success=True, tasks=[t.as_dict() for t in found])


@router.get("/tasks/{user_id}", response_model=TaskListResponse)
def list_user_tasks(user_id: str, store: Store = Depends(get_store)):
    try:
        found = tasks.list_tasks_by_user(store, user_id)
    except TeamboardError as exc:
        return _failure(TaskListResponse, exc, "List user tasks")
    return TaskListResponse(success=True, tasks=[t.as_dict() for t in found])


@router.put("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: str,
    payload: TaskUpdatePayload,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    hub: RoomHub = Depends(get_hub),
    settings: Settings = Depends(get_settings),
):
    logger.debug("Updating task %s with %s", task_id, payload)
    try:
        task = tasks.update_task(
            store,
            task_id,
            payload.model_dump(exclude_unset=True),
            validate_enums=settings.validate_task_fields,
        )
    except TeamboardError as exc:
        return _failure(TaskResponse, exc, "Update task")
    task_data = task.as_dict()
    if task.team_id:
        _notify(
            background_tasks,
            hub,
            Broadcast(
                room_key(task.team_id),
                "task-updated",
                {"type": "updated", "task": task_data},
            ),
        )
    return TaskResponse(success=True, task=task_data)


@router.delete("/tasks/{task_id}", response_model=StatusResponse)
def delete_task(
    task_id: str,
    background_tasks: BackgroundTasks,
    store: Store = Depends(get_store),
    hub: RoomHub = Depends(get_hub),
):
    try:
        task = tasks.delete_task(store, task_id)
    except TeamboardError as exc:
        return _failure(StatusResponse, exc, "Delete task")
    if task.team_id:
        _notify(
            background_tasks,
            hub,
            Broadcast(
                room_key(task.team_id),
                "task-updated",
                {"type": "deleted", "taskId": task.id},
            ),
        )
    return StatusResponse(success=True)

from __future__ import annotations

from typing import Any, Mapping

from teamboard.db import Store, TaskRecord, utcnow
from teamboard.errors import InvalidEnum, InvalidValue, TaskNotFound

PRIORITIES = ("easy", "medium", "hard")
STATUSES = ("todo", "process", "completed")
TIME_UNITS = ("minutes", "hours", "days", "weeks")

TASK_FIELDS = (
    "title",
    "description",
    "priority",
    "status",
    "estimated_time",
    "time_unit",
    "user_id",
    "team_id",
)

# python name -> (wire name, allowed values)
_ENUM_FIELDS = {
    "priority": ("priority", PRIORITIES),
    "status": ("status", STATUSES),
    "time_unit": ("timeUnit", TIME_UNITS),
}

_DEFAULTS = {
    "description": "",
    "priority": "easy",
    "status": "todo",
    "estimated_time": 30,
    "time_unit": "minutes",
    "team_id": None,
}


def _task_fields(data: Mapping[str, Any]) -> dict:
    # team_id may be cleared explicitly; every other None means "not given".
    return {
        key: value
        for key, value in data.items()
        if key in TASK_FIELDS and (value is not None or key == "team_id")
    }


def _validate(fields: Mapping[str, Any], validate_enums: bool) -> None:
    if validate_enums:
        for name, (wire_name, allowed) in _ENUM_FIELDS.items():
            if name in fields and fields[name] not in allowed:
                raise InvalidEnum(wire_name, fields[name], allowed)
    if "estimated_time" in fields:
        value = fields["estimated_time"]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise InvalidValue("estimatedTime must be a positive number")
    if "title" in fields and not fields["title"]:
        raise InvalidValue("Task title is required")


def create_task(
    store: Store, data: Mapping[str, Any], *, validate_enums: bool = True
) -> TaskRecord:
    fields = {**_DEFAULTS, **_task_fields(data)}
    if not fields.get("title"):
        raise InvalidValue("Task title is required")
    if not fields.get("user_id"):
        raise InvalidValue("Task owner is required")
    _validate(fields, validate_enums)
    fields["created_at"] = utcnow()
    return store.tasks.create(fields)


def update_task(
    store: Store,
    task_id: str,
    patch: Mapping[str, Any],
    *,
    validate_enums: bool = True,
) -> TaskRecord:
    """Apply a partial patch. Any status may move to any other status."""
    changes = _task_fields(patch)
    _validate(changes, validate_enums)
    if changes:
        task = store.tasks.update_by_id(task_id, changes)
    else:
        task = store.tasks.find_one({"id": task_id})
    if task is None:
        raise TaskNotFound()
    return task


def delete_task(store: Store, task_id: str) -> TaskRecord:
    task = store.tasks.find_one({"id": task_id})
    if task is None or not store.tasks.delete_by_id(task_id):
        raise TaskNotFound()
    return task


def list_tasks_by_user(store: Store, user_id: str) -> list[TaskRecord]:
    return store.tasks.find_many({"user_id": user_id})


def list_tasks_by_team(store: Store, team_id: str) -> list[TaskRecord]:
    return store.tasks.find_many({"team_id": team_id})

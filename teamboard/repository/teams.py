"""
Team membership.

``Team.members`` and ``User.team_id`` always change together inside one
store transaction; a user belongs to at most one team at a time.
"""

from __future__ import annotations

import logging
import random
import string
from typing import Optional

from teamboard.db import Store, TeamRecord, UserRecord, utcnow
from teamboard.errors import (
    InvalidValue,
    StoreOperationFailed,
    TeamNotFound,
    UserNotFound,
)

logger = logging.getLogger(__name__)

TEAM_CODE_ALPHABET = string.ascii_uppercase + string.digits
TEAM_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 5

_random = random.SystemRandom()


def generate_team_code() -> str:
    return "".join(
        _random.choice(TEAM_CODE_ALPHABET) for _ in range(TEAM_CODE_LENGTH)
    )


def _unused_code(store: Store) -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_team_code()
        if store.teams.find_one({"code": code}) is None:
            return code
        logger.warning("Team code %s already taken, retrying", code)
    raise StoreOperationFailed("Could not allocate a team code")


def _require_user(store: Store, user_id: str) -> UserRecord:
    user = store.users.find_one({"id": user_id})
    if user is None:
        raise UserNotFound()
    return user


def _require_team(store: Store, team_id: str) -> TeamRecord:
    team = store.teams.find_one({"id": team_id})
    if team is None:
        raise TeamNotFound()
    return team


def _detach(store: Store, user: UserRecord) -> Optional[TeamRecord]:
    """Drop ``user`` from its current team. Call inside a transaction."""
    team = store.teams.find_one({"id": user.team_id})
    store.users.update_by_id(user.id, {"team_id": None})
    if team is None:
        return None
    members = [m for m in team.members if m != user.id]
    patch: dict = {"members": members}
    if team.leader_id == user.id and members:
        patch["leader_id"] = members[0]
    return store.teams.update_by_id(team.id, patch)


def create_team(store: Store, name: str, leader_id: str) -> TeamRecord:
    if not name:
        raise InvalidValue("Team name is required")
    with store.transaction() as tx:
        leader = _require_user(tx, leader_id)
        if leader.team_id:
            _detach(tx, leader)
        team = tx.teams.create(
            {
                "name": name,
                "code": _unused_code(tx),
                "leader_id": leader.id,
                "members": [leader.id],
                "created_at": utcnow(),
            }
        )
        tx.users.update_by_id(leader.id, {"team_id": team.id})
    logger.info("Created team %s (%s) led by %s", team.name, team.code, leader_id)
    return team


def assign_user_to_team(store: Store, user_id: str, team_id: str) -> TeamRecord:
    """Add the user to the team and point the user back at it, atomically.

    Adding an existing member is a no-op on ``members``. A user moving
    from another team is removed from that team first. Joining a team whose
    leader has left makes the user its leader.
    """
    with store.transaction() as tx:
        user = _require_user(tx, user_id)
        team = _require_team(tx, team_id)
        if user.team_id and user.team_id != team.id:
            _detach(tx, user)
        patch: dict = {}
        if user.id not in team.members:
            patch["members"] = team.members + [user.id]
        if team.leader_id not in patch.get("members", team.members):
            patch["leader_id"] = user.id
        if patch:
            team = tx.teams.update_by_id(team.id, patch)
        tx.users.update_by_id(user.id, {"team_id": team.id})
    return team


def join_team(store: Store, code: str, user_id: str) -> TeamRecord:
    team = store.teams.find_one({"code": code})
    if team is None:
        raise TeamNotFound("Invalid team code")
    return assign_user_to_team(store, user_id, team.id)


def leave_team(store: Store, user_id: str) -> Optional[TeamRecord]:
    """Remove the user from their team; returns the updated team, if any.

    When the leader leaves, the earliest remaining member takes over.
    """
    with store.transaction() as tx:
        user = _require_user(tx, user_id)
        if not user.team_id:
            return None
        return _detach(tx, user)


def get_team(store: Store, team_id: str) -> tuple[TeamRecord, list[UserRecord]]:
    team = _require_team(store, team_id)
    found = {u.id: u for u in store.users.find_many({"id": team.members})}
    return team, [found[m] for m in team.members if m in found]


def rename_team(store: Store, team_id: str, name: str) -> TeamRecord:
    if not name:
        raise InvalidValue("Team name is required")
    team = store.teams.update_by_id(team_id, {"name": name})
    if team is None:
        raise TeamNotFound()
    return team


def delete_team(store: Store, team_id: str) -> TeamRecord:
    """Delete a team and everything hanging off it.

    Runs Tasks, then Messages, then User back-references, then the Team
    itself, so nothing is left pointing at a team that is already gone.
    """
    team = _require_team(store, team_id)
    tasks = store.tasks.delete_many({"team_id": team.id})
    messages = store.messages.delete_many({"team_id": team.id})
    users = store.users.update_many({"team_id": team.id}, {"team_id": None})
    store.teams.delete_by_id(team.id)
    logger.info(
        "Deleted team %s (%s): %d tasks, %d messages, %d members detached",
        team.name,
        team.id,
        tasks,
        messages,
        users,
    )
    return team

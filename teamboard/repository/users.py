from __future__ import annotations

import logging

from teamboard.db import Store, UserRecord, utcnow
from teamboard.errors import (
    DuplicateUser,
    InvalidCredentials,
    InvalidValue,
    UserNotFound,
)

logger = logging.getLogger(__name__)


def create_user(
    store: Store, name: str, email: str | None, password: str
) -> UserRecord:
    if not name or not password:
        raise InvalidValue("Name and password are required")
    with store.transaction() as tx:
        if tx.users.find_one({"name": name}):
            raise DuplicateUser()
        user = tx.users.create(
            {
                "name": name,
                "email": email or "",
                "password": password,
                "team_id": None,
                "created_at": utcnow(),
            }
        )
    logger.info("Created user %s (%s)", user.name, user.id)
    return user


def authenticate(store: Store, name: str, password: str) -> UserRecord:
    user = store.users.find_one({"name": name})
    if user is None:
        raise UserNotFound()
    if user.password != password:
        raise InvalidCredentials()
    return user


def get_user(store: Store, user_id: str) -> UserRecord:
    user = store.users.find_one({"id": user_id})
    if user is None:
        raise UserNotFound()
    return user

from __future__ import annotations

from teamboard.db import MessageRecord, Store, utcnow
from teamboard.errors import InvalidValue


def save_message(
    store: Store,
    message: str,
    user_id: str,
    user_name: str,
    team_id: str,
) -> MessageRecord:
    if not message or not user_id or not team_id:
        raise InvalidValue("Message, user and team are required")
    return store.messages.create(
        {
            "message": message,
            "user_id": user_id,
            "user_name": user_name or "",
            "team_id": team_id,
            "timestamp": utcnow(),
        }
    )


def list_messages(store: Store, team_id: str) -> list[MessageRecord]:
    """Chat history for a team, oldest first."""
    return store.messages.find_many({"team_id": team_id}, order_by="timestamp")

"""Caller-local player identity, held in Flask's signed session cookie.

Not authentication: it only lets a client recognise "this player is me".
"""

from typing import Optional

from flask import session

from partyroom.errors import InvalidState

SESSION_KEY = 'playerId'


def remember_player(player_id: int) -> None:
    session[SESSION_KEY] = int(player_id)


def forget_player() -> None:
    session.pop(SESSION_KEY, None)


def current_player_id() -> Optional[int]:
    value = session.get(SESSION_KEY)
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def require_player_id() -> int:
    player_id = current_player_id()
    if player_id is None:
        raise InvalidState('You have not joined a room.', 403)
    return player_id

"""Turn order and host succession.

Canonical turn order is join order: ``RoomStore.list_players`` sorts by
``(created_at, id)``.
"""

from typing import Optional, Sequence

from flask import current_app

from partyroom.errors import InvalidState, NotFound
from partyroom.models import STATUS_IN_PROGRESS, Player, Room
from partyroom.store import get_store


def rotate_turn(players: Sequence, previous_index: int) -> int:
    if not players:
        raise InvalidState('There are no players left to take a turn.')
    return (int(previous_index) + 1) % len(players)


def turn_index(players: Sequence, index: int) -> int:
    """Clamp a stored index onto the current player list (players may have left)."""
    if not players:
        raise InvalidState('There are no players left to take a turn.')
    return int(index) % len(players)


def turn_holder(players: Sequence[Player], current_index: Optional[int]) -> Optional[int]:
    if current_index is None or not players:
        return None
    if not 0 <= current_index < len(players):
        raise InvalidState(f'Turn index {current_index} is out of range.')
    return players[current_index].id


def set_turns(room_id, players: Sequence[Player], current_index: Optional[int], *,
              expected_version: Optional[int] = None, state: Optional[dict] = None,
              **fields) -> Optional[Room]:
    """Give the turn to ``players[current_index]`` and take it from everyone else.

    Written as one batch so no observer sees two (or zero) turn holders
    mid-rotation; a ``current_index`` of None leaves nobody holding it.

    With ``expected_version`` the flags ride on the compare-and-swap write
    of ``state`` (plus any other ``RoomStore.swap_room_state`` fields) and
    None is returned when that swap lost the race. Returns the room as
    stored afterwards.
    """
    holder_id = turn_holder(players, current_index)
    store = get_store()
    if expected_version is None:
        store.set_turn_flags(room_id, holder_id)
        room = store.get_room(room_id)
    else:
        room = store.swap_room_state(
            room_id,
            expected_version,
            state or {},
            turn_player_id=holder_id,
            clear_turns=holder_id is None,
            **fields,
        )
        if room is None:
            return None
    current_app.logger.info(f"[turn] room={room_id} index={current_index} player={holder_id}")
    return room


def handle_host_leave(room_id, leaving_player_id) -> Optional[Player]:
    """Promote the earliest-joined remaining player if the host is leaving.

    Must run before the leaving player's row is deleted. Returns the new
    host, or None when no promotion was needed or possible.
    """
    store = get_store()
    leaving = store.get_player(leaving_player_id)
    if leaving.room_id != room_id:
        raise NotFound('Player not found in this room.')
    if not leaving.is_host:
        return None
    remaining = [p for p in store.list_players(room_id) if p.id != leaving.id]
    if not remaining:
        return None
    successor = store.update_player(remaining[0].id, is_host=True)
    current_app.logger.info(f"[host-transfer] room={room_id} from={leaving.id} to={successor.id}")
    return successor


def leave_turn_order(room_id, leaving_player_id) -> Optional[Room]:
    """Take a player out of a running round without moving the turn.

    The player's row is deleted in the same write that re-aims
    ``currentPlayerIndex`` at the shorter list: a leaver seated before the
    turn holder shifts the index down by one, and a leaver holding the turn
    passes it to whoever now sits at that index. Returns None, deleting
    nothing, when no round is running or it is already over.
    """
    store = get_store()
    attempts = int(current_app.config.get('CAS_MAX_RETRIES', 5))
    for attempt in range(1, attempts + 1):
        room = store.get_room(room_id, fresh=True)
        state = room.state_data
        if room.status != STATUS_IN_PROGRESS or 'currentPlayerIndex' not in state or state.get('gameOver'):
            return None
        players = store.list_players(room.id)
        position = next((i for i, p in enumerate(players) if p.id == leaving_player_id), None)
        if position is None:
            return None
        remaining = [p for p in players if p.id != leaving_player_id]
        current = turn_index(players, state['currentPlayerIndex'])
        if not remaining:
            index = None
        elif position < current:
            index = current - 1
        else:
            index = current % len(remaining)

        updated = set_turns(
            room.id,
            remaining,
            index,
            expected_version=room.state_version,
            state=dict(state, currentPlayerIndex=index or 0),
            remove_player_id=leaving_player_id,
        )
        if updated is not None:
            return updated
        current_app.logger.info(f"[cas-retry] op=leave room={room.id} attempt={attempt}")
    raise InvalidState('The room is busy. Please try again.')

import re
from typing import List, Tuple

from flask import current_app

from partyroom.errors import InvalidInput, InvalidState, NotFound
from partyroom.models import STATUS_WAITING, Game, Player, Room
from partyroom.services.turns import handle_host_leave, leave_turn_order
from partyroom.store import get_store

MAX_NAME_LENGTH = 28


def sanitize_player_name(player_name) -> str:
    collapsed = re.sub(r"\s+", " ", str(player_name or "")).strip()
    if not collapsed:
        raise InvalidInput('Player name is required.')
    return collapsed[:MAX_NAME_LENGTH]


def list_games() -> List[Game]:
    return get_store().list_games()


def get_room(room_id) -> Room:
    return get_store().get_room(room_id)


def list_players(room_id) -> List[Player]:
    store = get_store()
    # A deleted room must surface as NotFound, not as an empty list
    store.get_room(room_id)
    return store.list_players(room_id)


def require_member(room_id, player_id) -> Player:
    player = get_store().get_player(player_id) if player_id is not None else None
    if player is None or player.room_id != room_id:
        raise NotFound('Player not found in this room.')
    return player


def create_room(player_name) -> Tuple[Room, Player]:
    """Create a room with the caller as its host."""
    name = sanitize_player_name(player_name)
    store = get_store()
    room = store.create_room()
    player = store.insert_player(room.id, name, is_host=True)
    current_app.logger.info(f"[room-create] room={room.id} code={room.code} host={player.id}")
    return room, player


def join_room(code, player_name) -> Tuple[int, Player]:
    name = sanitize_player_name(player_name)
    if not (code or '').strip():
        raise InvalidInput('Room code is required.')
    store = get_store()
    room = store.find_room_by_code(code)
    if room.status != STATUS_WAITING:
        raise InvalidState('This room is already playing. Try again after the round.')
    if room.game is not None:
        current = store.list_players(room.id)
        if len(current) >= room.game.max_players:
            raise InvalidState(f'Room is full ({room.game.max_players} players max).')
    player = store.insert_player(room.id, name, is_host=False)
    current_app.logger.info(f"[room-join] room={room.id} player={player.id}")
    return room.id, player


def leave_room(room_id, player_id) -> int:
    """Remove a player, handing the host role on first if needed.

    Mid-round the seat is dropped together with the turn bookkeeping so the
    player holding the turn keeps it.
    """
    store = get_store()
    room = store.get_room(room_id)
    player = require_member(room.id, player_id)
    handle_host_leave(room.id, player.id)
    if leave_turn_order(room.id, player.id) is None:
        store.delete_player(player.id)
    current_app.logger.info(f"[room-leave] room={room.id} player={player_id}")
    return room.id


def select_game(room_id, player_id, game_id) -> Room:
    store = get_store()
    room = store.get_room(room_id)
    player = require_member(room.id, player_id)
    if not player.is_host:
        raise InvalidState('Only the host can choose the game.')
    if room.status != STATUS_WAITING:
        raise InvalidState('The game cannot be changed while a round is in progress.')
    game = store.get_game(game_id)
    room = store.update_room(room.id, game_id=game.id)
    current_app.logger.info(f"[room-game] room={room.id} game={game.slug}")
    return room

"""Room session lifecycle: waiting -> in_progress -> (round over) -> waiting.

State writes go through ``RoomStore.swap_room_state`` keyed on
``Room.state_version``; a writer that loses the race re-reads and
re-applies its action.
"""

import random
from typing import Callable, List, Optional, Tuple

from flask import current_app

from partyroom.errors import InvalidState, RoomError
from partyroom.models import STATUS_IN_PROGRESS, STATUS_WAITING, Player, Room
from partyroom.services.games import Outcome, get_game_module
from partyroom.services.rooms import require_member
from partyroom.services.turns import set_turns, turn_index
from partyroom.store import RoomStore, get_store

# Source of randomness for new rounds
rng = random.Random()


def _player_refs(players: List[Player]) -> List[dict]:
    return [{'id': p.id, 'name': p.name} for p in players]


def _game_module(room: Room):
    if room.game is None:
        raise InvalidState('Please select a game before starting.')
    return get_game_module(room.game.slug)


def _loser_resets(players: List[Player]) -> dict:
    return {p.id: {'is_loser': False} for p in players if p.is_loser}


def public_room(row: dict) -> dict:
    """Room payload safe to send to clients."""
    payload = dict(row)
    state = payload.get('state') or {}
    if state.get('game'):
        payload['state'] = get_game_module(state['game']).public_state(state)
    return payload


def room_snapshot(room_id) -> dict:
    store = get_store()
    room = store.get_room(room_id)
    players = store.list_players(room.id)
    return {
        'room': public_room(room.to_dict()),
        'players': [p.to_dict() for p in players],
    }


def _fresh_round(room: Room, players: List[Player], status: Optional[str] = None) -> Optional[Room]:
    module = _game_module(room)
    state = module.initial_state(rng=rng, config=current_app.config)
    return set_turns(
        room.id,
        players,
        0 if players else None,
        expected_version=room.state_version,
        state=state,
        status=status,
        player_fields=_loser_resets(players),
    )


def start_game(room_id, player_id) -> Room:
    """Host moves the room from waiting to in_progress."""
    store = get_store()
    room = store.get_room(room_id, fresh=True)
    players = store.list_players(room.id)
    if not room.game_id:
        raise InvalidState('Please select a game before starting.')
    if room.status == STATUS_IN_PROGRESS:
        raise InvalidState('The game has already started.')
    me = require_member(room.id, player_id)
    if not me.is_host:
        raise InvalidState('Only the host can start the game.')
    min_players = room.game.min_players or int(current_app.config.get('MIN_PLAYERS', 2))
    if len(players) < min_players:
        raise InvalidState('Not enough players to start the game.')

    # Status flips with an empty state; the first client to enter draws the round
    updated = store.swap_room_state(
        room.id,
        room.state_version,
        {},
        status=STATUS_IN_PROGRESS,
        player_fields=_loser_resets(players),
    )
    if updated is None:
        raise InvalidState('The room changed while starting. Please try again.')
    current_app.logger.info(f"[game-start] room={room.id} game={room.game.slug} players={len(players)}")
    return updated


def enter_game(room_id) -> Room:
    """Load the room for the game screen, drawing a round if none is stored yet."""
    store = get_store()
    for _ in range(int(current_app.config.get('CAS_MAX_RETRIES', 5))):
        room = store.get_room(room_id, fresh=True)
        if room.status != STATUS_IN_PROGRESS:
            raise InvalidState('The game has not started yet.')
        if room.state_data:
            return room
        players = store.list_players(room.id)
        updated = _fresh_round(room, players)
        if updated is not None:
            current_app.logger.info(f"[round-init] room={room.id} version={updated.state_version}")
            return updated
        current_app.logger.info(f"[cas-retry] op=enter room={room.id} version={room.state_version}")
    # Another writer initialised it; adopt theirs
    return store.get_room(room_id, fresh=True)


def submit_action(room_id, player_id, action) -> Tuple[Room, Outcome]:
    """Apply one player action (a guess) as a single atomic state transition."""
    store = get_store()
    attempts = int(current_app.config.get('CAS_MAX_RETRIES', 5))
    for attempt in range(1, attempts + 1):
        room = store.get_room(room_id, fresh=True)
        if room.status != STATUS_IN_PROGRESS:
            raise InvalidState('The game is not in progress.')
        require_member(room.id, player_id)
        if not room.state_data:
            enter_game(room.id)
            continue
        players = store.list_players(room.id)
        module = _game_module(room)
        state = room.state_data
        if state.get('game') != room.game.slug:
            raise InvalidState('The stored round belongs to a different game.')

        outcome = module.apply_action(state, _player_refs(players), player_id, action)

        player_fields = {}
        if outcome.loser_id is not None:
            player_fields[outcome.loser_id] = {'is_loser': True}
        if outcome.next_turn_index is None:
            # Round over: the turn stays where the bomb went off
            updated = store.swap_room_state(
                room.id,
                room.state_version,
                outcome.state,
                player_fields=player_fields,
            )
        else:
            updated = set_turns(
                room.id,
                players,
                turn_index(players, outcome.next_turn_index),
                expected_version=room.state_version,
                state=outcome.state,
                player_fields=player_fields,
            )
        if updated is not None:
            current_app.logger.info(
                f"[action] room={room.id} player={player_id} result={outcome.message!r} "
                f"version={updated.state_version} game_over={outcome.game_over}"
            )
            return updated, outcome
        current_app.logger.info(f"[cas-retry] op=action room={room.id} attempt={attempt}")
    raise InvalidState('The room is busy. Please try again.')


def play_again(room_id, player_id) -> Room:
    """Replace a finished round with a freshly drawn one; no score carries over."""
    store = get_store()
    room = store.get_room(room_id, fresh=True)
    require_member(room.id, player_id)
    if room.status != STATUS_IN_PROGRESS:
        raise InvalidState('The game is not in progress.')
    if room.state_data and not room.state_data.get('gameOver'):
        raise InvalidState('The current round is still being played.')
    players = store.list_players(room.id)
    updated = _fresh_round(room, players)
    if updated is None:
        raise InvalidState('The room changed while restarting. Please try again.')
    current_app.logger.info(f"[round-reset] room={room.id} version={updated.state_version}")
    return updated


def leave_game(room_id) -> bool:
    """Send the whole room back to the lobby.

    Best-effort: the caller's navigation must not depend on it, so store
    failures are logged and reported through the return value.
    """
    store = get_store()
    attempts = int(current_app.config.get('CAS_MAX_RETRIES', 5))
    try:
        for attempt in range(1, attempts + 1):
            room = store.get_room(room_id, fresh=True)
            updated = set_turns(
                room.id,
                [],
                None,
                expected_version=room.state_version,
                state={},
                status=STATUS_WAITING,
            )
            if updated is not None:
                current_app.logger.info(f"[leave-game] room={room_id} version={updated.state_version}")
                return True
            current_app.logger.info(f"[cas-retry] op=leave-game room={room_id} attempt={attempt}")
    except RoomError as exc:
        current_app.logger.warning(f"[leave-game-failed] room={room_id} error={exc}")
        return False
    current_app.logger.warning(f"[leave-game-failed] room={room_id} error=busy")
    return False


class RoomWatcher:
    """A client's local view of one room, kept current by change notifications.

    Room updates replace the local room wholesale. Player changes trigger a
    full re-fetch of the room's player list, including deletes from other
    rooms. Applying a snapshot equal to the current view is a no-op.
    """

    def __init__(self, store: RoomStore, room_id,
                 on_room: Optional[Callable[[dict], None]] = None,
                 on_players: Optional[Callable[[List[dict]], None]] = None):
        self.store = store
        self.room_id = room_id
        self.on_room = on_room
        self.on_players = on_players
        self.room: Optional[dict] = None
        self.players: List[dict] = []
        self.closed = False
        self._subscriptions = []

    def load(self) -> 'RoomWatcher':
        room = self.store.get_room(self.room_id)
        players = self.store.list_players(self.room_id)
        self.apply_room(room.to_dict())
        self.apply_players([p.to_dict() for p in players])
        self._subscriptions = [
            self.store.subscribe_room(self.room_id, self.apply_room),
            self.store.subscribe_players(self.room_id, self.apply_players),
        ]
        return self

    def apply_room(self, row: dict) -> bool:
        if self.closed or row == self.room:
            return False
        self.room = row
        if self.on_room:
            self.on_room(row)
        return True

    def apply_players(self, rows: List[dict]) -> bool:
        if self.closed or rows == self.players:
            return False
        self.players = list(rows)
        if self.on_players:
            self.on_players(self.players)
        return True

    @property
    def status(self) -> Optional[str]:
        return self.room['status'] if self.room else None

    @property
    def game_state(self) -> dict:
        return (self.room or {}).get('state') or {}

    def current_turn_player(self) -> Optional[dict]:
        state = self.game_state
        if not state or not self.players or state.get('gameOver'):
            return None
        return self.players[turn_index(self.players, state.get('currentPlayerIndex', 0))]

    def is_my_turn(self, player_id) -> bool:
        current = self.current_turn_player()
        return current is not None and current['id'] == player_id

    def close(self) -> None:
        self.closed = True
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    def __enter__(self):
        return self.load()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

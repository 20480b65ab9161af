"""Shared store client: Room/Player/Game persistence plus change notification.

Every write commits before its notification is published, so subscribers
only ever observe committed rows.
"""

import functools
import json
from typing import Any, Callable, Dict, List, Optional

from flask import current_app
from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from partyroom import db
from partyroom.errors import NotFound, StoreUnavailable
from partyroom.models import Game, Player, Room, generate_room_code, _utcnow
from partyroom.notifications import (
    DELETE,
    INSERT,
    PLAYER_TABLE,
    ROOM_TABLE,
    UPDATE,
    ChangeFeed,
    SubscriptionGroup,
)

PLAYER_FIELDS = {'name', 'is_turn', 'is_loser', 'extra', 'is_host'}
# State is written only through swap_room_state, so every version bump is guarded
ROOM_FIELDS = {'game_id', 'status'}


def _store_call(fn):
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            db.session.rollback()
            try:
                current_app.logger.error(f"[store-error] op={fn.__name__} error={exc}")
            except RuntimeError:
                pass
            raise StoreUnavailable('The room store is unavailable.') from exc
    return wrapper


def _encode_player_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - PLAYER_FIELDS
    if unknown:
        raise ValueError(f"Unknown player fields: {sorted(unknown)}")
    values = dict(fields)
    if 'extra' in values:
        values['extra'] = json.dumps(values['extra'] or {})
    return values


class RoomStore:
    def __init__(self, feed: Optional[ChangeFeed] = None, code_length: int = 4, code_attempts: int = 24):
        self.feed = feed or ChangeFeed()
        self.code_length = code_length
        self.code_attempts = code_attempts

    # ---- games ----

    @_store_call
    def list_games(self) -> List[Game]:
        return Game.query.order_by(Game.name.asc()).all()

    @_store_call
    def get_game(self, game_id) -> Game:
        game = db.session.get(Game, game_id) if game_id is not None else None
        if not game:
            raise NotFound('Game not found.')
        return game

    # ---- rooms ----

    @_store_call
    def get_room(self, room_id, fresh: bool = False) -> Room:
        if fresh:
            # Drop cached rows so a concurrent writer's commit is visible
            db.session.expire_all()
        room = db.session.get(Room, room_id) if room_id is not None else None
        if not room:
            raise NotFound('Room not found.')
        return room

    @_store_call
    def find_room_by_code(self, code: str) -> Room:
        room = Room.query.filter_by(code=(code or '').strip().upper()).first()
        if not room:
            raise NotFound('Room not found.')
        return room

    @_store_call
    def create_room(self) -> Room:
        for _ in range(self.code_attempts):
            room = Room(code=generate_room_code(self.code_length))
            db.session.add(room)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                continue
            return room
        raise StoreUnavailable('Unable to create a room code right now.')

    @_store_call
    def update_room(self, room_id, **fields) -> Room:
        unknown = set(fields) - ROOM_FIELDS
        if unknown:
            raise ValueError(f"Unknown room fields: {sorted(unknown)}")
        room = self.get_room(room_id)
        if 'game_id' in fields:
            room.game_id = fields['game_id']
        if 'status' in fields:
            room.status = fields['status']
        db.session.add(room)
        db.session.commit()
        self._publish_room(room)
        return room

    @_store_call
    def swap_room_state(
        self,
        room_id,
        expected_version: int,
        state: dict,
        *,
        status: Optional[str] = None,
        turn_player_id: Optional[int] = None,
        clear_turns: bool = False,
        player_fields: Optional[Dict[int, Dict[str, Any]]] = None,
        remove_player_id: Optional[int] = None,
    ) -> Optional[Room]:
        """Write ``state`` only if the room is still at ``expected_version``.

        Turn flags (``turn_player_id``, or nobody with ``clear_turns``),
        per-player fields and the removal of ``remove_player_id`` are
        written in the same transaction. Returns the updated room, or None
        on a version conflict (nothing is written in that case).
        """
        new_version = int(expected_version) + 1
        values = {
            'state': json.dumps(dict(state, version=new_version) if state else {}),
            'state_version': new_version,
            'updated_at': _utcnow(),
        }
        if status is not None:
            values['status'] = status
        result = db.session.execute(
            update(Room)
            .where(Room.id == room_id, Room.state_version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            # Distinguish a vanished room from a lost race
            self.get_room(room_id)
            return None
        removed = None
        if remove_player_id is not None:
            leaving = db.session.get(Player, remove_player_id)
            if leaving is not None and leaving.room_id == room_id:
                removed = leaving.to_dict()
                db.session.delete(leaving)
                db.session.flush()
        if turn_player_id is not None or clear_turns:
            self._write_turn_flags(room_id, turn_player_id)
        for player_id, fields in (player_fields or {}).items():
            db.session.execute(
                update(Player)
                .where(Player.id == player_id, Player.room_id == room_id)
                .values(**_encode_player_fields(fields))
                .execution_options(synchronize_session=False)
            )
        db.session.commit()
        db.session.expire_all()
        room = self.get_room(room_id)
        self._publish_room(room)
        if removed is not None:
            # Player subscribers re-fetch the whole list, so one event covers the flags too
            self._publish_player(DELETE, removed)
        elif turn_player_id is not None or clear_turns or player_fields:
            self._publish_player(UPDATE, {'room_id': room.id})
        return room

    # ---- players ----

    @_store_call
    def get_player(self, player_id) -> Player:
        player = db.session.get(Player, player_id) if player_id is not None else None
        if not player:
            raise NotFound('Player not found.')
        return player

    @_store_call
    def list_players(self, room_id) -> List[Player]:
        return (
            Player.query.filter_by(room_id=room_id)
            .order_by(Player.created_at.asc(), Player.id.asc())
            .all()
        )

    @_store_call
    def insert_player(self, room_id, name: str, is_host: bool = False) -> Player:
        self.get_room(room_id)
        player = Player(room_id=room_id, name=name, is_host=bool(is_host))
        db.session.add(player)
        db.session.commit()
        self._publish_player(INSERT, player.to_dict())
        return player

    @_store_call
    def update_player(self, player_id, **fields) -> Player:
        values = _encode_player_fields(fields)
        player = self.get_player(player_id)
        for key, value in values.items():
            setattr(player, key, value)
        db.session.add(player)
        db.session.commit()
        self._publish_player(UPDATE, player.to_dict())
        return player

    @_store_call
    def delete_player(self, player_id) -> None:
        player = self.get_player(player_id)
        row = player.to_dict()
        db.session.delete(player)
        db.session.commit()
        self._publish_player(DELETE, row)

    @_store_call
    def set_turn_flags(self, room_id, turn_player_id: Optional[int]) -> None:
        """Mark exactly ``turn_player_id`` as holding the turn, in one write."""
        self._write_turn_flags(room_id, turn_player_id)
        db.session.commit()
        db.session.expire_all()
        self._publish_player(UPDATE, {'room_id': room_id})

    def _write_turn_flags(self, room_id, turn_player_id: Optional[int]) -> None:
        if turn_player_id is None:
            is_turn = False
        else:
            is_turn = case((Player.id == turn_player_id, True), else_=False)
        db.session.execute(
            update(Player)
            .where(Player.room_id == room_id)
            .values(is_turn=is_turn)
            .execution_options(synchronize_session=False)
        )

    # ---- change notification ----

    def subscribe_room(self, room_id, on_update: Callable[[dict], Any]):
        """Room UPDATE events for one room; the callback gets the new row."""
        return self.feed.subscribe(
            ROOM_TABLE,
            lambda event, row: on_update(row),
            events={UPDATE},
            key=room_id,
        )

    def subscribe_players(self, room_id, on_change: Callable[[List[dict]], Any]):
        """Full player list re-fetch on any change that could touch this room.

        INSERT and UPDATE are scoped to the room; DELETE is not, because a
        deleted row may no longer carry enough data to be filtered.
        """
        def refetch(event, row):
            on_change([p.to_dict() for p in self.list_players(room_id)])

        return SubscriptionGroup([
            self.feed.subscribe(PLAYER_TABLE, refetch, events={INSERT, UPDATE}, key=room_id),
            self.feed.subscribe(PLAYER_TABLE, refetch, events={DELETE}),
        ])

    def _publish_room(self, room: Room) -> None:
        self.feed.publish(ROOM_TABLE, UPDATE, room.to_dict(), key=room.id)

    def _publish_player(self, event: str, row: dict) -> None:
        self.feed.publish(PLAYER_TABLE, event, row, key=row.get('room_id'))


def get_store() -> RoomStore:
    return current_app.extensions['partyroom_store']

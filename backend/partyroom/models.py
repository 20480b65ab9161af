from partyroom import db
from datetime import datetime, timezone
import json
import string
import random

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits

STATUS_WAITING = 'waiting'
STATUS_IN_PROGRESS = 'in_progress'


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _load_json(raw):
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def generate_room_code(length=4):
    """Generate a short, shareable room code (not checked for uniqueness)."""
    return ''.join(random.choices(ROOM_CODE_ALPHABET, k=length))


class Game(db.Model):
    """Catalog entry. Seeded out-of-band, never mutated by the room engine."""
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    slug = db.Column(db.String(64), unique=True, nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    icon = db.Column(db.String(16), nullable=True)
    min_players = db.Column(db.Integer, nullable=False, default=2)
    max_players = db.Column(db.Integer, nullable=False, default=6)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'description': self.description,
            'icon': self.icon,
            'min_players': self.min_players,
            'max_players': self.max_players,
        }


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(8), unique=True, nullable=False, index=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=True)
    status = db.Column(db.String(32), default=STATUS_WAITING, nullable=False)  # waiting, in_progress
    state = db.Column(db.Text, nullable=False, default='{}')  # JSON blob owned by the selected game
    state_version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
    game = db.relationship('Game')
    players = db.relationship(
        'Player',
        back_populates='room',
        cascade='all, delete-orphan',
    )

    @property
    def state_data(self):
        return _load_json(self.state)

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'game_id': self.game_id,
            'status': self.status,
            'state': self.state_data,
            'state_version': self.state_version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    is_turn = db.Column(db.Boolean, default=False, nullable=False)
    is_loser = db.Column(db.Boolean, default=False, nullable=False)
    extra = db.Column(db.Text, nullable=False, default='{}')  # per-game auxiliary data
    is_host = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    room = db.relationship('Room', back_populates='players')

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'name': self.name,
            'is_turn': self.is_turn,
            'is_loser': self.is_loser,
            'extra': _load_json(self.extra),
            'is_host': self.is_host,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

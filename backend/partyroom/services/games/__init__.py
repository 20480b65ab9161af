"""Per-game state machines.

Each game module owns the shape of ``Room.state`` for its slug and
exposes the same functions:

- ``initial_state(rng=None, config=None) -> dict``
- ``apply_action(state, players, player_id, action) -> Outcome``
- ``public_state(state) -> dict``

``players`` is the turn-ordered list of ``{'id', 'name'}`` dicts. The
functions are pure; persisting the result is the lifecycle's job. Every
state carries a ``game`` tag naming the module that produced it.
"""

from partyroom.errors import InvalidState
from partyroom.services.games.base import Outcome
from partyroom.services.games import bomb_number

_REGISTRY = {}


def register_game(slug, module):
    _REGISTRY[slug] = module


def get_game_module(slug):
    module = _REGISTRY.get(slug)
    if module is None:
        raise InvalidState(f'Unsupported game: {slug}')
    return module


def registered_slugs():
    return sorted(_REGISTRY)


register_game(bomb_number.SLUG, bomb_number)

__all__ = ['Outcome', 'get_game_module', 'register_game', 'registered_slugs']

"""Bomb Number: players take turns guessing inside a shrinking range.

Each wrong guess cuts the range down to the side that still holds the
bomb; the player who names the bomb loses and everybody else wins.
"""

import copy
import random
from datetime import datetime, timezone

from partyroom.errors import InvalidInput, InvalidState
from partyroom.services.games.base import Outcome
from partyroom.services.turns import rotate_turn, turn_index

SLUG = 'bomb-number'
DEFAULT_MIN = 1
DEFAULT_MAX = 100
BOMB_RESULT = '💥 BOMB!'


def initial_state(rng=None, config=None):
    config = config or {}
    low = int(config.get('BOMB_MIN', DEFAULT_MIN))
    high = int(config.get('BOMB_MAX', DEFAULT_MAX))
    if low > high:
        raise ValueError(f'BOMB_MIN ({low}) must not exceed BOMB_MAX ({high})')
    rng = rng or random
    return {
        'game': SLUG,
        'minRange': low,
        'maxRange': high,
        'bombNumber': rng.randint(low, high),
        'currentPlayerIndex': 0,
        'gameHistory': [],
        'gameOver': False,
        'winner': None,
        'gameStarted': True,
    }


def _range_message(low, high):
    return f'Please enter a number between {low} and {high}.'


def parse_guess(raw, low, high) -> int:
    if isinstance(raw, bool):
        raise InvalidInput(_range_message(low, high), details={'min': low, 'max': high})
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            pass
    raise InvalidInput(_range_message(low, high), details={'min': low, 'max': high})


def apply_action(state, players, player_id, action):
    if state.get('gameOver'):
        raise InvalidState('This round is over. Start a new game to keep playing.')
    if not players:
        raise InvalidState('There are no players in this room.')

    index = turn_index(players, state.get('currentPlayerIndex', 0))
    current = players[index]
    if current['id'] != player_id:
        raise InvalidState(f"It is {current['name']}'s turn.")

    low, high = state['minRange'], state['maxRange']
    raw = action.get('guess') if isinstance(action, dict) else action
    guess = parse_guess(raw, low, high)
    if not low <= guess <= high:
        raise InvalidInput(_range_message(low, high), details={'min': low, 'max': high})

    new_state = copy.deepcopy(state)
    bomb = state['bombNumber']
    loser_id = None
    if guess == bomb:
        new_state['gameOver'] = True
        others = [p['name'] for i, p in enumerate(players) if i != index]
        new_state['winner'] = ', '.join(others) or 'Others'
        loser_id = current['id']
        result = BOMB_RESULT
    elif guess < bomb:
        new_state['minRange'] = guess + 1
        result = f'New range: {guess + 1}-{high}'
    else:
        new_state['maxRange'] = guess - 1
        result = f'New range: {low}-{guess - 1}'

    new_state['gameHistory'] = list(state.get('gameHistory') or []) + [{
        'player': current['name'],
        'playerId': current['id'],
        'guess': guess,
        'result': result,
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }]

    next_index = None
    if not new_state['gameOver']:
        next_index = rotate_turn(players, index)
        new_state['currentPlayerIndex'] = next_index
    else:
        new_state['currentPlayerIndex'] = index

    return Outcome(
        state=new_state,
        message=result,
        game_over=new_state['gameOver'],
        loser_id=loser_id,
        next_turn_index=next_index,
    )


def public_state(state):
    """The state as clients may see it: the bomb stays hidden until it goes off."""
    if not state or state.get('gameOver'):
        return dict(state or {})
    visible = dict(state)
    visible.pop('bombNumber', None)
    return visible

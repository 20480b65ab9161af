import copy
import random

import pytest

from partyroom.errors import InvalidInput, InvalidState
from partyroom.services.games import bomb_number, get_game_module, registered_slugs
from conftest import FixedRng

ALICE = {'id': 1, 'name': 'Alice'}
BOB = {'id': 2, 'name': 'Bob'}
CARA = {'id': 3, 'name': 'Cara'}


def _state(bomb=42, **overrides):
    state = bomb_number.initial_state(rng=FixedRng(bomb))
    state.update(overrides)
    return state


def test_initial_state_shape():
    state = bomb_number.initial_state(rng=FixedRng(42))
    assert state == {
        'game': 'bomb-number',
        'minRange': 1,
        'maxRange': 100,
        'bombNumber': 42,
        'currentPlayerIndex': 0,
        'gameHistory': [],
        'gameOver': False,
        'winner': None,
        'gameStarted': True,
    }


def test_initial_state_draws_inside_configured_range():
    rng = random.Random(7)
    for _ in range(200):
        state = bomb_number.initial_state(rng=rng, config={'BOMB_MIN': 10, 'BOMB_MAX': 20})
        assert 10 <= state['bombNumber'] <= 20
        assert (state['minRange'], state['maxRange']) == (10, 20)


def test_registry_resolves_slug():
    assert get_game_module('bomb-number') is bomb_number
    assert registered_slugs() == ['bomb-number']
    with pytest.raises(InvalidState):
        get_game_module('tic-tac-toe')


def test_guess_above_bomb_narrows_max_and_rotates():
    outcome = bomb_number.apply_action(_state(), [ALICE, BOB], 1, {'guess': 50})
    assert outcome.state['maxRange'] == 49
    assert outcome.state['minRange'] == 1
    assert outcome.state['currentPlayerIndex'] == 1
    assert outcome.next_turn_index == 1
    assert outcome.message == 'New range: 1-49'
    assert not outcome.game_over
    entry = outcome.state['gameHistory'][0]
    assert entry['player'] == 'Alice'
    assert entry['playerId'] == 1
    assert entry['guess'] == 50
    assert entry['result'] == 'New range: 1-49'
    assert entry['timestamp']


def test_guess_below_bomb_narrows_min():
    outcome = bomb_number.apply_action(_state(), [ALICE, BOB], 1, {'guess': 10})
    assert outcome.state['minRange'] == 11
    assert outcome.message == 'New range: 11-100'


def test_bomb_hit_ends_round_without_rotation():
    state = _state(currentPlayerIndex=1)
    outcome = bomb_number.apply_action(state, [ALICE, BOB], 2, {'guess': 42})
    assert outcome.game_over
    assert outcome.state['gameOver'] is True
    assert outcome.state['winner'] == 'Alice'
    assert outcome.loser_id == 2
    assert outcome.next_turn_index is None
    assert outcome.state['currentPlayerIndex'] == 1
    assert outcome.state['gameHistory'][-1]['result'] == bomb_number.BOMB_RESULT


def test_winner_lists_every_other_player():
    outcome = bomb_number.apply_action(_state(), [ALICE, BOB, CARA], 1, {'guess': 42})
    assert outcome.state['winner'] == 'Bob, Cara'


def test_solo_player_hitting_bomb_names_others():
    outcome = bomb_number.apply_action(_state(), [ALICE], 1, {'guess': 42})
    assert outcome.state['winner'] == 'Others'


def test_input_state_is_not_mutated():
    state = _state()
    before = copy.deepcopy(state)
    bomb_number.apply_action(state, [ALICE, BOB], 1, {'guess': 50})
    assert state == before


@pytest.mark.parametrize('guess', [0, 101, -5, 1000])
def test_out_of_range_guess_rejected_without_change(guess):
    state = _state()
    before = copy.deepcopy(state)
    with pytest.raises(InvalidInput) as err:
        bomb_number.apply_action(state, [ALICE, BOB], 1, {'guess': guess})
    assert 'between 1 and 100' in str(err.value)
    assert err.value.details == {'min': 1, 'max': 100}
    assert state == before


def test_guess_outside_narrowed_range_restates_bounds():
    state = _state(minRange=30, maxRange=60)
    with pytest.raises(InvalidInput) as err:
        bomb_number.apply_action(state, [ALICE, BOB], 1, {'guess': 61})
    assert 'between 30 and 60' in str(err.value)


@pytest.mark.parametrize('guess', ['abc', '', None, True, 4.5, [3]])
def test_non_numeric_guess_rejected(guess):
    with pytest.raises(InvalidInput):
        bomb_number.apply_action(_state(), [ALICE, BOB], 1, {'guess': guess})


def test_numeric_strings_are_accepted():
    outcome = bomb_number.apply_action(_state(), [ALICE, BOB], 1, {'guess': ' 50 '})
    assert outcome.state['maxRange'] == 49


def test_out_of_turn_guess_rejected():
    with pytest.raises(InvalidState) as err:
        bomb_number.apply_action(_state(), [ALICE, BOB], 2, {'guess': 50})
    assert "Alice's turn" in str(err.value)


def test_guess_after_game_over_rejected():
    state = _state(gameOver=True, winner='Bob')
    with pytest.raises(InvalidState):
        bomb_number.apply_action(state, [ALICE, BOB], 1, {'guess': 50})


def test_every_miss_shrinks_range_and_keeps_bomb_inside():
    rng = random.Random(1234)
    for _ in range(50):
        bomb = rng.randint(1, 100)
        state = _state(bomb=bomb)
        players = [ALICE, BOB, CARA]
        while not state['gameOver']:
            low, high = state['minRange'], state['maxRange']
            guess = rng.randint(low, high)
            mover = players[state['currentPlayerIndex']]
            outcome = bomb_number.apply_action(state, players, mover['id'], {'guess': guess})
            new = outcome.state
            if guess != bomb:
                assert new['maxRange'] - new['minRange'] < high - low
                assert new['minRange'] <= bomb <= new['maxRange']
            state = new
        assert state['gameHistory'][-1]['guess'] == bomb


def test_public_state_hides_bomb_until_game_over():
    state = _state()
    assert 'bombNumber' not in bomb_number.public_state(state)
    over = _state(gameOver=True, winner='Bob')
    assert bomb_number.public_state(over)['bombNumber'] == 42

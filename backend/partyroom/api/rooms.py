from flask import Blueprint, jsonify, request, current_app
from partyroom.errors import RoomError, error_response
from partyroom.identity import current_player_id, forget_player, remember_player, require_player_id
from partyroom.services import lifecycle
from partyroom.services import rooms as directory


rooms = Blueprint('rooms', __name__)


@rooms.errorhandler(RoomError)
def handle_room_error(exc):
    if exc.status_code >= 500:
        current_app.logger.error(f"[api-error] path={request.path} error={exc}")
    return error_response(exc)


def _payload():
    return request.get_json(silent=True) or {}


@rooms.route('/games', methods=['GET'])
def list_games():
    return jsonify([g.to_dict() for g in directory.list_games()])


@rooms.route('/rooms', methods=['POST'])
def create_room():
    """
    Creates a room and adds the caller as its host.
    """
    data = _payload()
    room, player = directory.create_room(data.get('name'))
    remember_player(player.id)
    return jsonify({
        'room': lifecycle.public_room(room.to_dict()),
        'player': player.to_dict(),
    }), 201


@rooms.route('/rooms/join', methods=['POST'])
def join_room():
    data = _payload()
    room_id, player = directory.join_room(data.get('code'), data.get('name'))
    remember_player(player.id)
    return jsonify({'room_id': room_id, 'player': player.to_dict()}), 201


@rooms.route('/rooms/<int:room_id>', methods=['GET'])
def get_room(room_id):
    payload = lifecycle.room_snapshot(room_id)
    payload['me'] = current_player_id()
    return jsonify(payload)


@rooms.route('/rooms/<int:room_id>/leave', methods=['POST'])
def leave_room(room_id):
    player_id = require_player_id()
    directory.leave_room(room_id, player_id)
    forget_player()
    return jsonify({'room_id': room_id, 'message': 'You have left the room.'})


@rooms.route('/rooms/<int:room_id>/game', methods=['PUT'])
def select_game(room_id):
    data = _payload()
    room = directory.select_game(room_id, require_player_id(), data.get('game_id'))
    return jsonify(lifecycle.public_room(room.to_dict()))


@rooms.route('/rooms/<int:room_id>/start', methods=['POST'])
def start_game(room_id):
    room = lifecycle.start_game(room_id, require_player_id())
    return jsonify(lifecycle.public_room(room.to_dict()))


@rooms.route('/rooms/<int:room_id>/enter', methods=['POST'])
def enter_game(room_id):
    """
    Game screen entry: returns the round, drawing one if the room has none.
    """
    require_player_id()
    lifecycle.enter_game(room_id)
    payload = lifecycle.room_snapshot(room_id)
    payload['me'] = current_player_id()
    return jsonify(payload)


@rooms.route('/rooms/<int:room_id>/guess', methods=['POST'])
def submit_guess(room_id):
    data = _payload()
    room, outcome = lifecycle.submit_action(room_id, require_player_id(), {'guess': data.get('guess')})
    return jsonify({
        'room': lifecycle.public_room(room.to_dict()),
        'result': outcome.message,
        'game_over': outcome.game_over,
    })


@rooms.route('/rooms/<int:room_id>/play-again', methods=['POST'])
def play_again(room_id):
    room = lifecycle.play_again(room_id, require_player_id())
    return jsonify(lifecycle.public_room(room.to_dict()))


@rooms.route('/rooms/<int:room_id>/leave-game', methods=['POST'])
def leave_game(room_id):
    """
    Sends the room back to the lobby. Always succeeds for the caller;
    `ok` is false when the reset could not be stored.
    """
    directory.require_member(room_id, require_player_id())
    ok = lifecycle.leave_game(room_id)
    return jsonify({'ok': ok, 'room_id': room_id})

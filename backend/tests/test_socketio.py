def _names(events, name):
    return [e for e in events if e['name'] == name]


def test_socket_connect_and_join(sio_client):
    # Ensure we are connected to /ws
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')

    sio_client.emit('join_room', {'room_id': 1}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] in ('connected', 'joined') for pkt in received)


def test_join_requires_room_id(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_room', {}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert _names(received, 'error')


def test_ping_pong(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    pongs = _names(sio_client.get_received('/ws'), 'pong')
    assert pongs and pongs[0]['args'][0] == {'n': 1}


def test_room_changes_are_pushed(make_client, sio_client):
    alice, bob = make_client(), make_client()
    room = alice.post('/api/rooms', json={'name': 'Alice'}).get_json()['room']
    sio_client.emit('join_room', {'room_id': room['id']}, namespace='/ws')
    sio_client.get_received('/ws')  # flush

    bob.post('/api/rooms/join', json={'code': room['code'], 'name': 'Bob'})
    updates = _names(sio_client.get_received('/ws'), 'players_update')
    assert updates
    latest = updates[-1]['args'][0]
    assert latest['room_id'] == room['id']
    assert [p['name'] for p in latest['players']] == ['Alice', 'Bob']

    game_id = alice.get('/api/games').get_json()[0]['id']
    alice.put(f"/api/rooms/{room['id']}/game", json={'game_id': game_id})
    alice.post(f"/api/rooms/{room['id']}/start")
    room_updates = _names(sio_client.get_received('/ws'), 'room_update')
    assert room_updates[-1]['args'][0]['status'] == 'in_progress'

    bob.post(f"/api/rooms/{room['id']}/enter")
    room_updates = _names(sio_client.get_received('/ws'), 'room_update')
    pushed_state = room_updates[-1]['args'][0]['state']
    assert pushed_state['minRange'] == 1
    assert 'bombNumber' not in pushed_state


def test_other_rooms_do_not_hear_changes(make_client, sio_client):
    alice, carol = make_client(), make_client()
    room = alice.post('/api/rooms', json={'name': 'Alice'}).get_json()['room']
    other = carol.post('/api/rooms', json={'name': 'Carol'}).get_json()['room']
    sio_client.emit('join_room', {'room_id': other['id']}, namespace='/ws')
    sio_client.get_received('/ws')

    make_client().post('/api/rooms/join', json={'code': room['code'], 'name': 'Bob'})
    assert not _names(sio_client.get_received('/ws'), 'players_update')


def test_leave_room_channel_stops_pushes(make_client, sio_client):
    alice = make_client()
    room = alice.post('/api/rooms', json={'name': 'Alice'}).get_json()['room']
    sio_client.emit('join_room', {'room_id': room['id']}, namespace='/ws')
    sio_client.emit('leave_room', {'room_id': room['id']}, namespace='/ws')
    assert _names(sio_client.get_received('/ws'), 'left')

    make_client().post('/api/rooms/join', json={'code': room['code'], 'name': 'Bob'})
    assert not _names(sio_client.get_received('/ws'), 'players_update')


def test_host_disconnect_hands_host_over(flask_app, make_client, sio_client):
    alice, bob = make_client(), make_client()
    created = alice.post('/api/rooms', json={'name': 'Alice'}).get_json()
    room_id, alice_id = created['room']['id'], created['player']['id']
    bob.post('/api/rooms/join', json={'code': created['room']['code'], 'name': 'Bob'})

    from partyroom import socketio as _sio
    host_client = _sio.test_client(flask_app, namespace='/ws')
    host_client.emit('join_room', {'room_id': room_id, 'player_id': alice_id}, namespace='/ws')

    # Guest watches the room
    sio_client.emit('join_room', {'room_id': room_id}, namespace='/ws')
    sio_client.get_received('/ws')  # flush

    # Host's socket drops -> seat released, Bob promoted
    host_client.disconnect(namespace='/ws')
    updates = _names(sio_client.get_received('/ws'), 'players_update')
    assert updates
    players = updates[-1]['args'][0]['players']
    assert [(p['name'], p['is_host']) for p in players] == [('Bob', True)]

    state = bob.get(f'/api/rooms/{room_id}').get_json()
    assert [p['name'] for p in state['players']] == ['Bob']


def test_seat_survives_while_another_socket_is_open(flask_app, make_client, sio_client):
    alice, bob = make_client(), make_client()
    created = alice.post('/api/rooms', json={'name': 'Alice'}).get_json()
    room_id, alice_id = created['room']['id'], created['player']['id']
    bob.post('/api/rooms/join', json={'code': created['room']['code'], 'name': 'Bob'})

    from partyroom import socketio as _sio
    first_tab = _sio.test_client(flask_app, namespace='/ws')
    second_tab = _sio.test_client(flask_app, namespace='/ws')
    for tab in (first_tab, second_tab):
        tab.emit('join_room', {'room_id': room_id, 'player_id': alice_id}, namespace='/ws')

    # One tab closing keeps the seat
    first_tab.disconnect(namespace='/ws')
    players = bob.get(f'/api/rooms/{room_id}').get_json()['players']
    assert [(p['name'], p['is_host']) for p in players] == [('Alice', True), ('Bob', False)]

    # The last one releases it
    second_tab.disconnect(namespace='/ws')
    players = bob.get(f'/api/rooms/{room_id}').get_json()['players']
    assert [(p['name'], p['is_host']) for p in players] == [('Bob', True)]


def test_rejoining_the_same_seat_counts_once(flask_app, make_client):
    alice = make_client()
    created = alice.post('/api/rooms', json={'name': 'Alice'}).get_json()
    room_id, alice_id = created['room']['id'], created['player']['id']
    make_client().post('/api/rooms/join', json={'code': created['room']['code'], 'name': 'Bob'})

    from partyroom import socketio as _sio
    tab = _sio.test_client(flask_app, namespace='/ws')
    tab.emit('join_room', {'room_id': room_id, 'player_id': alice_id}, namespace='/ws')
    tab.emit('join_room', {'room_id': room_id, 'player_id': alice_id}, namespace='/ws')
    tab.disconnect(namespace='/ws')
    players = alice.get(f'/api/rooms/{room_id}').get_json()['players']
    assert [p['name'] for p in players] == ['Bob']

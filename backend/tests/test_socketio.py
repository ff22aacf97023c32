def _names(events):
    return [e['name'] for e in events]


def test_socket_connect(sio_client):
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')
    assert 'connected' in _names(sio_client.get_received('/ws'))


def test_join_quiz_requires_code(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_quiz', {}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert received[0]['name'] == 'error'


def test_join_quiz_reports_current_version(host_client, sio_client):
    quiz = host_client.post('/api/quizzes', json={}).get_json()
    sio_client.get_received('/ws')
    sio_client.emit('join_quiz', {'code': quiz['code'].lower()}, namespace='/ws')
    joined = [e for e in sio_client.get_received('/ws') if e['name'] == 'joined']
    assert joined
    payload = joined[0]['args'][0]
    assert payload == {'room': f"quiz:{quiz['code']}", 'version': quiz['version']}


def test_state_update_broadcast_after_changes(host_client, client, sio_client):
    code = host_client.post('/api/quizzes', json={}).get_json()['code']
    sio_client.emit('join_quiz', {'code': code}, namespace='/ws')
    sio_client.get_received('/ws')

    res = client.post('/api/quizzes/join', json={'code': code, 'display_name': 'Alice'})
    token = res.get_json()['participant']['device_token']
    updates = [e for e in sio_client.get_received('/ws') if e['name'] == 'state_update']
    assert updates and updates[-1]['args'][0]['code'] == code

    client.post(
        f'/api/quizzes/{code}/blocks',
        json={'title': 'Round', 'questions': [{'text': 'Q', 'correct_answer': 'A'}]},
        headers={'X-Player-Token': token},
    )
    sio_client.get_received('/ws')
    started = host_client.post(f'/api/quizzes/{code}/actions', json={'action': 'START_GAME'}).get_json()
    updates = [e for e in sio_client.get_received('/ws') if e['name'] == 'state_update']
    assert updates[-1]['args'][0] == {'code': code, 'version': started['version']}


def test_leave_quiz_stops_updates(host_client, client, sio_client):
    code = host_client.post('/api/quizzes', json={}).get_json()['code']
    sio_client.emit('join_quiz', {'code': code}, namespace='/ws')
    sio_client.emit('leave_quiz', {'code': code}, namespace='/ws')
    assert 'left' in _names(sio_client.get_received('/ws'))
    client.post('/api/quizzes/join', json={'code': code, 'display_name': 'Bob'})
    assert 'state_update' not in _names(sio_client.get_received('/ws'))


def test_ping_pong(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'t': 1}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert received[0]['name'] == 'pong'
    assert received[0]['args'][0] == {'t': 1}

def create_quiz(host_client, **settings):
    res = host_client.post('/api/quizzes', json=settings)
    assert res.status_code == 201
    return res.get_json()


def join(client, code, name, token=None):
    body = {'code': code, 'display_name': name}
    if token:
        body['device_token'] = token
    return client.post('/api/quizzes/join', json=body)


def as_player(token):
    return {'X-Player-Token': token}


def action(host_client, code, name, **payload):
    return host_client.post(f'/api/quizzes/{code}/actions', json={'action': name, 'payload': payload})


def save_block(client, code, token, title, questions):
    return client.post(
        f'/api/quizzes/{code}/blocks',
        json={'title': title, 'questions': questions},
        headers=as_player(token),
    )


def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert 'message' in res.get_json()


def test_register_login_and_me(client):
    assert client.post('/register', json={'username': 'h', 'password': 'pw'}).status_code == 201
    assert client.post('/register', json={'username': 'h', 'password': 'pw'}).status_code == 400
    client.post('/logout')
    assert client.get('/me').status_code == 401
    assert client.post('/login', json={'username': 'h', 'password': 'nope'}).status_code == 401
    assert client.post('/login', json={'username': 'h', 'password': 'pw'}).status_code == 200
    assert client.get('/me').get_json()['username'] == 'h'


def test_create_requires_host_login(client):
    res = client.post('/api/quizzes', json={})
    assert res.status_code == 401


def test_create_and_list_host_quizzes(host_client):
    first = create_quiz(host_client, name='One')
    second = create_quiz(host_client, name='Two')
    listed = host_client.get('/api/quizzes/host').get_json()['quizzes']
    assert [q['code'] for q in listed] == [second['code'], first['code']]
    assert listed[1]['is_archived'] is True


def test_join_returns_token_and_rejoin_is_idempotent(host_client, client):
    code = create_quiz(host_client)['code']
    res = join(client, code.lower(), 'Alice')
    assert res.status_code == 201
    alice = res.get_json()['participant']
    assert alice['device_token']

    res = join(client, code, 'alice ', token=alice['device_token'])
    assert res.status_code == 200
    assert res.get_json()['rejoined'] is True
    assert res.get_json()['participant']['id'] == alice['id']


def test_join_unknown_code(client):
    res = join(client, 'ZZZZZZ', 'Alice')
    assert res.status_code == 404
    assert res.get_json()['code'] == 'not_found'


def test_join_rejects_empty_name(host_client, client):
    code = create_quiz(host_client)['code']
    res = join(client, code, '   ')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'validation_error'


def test_state_without_token_asks_to_join(host_client, client):
    code = create_quiz(host_client)['code']
    state = client.get(f'/api/quizzes/{code}/state').get_json()
    assert state['viewer'] == {'role': 'guest', 'participant_id': None, 'needs_join': True}


def test_anonymous_client_is_never_the_host(host_client, client):
    code = create_quiz(host_client)['code']
    assert host_client.get(f'/api/quizzes/{code}/state').get_json()['viewer']['role'] == 'host'
    state = client.get(f'/api/quizzes/{code}/state').get_json()
    assert state['viewer']['role'] == 'guest'
    assert client.get(f'/api/quizzes/{code}/grading').status_code == 403
    assert client.get('/me').status_code == 401


def test_creation_state_shows_only_own_block(host_client, client):
    code = create_quiz(host_client)['code']
    alice = join(client, code, 'Alice').get_json()['participant']
    bob = join(client, code, 'Bob').get_json()['participant']
    save_block(client, code, alice['device_token'], 'Alice round', [{'text': 'Q', 'correct_answer': 'A'}])
    save_block(client, code, bob['device_token'], 'Bob round', [{'text': 'Q', 'correct_answer': 'B'}])

    state = client.get(f'/api/quizzes/{code}/state', headers=as_player(alice['device_token'])).get_json()
    assert [b['title'] for b in state['blocks']] == ['Alice round']
    tokens = {p['display_name']: p.get('device_token') for p in state['participants']}
    assert tokens == {'Alice': alice['device_token'], 'Bob': None}

    host_state = host_client.get(f'/api/quizzes/{code}/state').get_json()
    assert host_state['viewer']['role'] == 'host'
    assert len(host_state['blocks']) == 2


def test_block_save_requires_token(host_client, client):
    code = create_quiz(host_client)['code']
    res = client.post(f'/api/quizzes/{code}/blocks', json={'title': 'T', 'questions': []})
    assert res.status_code == 403


def test_host_block_requires_host(host_client, client):
    code = create_quiz(host_client)['code']
    body = {'author_type': 'host', 'title': 'Warmup', 'questions': [{'text': 'Q', 'correct_answer': 'A'}]}
    assert client.post(f'/api/quizzes/{code}/blocks', json=body).status_code == 403
    res = host_client.post(f'/api/quizzes/{code}/blocks', json=body)
    assert res.status_code == 201
    assert res.get_json()['block']['author_type'] == 'host'


def test_actions_require_host_and_known_name(host_client, client):
    code = create_quiz(host_client)['code']
    res = client.post(f'/api/quizzes/{code}/actions', json={'action': 'START_GAME'})
    assert res.status_code == 403
    res = action(host_client, code, 'JUMP')
    assert res.status_code == 400
    res = action(host_client, code, 'ADVANCE', confirm='yes')
    assert res.status_code == 400


def test_start_without_participants_is_a_precondition_failure(host_client):
    code = create_quiz(host_client)['code']
    res = action(host_client, code, 'START_GAME')
    assert res.status_code == 409
    body = res.get_json()
    assert body['code'] == 'precondition_failed'
    assert body['action'] == 'START_GAME'
    assert 'retryable' not in body


def test_stale_expected_version_is_a_retryable_conflict(host_client, client):
    code = create_quiz(host_client)['code']
    alice = join(client, code, 'Alice').get_json()['participant']
    save_block(client, code, alice['device_token'], 'Round', [{'text': 'Q', 'correct_answer': 'A'}])
    version = host_client.get(f'/api/quizzes/{code}/state').get_json()['quiz']['version']
    res = action(host_client, code, 'START_GAME', expected_version=version + 5)
    assert res.status_code == 409
    assert res.get_json()['code'] == 'conflict'
    assert res.get_json()['retryable'] is True
    res = action(host_client, code, 'START_GAME', expected_version=version)
    assert res.status_code == 200


def test_full_game_over_http(host_client, client):
    code = create_quiz(host_client, name='Friday')['code']
    alice = join(client, code, 'Alice').get_json()['participant']
    bob = join(client, code, 'Bob').get_json()['participant']
    ta, tb = alice['device_token'], bob['device_token']

    res = host_client.post(f'/api/quizzes/{code}/blocks', json={
        'author_type': 'host', 'title': 'Host round',
        'questions': [{'text': 'Capital of France?', 'type': 'open', 'correct_answer': 'Paris'}],
    })
    host_q = res.get_json()['questions'][0]
    res = save_block(client, code, ta, 'Alice round', [
        {'text': '2 + 2?', 'type': 'mcq', 'options': ['3', '4'], 'correct_answer': '4'},
    ])
    assert res.status_code == 201
    alice_block = res.get_json()['block']
    alice_q = res.get_json()['questions'][0]
    save_block(client, code, tb, 'Bob round', [
        {'text': 'Sky colour?', 'type': 'mcq', 'options': ['Blue', 'Green'], 'correct_answer': 'Blue'},
    ])

    quiz = action(host_client, code, 'START_GAME').get_json()
    assert (quiz['status'], quiz['phase']) == ('PLAY', 'QUESTION')
    assert quiz['current_question_id'] == host_q['id']

    # Editing after start is locked
    res = save_block(client, code, ta, 'Late edit', [{'text': 'Q', 'correct_answer': 'A'}])
    assert res.status_code == 423

    res = client.post(f'/api/quizzes/{code}/answers', json={'question_id': host_q['id'], 'answer_text': 'paris'},
                      headers=as_player(tb))
    assert res.status_code == 200
    assert res.get_json()['is_correct'] is None

    # Bob cannot see Alice's question before it is asked
    state = client.get(f'/api/quizzes/{code}/state', headers=as_player(tb)).get_json()
    assert str(alice_block['id']) not in state['questions']
    by_id = {b['id']: b for b in state['blocks']}
    assert by_id[alice_block['id']]['author_participant_id'] is None

    action(host_client, code, 'ADVANCE')
    state = client.get(f'/api/quizzes/{code}/state', headers=as_player(tb)).get_json()
    current = state['current_question']
    assert current['id'] == alice_q['id']
    assert 'correct_answer' not in current
    assert state['current_block']['author_participant_id'] is None

    res = client.post(f'/api/quizzes/{code}/answers', json={'question_id': alice_q['id'], 'answer_text': '4'},
                      headers=as_player(tb))
    assert res.get_json()['is_correct'] is True
    res = client.post(f'/api/quizzes/{code}/answers', json={'question_id': alice_q['id'], 'answer_text': '4'},
                      headers=as_player(ta))
    assert res.status_code == 400

    quiz = action(host_client, code, 'ADVANCE').get_json()
    assert quiz['phase'] == 'AUTHOR_GUESS'
    res = client.post(f'/api/quizzes/{code}/guesses',
                      json={'block_id': alice_block['id'], 'guessed_participant_id': alice['id']},
                      headers=as_player(tb))
    assert res.status_code == 200
    assert res.get_json()['is_correct'] is True

    res = action(host_client, code, 'ADVANCE')
    assert res.status_code == 409
    quiz = action(host_client, code, 'REVEAL').get_json()
    assert quiz['phase'] == 'AUTHOR_REVEAL'
    state = client.get(f'/api/quizzes/{code}/state', headers=as_player(tb)).get_json()
    assert state['current_block']['author_participant_id'] == alice['id']

    action(host_client, code, 'ADVANCE')
    action(host_client, code, 'ADVANCE')
    action(host_client, code, 'REVEAL')
    res = action(host_client, code, 'ADVANCE')
    assert res.status_code == 409
    quiz = action(host_client, code, 'ADVANCE', confirm=True).get_json()
    assert quiz['phase'] == 'GRADING'

    grading = host_client.get(f'/api/quizzes/{code}/grading').get_json()['questions']
    assert len(grading) == 1
    entry = grading[0]['answers'][0]
    assert entry['answer_text'] == 'paris'
    assert client.get(f'/api/quizzes/{code}/grading', headers=as_player(ta)).status_code == 403

    # Scores stay hidden from players until the end
    assert client.get(f'/api/quizzes/{code}/scores').status_code == 409

    quiz = action(host_client, code, 'FINISH', grades=[{'grading_key': entry['grading_key'], 'correct': True}]).get_json()
    assert quiz['status'] == 'FINISHED'
    assert quiz['phase'] is None

    scores = client.get(f'/api/quizzes/{code}/scores').get_json()
    totals = {s['display_name']: s['total'] for s in scores['scores']}
    assert totals == {'Bob': 3, 'Alice': 0}
    assert scores['scores'][0]['display_name'] == 'Bob'

    state = client.get(f'/api/quizzes/{code}/state', headers=as_player(ta)).get_json()
    assert 'scores' in state and 'hardest_block' in state
    assert any(a['participant_id'] == bob['id'] for a in state['answers'])

    quiz = action(host_client, code, 'RESTART').get_json()
    assert quiz['status'] == 'CREATION'
    state = host_client.get(f'/api/quizzes/{code}/state').get_json()
    assert state['answers'] == [] and state['guesses'] == []
    assert len(state['blocks']) == 3


def test_grades_endpoint_overrides_open_answer(host_client, client):
    code = create_quiz(host_client)['code']
    alice = join(client, code, 'Alice').get_json()['participant']
    res = save_block(client, code, alice['device_token'], 'Round', [{'text': 'Q', 'correct_answer': 'A'}])
    res = host_client.post(f'/api/quizzes/{code}/blocks', json={
        'author_type': 'host', 'title': 'Host', 'questions': [{'text': 'H?', 'correct_answer': 'h'}],
    })
    host_q = res.get_json()['questions'][0]
    action(host_client, code, 'START_GAME')
    client.post(f'/api/quizzes/{code}/answers', json={'question_id': host_q['id'], 'answer_text': 'H'},
                headers=as_player(alice['device_token']))
    res = host_client.post(f'/api/quizzes/{code}/grades', json={
        'question_id': host_q['id'], 'participant_id': alice['id'], 'is_correct': True,
    })
    assert res.status_code == 200
    assert res.get_json()['is_correct'] is True


def test_rename_self_only(host_client, client):
    code = create_quiz(host_client)['code']
    alice = join(client, code, 'Alice').get_json()['participant']
    bob = join(client, code, 'Bob').get_json()['participant']
    url = f"/api/quizzes/{code}/participants/{alice['id']}"
    res = client.patch(url, json={'display_name': 'Ally'}, headers=as_player(bob['device_token']))
    assert res.status_code == 403
    res = client.patch(url, json={'display_name': 'bob'}, headers=as_player(alice['device_token']))
    assert res.status_code == 400
    res = client.patch(url, json={'display_name': 'Ally'}, headers=as_player(alice['device_token']))
    assert res.get_json()['display_name'] == 'Ally'

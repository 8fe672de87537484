def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert 'Gobachi' in res.get_json()['message']


def test_feeding_config_exposes_windows(client):
    res = client.get('/api/feeding/config')
    assert res.status_code == 200
    data = res.get_json()
    assert data['total_drops'] == 50
    assert data['join_window_ms'] == 10_000
    assert data['result_window_ms'] == 6_000
    assert data['tick_interval_ms'] == 250
    assert data['per_player_bonus'] == 5
    assert data['bonus_cap'] == 15
    assert data['drop_timeout_ms'] == 2200


def test_feeding_config_reports_invalid_settings(flask_app, client):
    flask_app.config['FEED_TOTAL_DROPS'] = 0
    res = client.get('/api/feeding/config')
    assert res.status_code == 500
    assert 'total_drops' in res.get_json()['error']


def test_recent_chat_lists_history(sio_client, client):
    sio_client.emit('chat', {'emoji': '🐶', 'text': 'a new pet was born'}, namespace='/ws')
    data = client.get('/api/chat').get_json()
    assert [e['text'] for e in data['chat']] == ['a new pet was born']
    assert data['presence'] == 1

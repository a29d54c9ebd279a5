import json

from services.ai_gateway import AIServiceError

REPLY = json.dumps({'events': [{'day': 2, 'startTime': 9, 'startMinute': 0, 'endTime': 10, 'endMinute': 0, 'title': 'Standup'}]})


def test_missing_key_is_rejected(test_client, monkeypatch):
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)
    resp = test_client.post('/api/ai', json={'message': 'standup wednesday 9'})
    assert resp.status_code == 400
    assert 'OpenAI API key' in resp.get_json()['error']


def test_interprets_with_settings_key_and_stored_events(test_client, fake_chat):
    test_client.put('/api/user/settings', json={'openaiApiKey': 'sk-user'})
    test_client.post('/api/user/events', json={'title': 'Gym', 'day': 2, 'startTime': 9, 'endTime': 10, 'week': 0})
    calls = fake_chat(REPLY)

    resp = test_client.post('/api/ai', json={'message': 'standup wednesday 9', 'weekOffset': 0})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body['events'][0]['title'] == 'Standup'
    assert body['conflicts'][0]['second'] == 'Gym'
    assert calls[0]['api_key'] == 'sk-user'
    assert '"Gym"' in calls[0]['system']


def test_save_persists_drafts(test_client, fake_chat):
    fake_chat(REPLY)
    resp = test_client.post('/api/ai', json={'message': 'standup', 'weekOffset': 1, 'apiKey': 'sk-body', 'save': True})
    saved = resp.get_json()['events']
    assert saved[0]['id']
    assert saved[0]['week'] == 1
    assert saved[0]['color']
    assert len(test_client.get('/api/user/events?week=1').get_json()) == 1


def test_unavailable_model_returns_502(test_client, fake_chat):
    fake_chat(AIServiceError('quota'))
    resp = test_client.post('/api/ai', json={'message': 'standup', 'apiKey': 'sk-body'})
    assert resp.status_code == 502
    assert resp.get_json()['events'] == []


def test_malformed_reply_returns_message(test_client, fake_chat):
    fake_chat('not json at all')
    resp = test_client.post('/api/ai', json={'message': 'standup', 'apiKey': 'sk-body'})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body['status'] == 'malformed'
    assert body['events'] == []
    assert body['message']


def test_out_of_range_week_offset_is_rejected(test_client, fake_chat):
    calls = fake_chat(REPLY)
    resp = test_client.post('/api/ai', json={'message': 'standup', 'weekOffset': 10 ** 9, 'apiKey': 'sk-body'})
    assert resp.status_code == 400
    assert calls == []

import json
from datetime import date

from ai_service import build_system_prompt, interpret_schedule_request
from services.ai_gateway import AIServiceError
from services.week_dates import build_week_context

TODAY = date(2024, 10, 23)


def _chat(reply, calls=None):
    def chat(system_prompt, user_content, **kwargs):
        if calls is not None:
            calls.append((system_prompt, user_content, kwargs))
        if isinstance(reply, Exception):
            raise reply
        return reply
    return chat


def test_prompt_mentions_week_dates_and_existing_events():
    week = build_week_context(0, TODAY, 'en')
    existing = [{'day': 0, 'startTime': 15, 'startMinute': 0, 'endTime': 17, 'endMinute': 0, 'title': 'Homework'}]
    prompt = build_system_prompt(week, existing, TODAY)
    assert '2024-10-21' in prompt
    assert 'Monday 15:00-17:00: "Homework"' in prompt
    assert 'YEAR: 2024' in prompt


def test_single_call_with_expected_parameters():
    calls = []
    reply = json.dumps({'events': [{'day': 0, 'startTime': 13, 'startMinute': 20, 'endTime': 14, 'endMinute': 0, 'title': 'Call'}]})
    result = interpret_schedule_request('call monday 13:20-14', today=TODAY, api_key='k', chat=_chat(reply, calls))
    assert len(calls) == 1
    assert calls[0][2]['temperature'] == 0.5
    assert calls[0][2]['max_tokens'] == 1000
    assert result['events'][0]['startMinute'] == 15


def test_touching_existing_event_is_not_a_conflict():
    reply = json.dumps({'events': [{'day': 0, 'startTime': 13, 'startMinute': 0, 'endTime': 14, 'endMinute': 0,
                                    'title': 'Toilet time', 'description': ''}]})
    existing = [{'day': 0, 'startHour': 15, 'startMinute': 0, 'endHour': 17, 'endMinute': 0, 'title': 'Homework'}]
    result = interpret_schedule_request(
        'toilet time monday 13:00 - 14:00', 0, existing, today=TODAY, chat=_chat(reply)
    )
    assert result['status'] == 'ok'
    assert result['conflicts'] == []
    assert result['adjustments'] == []
    assert result['message'] is None


def test_overlapping_sport_is_shortened_for_important_meeting():
    reply = json.dumps({'events': [
        {'day': 1, 'startTime': 10, 'startMinute': 0, 'endTime': 12, 'endMinute': 0, 'title': 'Sport'},
        {'day': 1, 'startTime': 11, 'startMinute': 0, 'endTime': 13, 'endMinute': 0, 'title': 'Important meeting'},
    ]})
    result = interpret_schedule_request(
        'tomorrow sport 10-12 but an important meeting 11-13', today=TODAY, chat=_chat(reply)
    )
    sport, meeting = result['events']
    assert (sport['endTime'], sport['endMinute']) == (11, 0)
    assert (meeting['startTime'], meeting['endTime']) == (11, 13)
    assert result['conflicts'] == []
    assert result['adjustments'][0]['action'] == 'shortened'
    assert result['message'] is not None
    assert 'Sport' in result['message']
    assert '11:00' in result['message']


def test_legacy_single_object_is_accepted():
    reply = '{"day": 3, "startHour": 8, "endHour": 9, "title": "Run"}'
    result = interpret_schedule_request('run thursday 8-9', today=TODAY, chat=_chat(reply))
    assert result['events'] == [{'day': 3, 'startTime': 8, 'startMinute': 0, 'endTime': 9, 'endMinute': 0,
                                 'title': 'Run', 'description': ''}]


def test_unavailable_model_yields_localized_failure():
    result = interpret_schedule_request('встреча завтра', today=TODAY, chat=_chat(AIServiceError('boom')))
    assert result['status'] == 'unavailable'
    assert result['events'] == []
    assert 'OpenAI' in result['message']


def test_unparseable_reply_is_malformed():
    result = interpret_schedule_request('lunch', today=TODAY, chat=_chat('I am not JSON'))
    assert result['status'] == 'malformed'
    assert result['events'] == []


def test_huge_week_offset_fails_soft_without_calling_model():
    calls = []
    result = interpret_schedule_request('x', 10 ** 9, today=TODAY, chat=_chat('{}', calls))
    assert result['status'] == 'malformed'
    assert result['events'] == []
    assert calls == []

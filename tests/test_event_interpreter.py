import json
from datetime import date

from services.event_interpreter import (
    detect_language,
    extract_candidates,
    find_free_slot,
    interpret_response,
    normalize_candidate,
    place_untimed_drafts,
    resolve_draft_conflicts,
)
from services.week_dates import build_week_context

WEEK = build_week_context(0, date(2024, 10, 23), 'en')


def _draft(title, day, start, end, important=False):
    return {
        'day': day, 'title': title, 'description': '', 'important': important, 'outsideWeek': None,
        'startTime': start // 60, 'startMinute': start % 60, 'endTime': end // 60, 'endMinute': end % 60,
    }


def test_detect_language():
    assert detect_language('встреча завтра в 10') == 'ru'
    assert detect_language('meeting tomorrow at 10') == 'en'


def test_extract_candidates_shapes():
    assert extract_candidates('{"events": [{"title": "a"}], "message": "hi"}') == ([{'title': 'a'}], 'hi')
    assert extract_candidates('{"events": null}') == ([], None)
    legacy = {'day': 1, 'startTime': 9, 'endTime': 10, 'title': 'Run'}
    assert extract_candidates(json.dumps(legacy)) == ([legacy], None)
    assert extract_candidates('```json\n{"message": "when?"}\n```') == ([], 'when?')
    assert extract_candidates('no json here') is None
    assert extract_candidates('[1, 2]') is None


def test_normalize_candidate_snaps_minutes_and_fills_end():
    draft = normalize_candidate({'day': 0, 'startTime': '13:20', 'title': 'Lunch'}, WEEK)
    assert (draft['startTime'], draft['startMinute']) == (13, 15)
    assert (draft['endTime'], draft['endMinute']) == (14, 15)


def test_normalize_candidate_resolves_date_to_weekday():
    inside = normalize_candidate({'date': '2024-10-25', 'startTime': 9, 'endTime': 10, 'title': 'Call'}, WEEK)
    assert inside['day'] == 4
    assert inside['outsideWeek'] is None
    outside = normalize_candidate({'date': '2024-11-05', 'startTime': 9, 'endTime': 10, 'title': 'Call'}, WEEK)
    assert outside['day'] == 1
    assert outside['outsideWeek'] == date(2024, 11, 5)


def test_normalize_candidate_rejects_untitled_and_bad_day():
    assert normalize_candidate({'day': 0, 'startTime': 9, 'endTime': 10}, WEEK) is None
    assert normalize_candidate({'day': 9, 'startTime': 9, 'endTime': 10, 'title': 'x'}, WEEK) is None


def test_find_free_slot_skips_busy_intervals():
    busy = [(480, 600), (600, 660)]
    assert find_free_slot(60, busy, 480, 1200) == 660
    assert find_free_slot(60, [(0, 1440)], 0, 1440) is None


def test_place_untimed_drafts_uses_window_then_whole_day():
    existing = [_draft('Work', 0, 6 * 60, 20 * 60)]
    untimed = {'day': 0, 'title': 'Read', 'description': '', 'important': False,
               'outsideWeek': None, 'startTime': None, 'durationMinutes': 30}
    placed, notices = place_untimed_drafts([untimed], existing, (6, 20), 'en')
    assert (placed[0]['startTime'], placed[0]['startMinute']) == (0, 0)
    assert (placed[0]['endTime'], placed[0]['endMinute']) == (0, 30)
    assert '00:00' in notices[0]


def test_resolve_conflicts_shortens_less_important():
    drafts = [_draft('Sport', 1, 600, 720), _draft('Meeting', 1, 660, 780, important=True)]
    resolved, adjustments, notices = resolve_draft_conflicts(drafts)
    sport = next(d for d in resolved if d['title'] == 'Sport')
    assert (sport['endTime'], sport['endMinute']) == (11, 0)
    assert adjustments[0]['action'] == 'shortened'
    assert '11:00' in notices[0]


def test_resolve_conflicts_moves_when_starting_inside():
    drafts = [_draft('Meeting', 1, 600, 720, important=True), _draft('Walk', 1, 660, 720)]
    resolved, adjustments, _ = resolve_draft_conflicts(drafts)
    walk = next(d for d in resolved if d['title'] == 'Walk')
    assert (walk['startTime'], walk['endTime']) == (12, 13)
    assert adjustments[0]['action'] == 'moved'


def test_resolve_conflicts_drops_when_no_room():
    drafts = [_draft('Deadline', 2, 1380, 1440, important=True), _draft('Snack', 2, 1410, 1440)]
    resolved, adjustments, _ = resolve_draft_conflicts(drafts)
    assert [d['title'] for d in resolved] == ['Deadline']
    assert adjustments[0]['action'] == 'dropped'


def test_resolve_conflicts_leaves_equal_importance_alone():
    drafts = [_draft('A', 0, 600, 720), _draft('B', 0, 660, 780)]
    resolved, adjustments, _ = resolve_draft_conflicts(drafts)
    assert adjustments == []
    assert [(d['startTime'], d['endTime']) for d in resolved] == [(10, 12), (11, 13)]


def test_interpret_response_reports_but_keeps_existing_conflicts():
    text = json.dumps({'events': [{'day': 0, 'startTime': 16, 'endTime': 18, 'title': 'Piano'}]})
    existing = [{'day': 0, 'startTime': 15, 'startMinute': 0, 'endTime': 17, 'endMinute': 0, 'title': 'Homework'}]
    result = interpret_response(text, 'piano monday 16-18', WEEK, existing)
    assert result['status'] == 'ok'
    assert result['conflicts'] == [{'day': 0, 'first': 'Piano', 'second': 'Homework', 'existing': True}]


def test_interpret_response_drops_invalid_drafts():
    text = json.dumps({'events': [
        {'day': 0, 'startTime': 10, 'endTime': 9, 'title': 'Backwards'},
        {'day': 0, 'startTime': 10, 'endTime': 11, 'title': 'Fine'},
    ]})
    result = interpret_response(text, 'two things', WEEK)
    assert [e['title'] for e in result['events']] == ['Fine']


def test_interpret_response_empty_and_malformed():
    empty = interpret_response('{"events": []}', 'что-нибудь', WEEK)
    assert empty['status'] == 'empty'
    assert empty['message'].startswith('Запрос слишком неоднозначен')
    broken = interpret_response('sorry, I cannot', 'do stuff', WEEK)
    assert broken['status'] == 'malformed'
    assert broken['events'] == []


def test_interpret_response_notes_date_outside_week():
    text = json.dumps({'events': [{'date': '2024-11-05', 'startTime': 9, 'endTime': 10, 'title': 'Dentist'}]})
    result = interpret_response(text, 'dentist on 5 November at 9', WEEK)
    assert result['events'][0]['day'] == 1
    assert '2024-11-05' in result['message']


def test_interpret_response_discards_non_finite_numbers():
    text = '{"events": [{"day": 1e999, "startTime": 9, "endTime": 10, "title": "X"}]}'
    result = interpret_response(text, 'x on some day', WEEK)
    assert result['status'] == 'empty'
    assert result['events'] == []


def test_outside_week_notice_added_when_model_message_omits_date():
    text = json.dumps({
        'events': [{'date': '2024-11-05', 'startTime': 9, 'endTime': 10, 'title': 'Dentist'}],
        'message': 'Assumed a one-hour visit.',
    })
    result = interpret_response(text, 'dentist on 5 November at 9', WEEK)
    assert result['message'].startswith('Assumed a one-hour visit.')
    assert '2024-11-05' in result['message']


def test_outside_week_notice_not_repeated_when_model_names_date():
    text = json.dumps({
        'events': [{'date': '2024-11-05', 'startTime': 9, 'endTime': 10, 'title': 'Dentist'}],
        'message': '2024-11-05 is next month, added on Tuesday.',
    })
    result = interpret_response(text, 'dentist on 5 November at 9', WEEK)
    assert result['message'] == '2024-11-05 is next month, added on Tuesday.'

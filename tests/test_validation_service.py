import pytest

from services.validation_service import (
    clean_event_payload,
    parse_amount,
    parse_int,
    parse_week_offset,
    snap_minute,
    validate_event_times,
)


def test_snap_minute_picks_nearest_quarter():
    assert snap_minute(20) == 15
    assert snap_minute(23) == 30
    assert snap_minute(59) == 45
    assert snap_minute(None) == 0


def test_parse_int_rejects_bools_and_garbage():
    assert parse_int('7') == 7
    assert parse_int(13.0) == 13
    assert parse_int(True) is None
    assert parse_int('abc', 3) == 3


def test_parse_amount_requires_positive_number():
    assert parse_amount('12.5') == 12.5
    with pytest.raises(ValueError):
        parse_amount(0)
    with pytest.raises(ValueError):
        parse_amount('ten')


def test_validate_event_times_accepts_full_day_end():
    validate_event_times(6, 23, 0, 24, 0)


@pytest.mark.parametrize('args', [
    (7, 10, 0, 11, 0),
    (0, 10, 20, 11, 0),
    (0, 12, 0, 12, 0),
    (0, 14, 0, 13, 0),
    (0, 23, 0, 24, 30),
])
def test_validate_event_times_rejects_bad_slots(args):
    with pytest.raises(ValueError):
        validate_event_times(*args)


def test_clean_event_payload_merges_over_existing():
    existing = {'title': 'Gym', 'day': 2, 'startTime': 9, 'startMinute': 0, 'endTime': 10, 'endMinute': 0, 'week': 1}
    fields = clean_event_payload({'endTime': 11, 'endMinute': 30}, existing=existing)
    assert fields['title'] == 'Gym'
    assert fields['end_time'] == 11
    assert fields['end_minute'] == 30
    assert fields['week'] == 1


def test_clean_event_payload_requires_title_and_short_description():
    base = {'day': 0, 'startTime': 9, 'endTime': 10}
    with pytest.raises(ValueError):
        clean_event_payload(dict(base, title='  '))
    with pytest.raises(ValueError):
        clean_event_payload(dict(base, title='x', description='d' * 201))


def test_parse_int_returns_default_for_non_finite_values():
    assert parse_int(float('inf')) is None
    assert parse_int('Infinity', 0) == 0
    assert parse_int('-inf', 4) == 4
    assert parse_int(float('nan')) is None


def test_parse_amount_rejects_infinity():
    with pytest.raises(ValueError):
        parse_amount('Infinity')


def test_parse_week_offset_bounds():
    assert parse_week_offset(None) == 0
    assert parse_week_offset('-3') == -3
    assert parse_week_offset(5000) == 5000
    with pytest.raises(ValueError):
        parse_week_offset(10 ** 9)
    with pytest.raises(ValueError):
        parse_week_offset('soon')


def test_clean_event_payload_rejects_infinite_day():
    with pytest.raises(ValueError):
        clean_event_payload({'title': 'x', 'day': float('inf'), 'startTime': 9, 'endTime': 10})

from datetime import date, datetime, timedelta

import pytz

from services.validation_service import parse_week_offset

WEEKDAY_NAMES = {
    'en': ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday'],
    'ru': ['понедельник', 'вторник', 'среда', 'четверг', 'пятница', 'суббота', 'воскресенье'],
}

MONTH_NAMES = {
    'en': ['January', 'February', 'March', 'April', 'May', 'June', 'July',
           'August', 'September', 'October', 'November', 'December'],
    # Genitive case, as used in "22 октября"
    'ru': ['января', 'февраля', 'марта', 'апреля', 'мая', 'июня', 'июля',
           'августа', 'сентября', 'октября', 'ноября', 'декабря'],
}


def normalize_language(lang):
    return 'en' if str(lang or '').lower().startswith('en') else 'ru'


def local_today(tz_name=None):
    """Today's date in the given timezone name (falls back to UTC on unknown zones)."""
    try:
        tz = pytz.timezone(tz_name or 'UTC')
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    return datetime.now(tz).date()


def week_monday(week_offset=0, today=None):
    """Monday of the week `week_offset` weeks away; ValueError when the offset is out of range."""
    today = today or date.today()
    return today - timedelta(days=today.weekday()) + timedelta(weeks=parse_week_offset(week_offset))


def get_week_dates(week_offset=0, today=None):
    """Seven dates (Monday first) of the week `week_offset` weeks from today's week."""
    monday = week_monday(week_offset, today)
    return [monday + timedelta(days=i) for i in range(7)]


def format_date_label(value, lang='ru'):
    lang = normalize_language(lang)
    return f"{value.day} {MONTH_NAMES[lang][value.month - 1]}"


def build_week_context(week_offset=0, today=None, lang='ru'):
    """Day index, ISO date, weekday name and display label for each day of the viewed week."""
    lang = normalize_language(lang)
    return [
        {
            'day': idx,
            'date': value.isoformat(),
            'weekday': WEEKDAY_NAMES[lang][idx],
            'label': format_date_label(value, lang),
        }
        for idx, value in enumerate(get_week_dates(week_offset, today))
    ]

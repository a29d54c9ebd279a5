"""
Deterministic half of the scheduling assistant.

The model proposes events as JSON; everything here turns that proposal into
drafts that are safe to store: shape detection, default filling, minute
snapping, date-to-weekday resolution, free-slot placement for untimed tasks,
validation, and a last-resort conflict fix for drafts the model left
overlapping. Nothing in this module performs I/O.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from services.ai_gateway import parse_json_object
from services.event_layout import event_end, event_start
from services.validation_service import (
    DAY_MINUTES,
    MAX_DESCRIPTION_LENGTH,
    parse_bool,
    parse_day_value,
    parse_int,
    snap_minute,
    validate_event_times,
)
from services.week_dates import WEEKDAY_NAMES

STATUS_OK = "ok"
STATUS_EMPTY = "empty"
STATUS_MALFORMED = "malformed"
STATUS_UNAVAILABLE = "unavailable"

DEFAULT_DURATION_MINUTES = 60
SLOT_STEP_MINUTES = 15

IMPORTANCE_KEYWORDS = ("important", "urgent", "priority", "critical", "важн", "срочн", "приоритет")

_CYRILLIC_RE = re.compile(r"[Ѐ-ӿ]")
_CLOCK_RE = re.compile(r"^\s*(?P<hour>\d{1,2})\s*[:.h]\s*(?P<minute>\d{1,2})\s*$")

MESSAGES = {
    "en": {
        "ambiguous": "The request is too ambiguous. Please give an explicit time for each event.",
        "malformed": "Sorry, I could not make sense of that request. Please rephrase it with an explicit time for each event.",
        "unavailable": "The AI assistant is unavailable right now. Please check the OpenAI API key in Settings and try again.",
        "outside_week": "{date} is not in the week you are viewing; the event was added on {weekday}.",
        "shortened": '"{title}" was shortened to end at {time} so it does not overlap "{keep}".',
        "moved": '"{title}" was moved to start at {time} so it does not overlap "{keep}".',
        "dropped": '"{title}" was left out because it could not fit around "{keep}".',
        "no_slot": 'No free {minutes}-minute slot was found for "{title}".',
        "placed": '"{title}" had no time, so it was placed in the first free slot at {time}.',
    },
    "ru": {
        "ambiguous": "Запрос слишком неоднозначен. Попробуйте указать конкретное время для каждого события.",
        "malformed": "Не удалось разобрать запрос. Попробуйте переформулировать его и указать время для каждого события.",
        "unavailable": "AI-помощник сейчас недоступен. Проверьте OpenAI API ключ в Настройках и попробуйте снова.",
        "outside_week": "{date} не входит в просматриваемую неделю; событие добавлено на {weekday}.",
        "shortened": "«{title}» сокращено до {time}, чтобы не пересекаться с «{keep}».",
        "moved": "«{title}» перенесено на {time}, чтобы не пересекаться с «{keep}».",
        "dropped": "«{title}» не добавлено: не удалось разместить его рядом с «{keep}».",
        "no_slot": "Не найдено свободное окно на {minutes} мин. для «{title}».",
        "placed": "Для «{title}» не было указано время, поэтому оно поставлено в первое свободное окно в {time}.",
    },
}


def detect_language(text):
    """'ru' when the text contains Cyrillic letters, else 'en'."""
    return "ru" if _CYRILLIC_RE.search(text or "") else "en"


def localized(lang, key, **fields):
    table = MESSAGES.get(lang) or MESSAGES["en"]
    return table[key].format(**fields)


def format_clock(total_minutes):
    hour, minute = divmod(int(total_minutes), 60)
    return f"{hour:02d}:{minute:02d}"


def is_important(draft):
    if parse_bool(draft.get("important")):
        return True
    haystack = f"{draft.get('title') or ''} {draft.get('description') or ''}".lower()
    return any(word in haystack for word in IMPORTANCE_KEYWORDS)


# --- Response shape ---

def extract_candidates(response_text) -> Optional[Tuple[List[Any], Optional[str]]]:
    """
    Return (raw_events, message) for the {"events": [...]} shape or the legacy
    single-event object; None when the text is not a recognizable response.
    """
    parsed = parse_json_object(response_text)
    if not isinstance(parsed, dict):
        return None
    message = parsed.get("message")
    message = message.strip() if isinstance(message, str) and message.strip() else None

    events = parsed.get("events")
    if isinstance(events, list):
        return events, message
    if "events" in parsed and events is None:
        return [], message

    # Legacy shape: the object itself is one event.
    if "day" in parsed or "date" in parsed:
        if "startTime" in parsed or "startHour" in parsed:
            return [parsed], message
    if "events" not in parsed and message is not None:
        return [], message
    return None


# --- Candidate normalisation ---

def _split_clock(value, minute_value):
    """Accept 13, 13.0, "13" or "13:20"; return (hour, raw_minute)."""
    if isinstance(value, str):
        match = _CLOCK_RE.match(value)
        if match:
            return int(match.group("hour")), int(match.group("minute"))
    return parse_int(value), minute_value


def _round_duration(minutes):
    steps = max(1, int(round(minutes / SLOT_STEP_MINUTES)))
    return steps * SLOT_STEP_MINUTES


def normalize_existing_event(event) -> Optional[Dict[str, Any]]:
    """Existing events may use startHour/endHour or the stored startTime/endTime keys."""
    if not isinstance(event, dict):
        return None
    day = parse_int(event.get("day"))
    start_hour = parse_int(event.get("startHour", event.get("startTime")))
    end_hour = parse_int(event.get("endHour", event.get("endTime")))
    if day is None or start_hour is None or end_hour is None:
        return None
    normalized = {
        "day": day,
        "startTime": start_hour,
        "startMinute": parse_int(event.get("startMinute"), 0),
        "endTime": end_hour,
        "endMinute": parse_int(event.get("endMinute"), 0),
        "title": str(event.get("title") or "").strip(),
    }
    if event_start(normalized) >= event_end(normalized):
        return None
    return normalized


def normalize_candidate(raw, week_context=None) -> Optional[Dict[str, Any]]:
    """
    Coerce one model-proposed event into a draft, or None when it is unusable.

    Drafts without a start time but with a positive ``durationMinutes`` come back
    with ``startTime`` None and are placed later by :func:`place_untimed_drafts`.
    """
    if not isinstance(raw, dict):
        return None
    title = str(raw.get("title") or "").strip()
    if not title:
        return None

    day = parse_int(raw.get("day"))
    outside_week = None
    event_date = parse_day_value(raw.get("date"))
    if event_date:
        day = event_date.weekday()
        week_isos = {entry.get("date") for entry in (week_context or [])}
        if week_isos and event_date.isoformat() not in week_isos:
            outside_week = event_date
    if day is None or not 0 <= day <= 6:
        return None

    description = str(raw.get("description") or "").strip()[:MAX_DESCRIPTION_LENGTH]
    draft = {
        "day": day,
        "title": title[:200],
        "description": description,
        "important": is_important(raw),
        "outsideWeek": outside_week,
    }

    start_hour, start_minute = _split_clock(raw.get("startTime", raw.get("startHour")), raw.get("startMinute"))
    end_hour, end_minute = _split_clock(raw.get("endTime", raw.get("endHour")), raw.get("endMinute"))
    duration = parse_int(raw.get("durationMinutes"))

    if start_hour is None:
        if not duration or duration <= 0:
            return None
        draft.update({"startTime": None, "durationMinutes": _round_duration(duration)})
        return draft

    start_minute = snap_minute(start_minute)
    if end_hour is None:
        length = _round_duration(duration) if duration and duration > 0 else DEFAULT_DURATION_MINUTES
        end_hour, end_minute = divmod(start_hour * 60 + start_minute + length, 60)
    else:
        end_minute = snap_minute(end_minute)

    draft.update({
        "startTime": start_hour,
        "startMinute": start_minute,
        "endTime": end_hour,
        "endMinute": end_minute,
    })
    return draft


def is_valid_draft(draft):
    try:
        validate_event_times(
            draft.get("day"),
            draft.get("startTime"),
            draft.get("startMinute"),
            draft.get("endTime"),
            draft.get("endMinute"),
        )
    except ValueError:
        return False
    return True


# --- Free-slot placement ---

def _busy_intervals(day, events):
    return sorted(
        (event_start(ev), event_end(ev))
        for ev in events
        if ev.get("day") == day and ev.get("startTime") is not None
    )


def find_free_slot(duration, busy, window_start, window_end) -> Optional[int]:
    """First start (in minutes, on the 15-minute grid) where ``duration`` fits without overlapping ``busy``."""
    candidate = window_start
    if candidate % SLOT_STEP_MINUTES:
        candidate += SLOT_STEP_MINUTES - candidate % SLOT_STEP_MINUTES
    while candidate + duration <= window_end:
        clash = next((end for start, end in busy if candidate < end and start < candidate + duration), None)
        if clash is None:
            return candidate
        candidate = max(candidate + SLOT_STEP_MINUTES, clash)
        if candidate % SLOT_STEP_MINUTES:
            candidate += SLOT_STEP_MINUTES - candidate % SLOT_STEP_MINUTES
    return None


def place_untimed_drafts(drafts, existing_events, calendar_hours=(6, 20), lang="en"):
    """
    Give every untimed draft the first free slot of its duration on its day.

    The user's visible calendar window is tried first, then the whole day.
    Returns (placed_drafts, notices); drafts with no room are dropped.
    """
    window = (int(calendar_hours[0]) * 60, int(calendar_hours[1]) * 60)
    accepted = [d for d in drafts if d.get("startTime") is not None]
    notices = []
    for draft in drafts:
        if draft.get("startTime") is not None:
            continue
        duration = draft["durationMinutes"]
        busy = _busy_intervals(draft["day"], list(existing_events) + accepted)
        start = find_free_slot(duration, busy, *window)
        if start is None:
            start = find_free_slot(duration, busy, 0, DAY_MINUTES)
        if start is None:
            notices.append(localized(lang, "no_slot", minutes=duration, title=draft["title"]))
            continue
        end = start + duration
        placed = dict(draft)
        placed.pop("durationMinutes", None)
        placed.update({
            "startTime": start // 60,
            "startMinute": start % 60,
            "endTime": end // 60,
            "endMinute": end % 60,
        })
        accepted.append(placed)
        notices.append(localized(lang, "placed", title=placed["title"], time=format_clock(start)))
    # Keep the model's ordering for timed drafts; placed ones follow.
    return accepted, notices


# --- Conflicts ---

def find_conflicts(drafts, existing_events=()):
    """Overlapping pairs among drafts and between drafts and existing events."""
    pairs = []
    for i, first in enumerate(drafts):
        for second in drafts[i + 1:]:
            if first["day"] == second["day"] and event_start(first) < event_end(second) and event_start(second) < event_end(first):
                pairs.append({"day": first["day"], "first": first["title"], "second": second["title"], "existing": False})
        for other in existing_events:
            if first["day"] == other["day"] and event_start(first) < event_end(other) and event_start(other) < event_end(first):
                pairs.append({"day": first["day"], "first": first["title"], "second": other["title"], "existing": True})
    return pairs


def _set_span(draft, start, end):
    draft["startTime"], draft["startMinute"] = divmod(start, 60)
    draft["endTime"], draft["endMinute"] = divmod(end, 60)


def resolve_draft_conflicts(drafts, lang="en"):
    """
    Remove overlaps between an important draft and a non-important one.

    The non-important draft is shortened to end where the important one starts;
    if it starts inside the important one it is moved to start where that one
    ends. Pairs where both or neither are important are left to the caller.
    Returns (drafts, adjustments, notices).
    """
    drafts = [dict(d) for d in drafts]
    adjustments = []
    notices = []
    max_rounds = len(drafts) * len(drafts) + 1
    for _ in range(max_rounds):
        changed = False
        for keep in drafts:
            if not keep["important"]:
                continue
            for other in drafts:
                if other is keep or other["important"] or other.get("dropped") or other["day"] != keep["day"]:
                    continue
                keep_start, keep_end = event_start(keep), event_end(keep)
                other_start, other_end = event_start(other), event_end(other)
                if not (other_start < keep_end and keep_start < other_end):
                    continue
                record = {"title": other["title"], "keep": keep["title"], "day": other["day"]}
                if other_start < keep_start:
                    _set_span(other, other_start, keep_start)
                    record.update(action="shortened", startTime=format_clock(other_start), endTime=format_clock(keep_start))
                    notices.append(localized(lang, "shortened", title=other["title"], time=format_clock(keep_start), keep=keep["title"]))
                else:
                    duration = other_end - other_start
                    new_end = min(keep_end + duration, DAY_MINUTES)
                    if new_end <= keep_end:
                        other["dropped"] = True
                        record.update(action="dropped")
                        notices.append(localized(lang, "dropped", title=other["title"], keep=keep["title"]))
                    else:
                        _set_span(other, keep_end, new_end)
                        record.update(action="moved", startTime=format_clock(keep_end), endTime=format_clock(new_end))
                        notices.append(localized(lang, "moved", title=other["title"], time=format_clock(keep_end), keep=keep["title"]))
                adjustments.append(record)
                changed = True
        if not changed:
            break
    return [d for d in drafts if not d.get("dropped")], adjustments, notices


# --- Pipeline ---

def public_event(draft):
    return {
        "day": draft["day"],
        "startTime": draft["startTime"],
        "startMinute": draft["startMinute"],
        "endTime": draft["endTime"],
        "endMinute": draft["endMinute"],
        "title": draft["title"],
        "description": draft.get("description") or "",
    }


def failure_result(status, lang):
    key = "unavailable" if status == STATUS_UNAVAILABLE else "malformed"
    return {
        "status": status,
        "events": [],
        "message": localized(lang, key),
        "conflicts": [],
        "adjustments": [],
    }


def interpret_response(
    response_text,
    utterance,
    week_context=None,
    existing_events=None,
    calendar_hours=(6, 20),
    logger=None,
):
    """Turn raw model output into the interpreter's result dict."""
    lang = detect_language(utterance)
    extracted = extract_candidates(response_text)
    if extracted is None:
        if logger:
            logger.warning("Unparseable scheduling response: %r", (response_text or "")[:300])
        return failure_result(STATUS_MALFORMED, lang)
    raw_events, model_message = extracted

    existing = [e for e in (normalize_existing_event(ev) for ev in (existing_events or [])) if e]
    drafts = []
    rejected = 0
    for raw in raw_events:
        draft = normalize_candidate(raw, week_context)
        if draft is None or (draft["startTime"] is not None and not is_valid_draft(draft)):
            rejected += 1
            continue
        drafts.append(draft)
    if rejected and logger:
        logger.warning("Discarded %s invalid scheduling draft(s)", rejected)

    notices = []
    drafts, placement_notices = place_untimed_drafts(drafts, existing, calendar_hours, lang)
    notices.extend(placement_notices)
    drafts, adjustments, conflict_notices = resolve_draft_conflicts(drafts, lang)
    notices.extend(conflict_notices)
    drafts = [d for d in drafts if is_valid_draft(d)]

    for draft in drafts:
        outside = draft.get("outsideWeek")
        if not outside or outside.isoformat() in (model_message or ""):
            continue
        notices.append(localized(
            lang,
            "outside_week",
            date=outside.isoformat(),
            weekday=WEEKDAY_NAMES[lang][draft["day"]],
        ))

    parts = [model_message] if model_message else []
    parts.extend(notices)
    message = "\n".join(parts) if parts else None
    if not drafts and not message:
        message = localized(lang, "ambiguous")

    return {
        "status": STATUS_OK if drafts else STATUS_EMPTY,
        "events": [public_event(d) for d in drafts],
        "message": message,
        "conflicts": find_conflicts(drafts, existing),
        "adjustments": adjustments,
    }

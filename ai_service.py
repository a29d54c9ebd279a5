import json
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from services.ai_gateway import AIServiceError, call_chat_text
from services.event_interpreter import (
    STATUS_MALFORMED,
    STATUS_UNAVAILABLE,
    detect_language,
    failure_result,
    format_clock,
    interpret_response,
    normalize_existing_event,
)
from services.week_dates import WEEKDAY_NAMES, build_week_context

# Minimum defaults for fuzzy phrases; the model may refine them from context.
TIME_OF_DAY_DEFAULTS = [
    ("morning", "08:00", "10:00"),
    ("afternoon / during the day", "12:00", "15:00"),
    ("after lunch", "14:00", "15:00 (or right after the previous event)"),
    ("evening", "18:00", "20:00"),
]

OUTPUT_CONTRACT = {
    "events": [
        {
            "day": "number 0-6",
            "startTime": "number 0-24",
            "startMinute": "0|15|30|45",
            "endTime": "number 0-24",
            "endMinute": "0|15|30|45",
            "title": "string",
            "description": "string",
            "date": "YYYY-MM-DD (only when the user named a calendar date)",
            "important": "boolean (only when the user stressed it)",
        }
    ],
    "message": "string (optional explanation)",
}


def _format_existing(existing_events: List[Dict[str, Any]]) -> str:
    lines = []
    for ev in existing_events:
        start = ev["startTime"] * 60 + ev["startMinute"]
        end = ev["endTime"] * 60 + ev["endMinute"]
        lines.append(f'- {WEEKDAY_NAMES["en"][ev["day"]]} {format_clock(start)}-{format_clock(end)}: "{ev["title"]}"')
    return "\n".join(lines)


def build_system_prompt(
    week_context: List[Dict[str, Any]],
    existing_events: List[Dict[str, Any]],
    today: date,
    week_offset: int = 0,
) -> str:
    week_lines = "\n".join(
        f"{entry['weekday']} ({entry['label']}, {entry['date']}) = day {entry['day']}" for entry in week_context
    )
    existing_block = _format_existing(existing_events) or "- none"
    fuzzy_lines = "\n".join(f'  * "{phrase}" = {start}-{end}' for phrase, start, end in TIME_OF_DAY_DEFAULTS)
    return f"""You are a scheduling assistant for a weekly calendar.

TODAY: {today.isoformat()} ({WEEKDAY_NAMES['en'][today.weekday()]}). YEAR: {today.year}.

Currently viewed week (weekOffset={week_offset}):
{week_lines}

Events already scheduled this week:
{existing_block}

Turn the user's request into calendar events. Rules:
- LANGUAGE: write title, description and message in the same language as the request. Never translate.
- DAYS: 0=Monday ... 6=Sunday. A named weekday means that day of the viewed week.
  If the user names a calendar date, work out its weekday in {today.year}, set "day" to it and also return "date" as YYYY-MM-DD.
  If that date is outside the viewed week, still create the event and say so in the message.
- TIMES: hours 0-24, minutes only 0, 15, 30 or 45. Round other minutes to the nearest of these (13:20 -> 13:15 or 13:30).
  Hours only ("13-14") means startMinute=0 and endMinute=0. Keep titles short (2-4 words), descriptions under 150 characters.
- VAGUE TIMES (defaults, adjust to context):
{fuzzy_lines}
  * A meal without an end time lasts 1 hour.
  * A task without a time goes into the first free slot of a suitable length that overlaps nothing (existing or new).
    If you cannot place it, set startTime and endTime to null and give "durationMinutes".
- CONFLICTS: two events conflict only if they overlap: (startA < endB) AND (startB < endA).
  13:00-14:00 and 15:00-17:00 do NOT conflict. 13:00-14:00 and 14:00-16:00 do NOT conflict. 13:00-15:00 and 14:00-16:00 DO conflict.
  When the request holds several events and there is a real conflict (between them or with existing events):
  keep the events the user marks or implies as important (set "important": true on them), shorten or move the less important one
  so nothing overlaps, and explain the change in the message. NEVER mention a conflict that does not exist.
- If the request is vague, still create events with reasonable assumptions and state them in the message.
- If nothing can be reasonably parsed, return {{"events": [], "message": "<ask for an explicit time for each event, in the user's language>"}}.

Reply with JSON only, in this shape:
{json.dumps(OUTPUT_CONTRACT, ensure_ascii=False)}

Example (no conflict, so no message):
Existing: "Homework" Monday 15:00-17:00. Request: "toilet time monday 13:00 - 14:00"
{{"events": [{{"day": 0, "startTime": 13, "startMinute": 0, "endTime": 14, "endMinute": 0, "title": "Toilet time", "description": ""}}]}}

Example (real conflict):
Request: "tomorrow sport 10:00-12:00, but an important meeting 11:00-13:00" (tomorrow = day 1)
{{"events": [{{"day": 1, "startTime": 10, "startMinute": 0, "endTime": 11, "endMinute": 0, "title": "Sport", "description": "Shortened"}},
  {{"day": 1, "startTime": 11, "startMinute": 0, "endTime": 13, "endMinute": 0, "title": "Important meeting", "description": "", "important": true}}],
 "message": "I shortened sport to end at 11:00 so you don't miss the important meeting."}}"""


def interpret_schedule_request(
    utterance: str,
    week_offset: int = 0,
    existing_events: Optional[List[Dict[str, Any]]] = None,
    *,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    today: Optional[date] = None,
    calendar_hours=(6, 20),
    logger=None,
    chat: Optional[Callable[..., str]] = None,
) -> Dict[str, Any]:
    """
    Turn a free-text scheduling request into event drafts for the viewed week.

    Never raises: an unreachable model yields status "unavailable" and an
    unreadable answer or an out-of-range week offset yields status
    "malformed", all with no events.
    """
    chat = chat or call_chat_text
    today = today or date.today()
    lang = detect_language(utterance)
    try:
        week_context = build_week_context(week_offset, today, lang)
    except ValueError as exc:
        if logger:
            logger.warning("Scheduling request rejected: %s", exc)
        return failure_result(STATUS_MALFORMED, lang)
    existing = [e for e in (normalize_existing_event(ev) for ev in (existing_events or [])) if e]

    system_prompt = build_system_prompt(week_context, existing, today, week_offset)
    try:
        response_text = chat(
            system_prompt,
            utterance,
            api_key=api_key,
            model=model,
            max_tokens=1000,
            temperature=0.5,
            logger=logger,
        )
    except AIServiceError:
        return failure_result(STATUS_UNAVAILABLE, lang)

    result = interpret_response(
        response_text,
        utterance,
        week_context=week_context,
        existing_events=existing,
        calendar_hours=calendar_hours,
        logger=logger,
    )
    if logger:
        logger.info(
            "Scheduling request interpreted: status=%s events=%s adjustments=%s",
            result["status"], len(result["events"]), len(result["adjustments"]),
        )
    return result

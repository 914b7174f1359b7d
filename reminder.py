"""
Reminder Parsing
================

Detects "remind me ..." style messages and turns them into a structured
reminder (title, date, time, duration) the calendar can consume.

Author: EduGenie Team
"""

import re
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import llm_client
from config import config
from json_extract import MalformedOutput, first_json_object
from llm_client import USER, ConversationTurn

_TIME_12H_RE = re.compile(r"(\d{1,2}):?(\d{2})?\s*(am|pm)\b", re.IGNORECASE)

REMINDER_MAX_TOKENS = 800


def convert_to_24_hour(time_str: str) -> Optional[str]:
    """
    Convert "2pm", "2:30 PM", "12am" ... to "HH:MM"

    Returns:
        str | None: 24-hour time, or None if no 12-hour time is present
    """
    match = _TIME_12H_RE.search(time_str or "")
    if not match:
        return None

    hours = int(match.group(1))
    minutes = int(match.group(2)) if match.group(2) else 0
    period = match.group(3).lower()
    if not 1 <= hours <= 12 or minutes > 59:
        return None

    if period == "pm" and hours != 12:
        hours += 12
    elif period == "am" and hours == 12:
        hours = 0

    return f"{hours:02d}:{minutes:02d}"


def local_now(now_iso: Optional[str], time_zone: Optional[str] = None) -> datetime:
    """The user's current time, from the client's ISO timestamp and zone"""
    now = None
    if now_iso:
        try:
            now = datetime.fromisoformat(now_iso.replace("Z", "+00:00"))
        except ValueError:
            print(f"[reminder] Bad nowIso '{now_iso}', using server time")
    if now is None:
        now = datetime.now().astimezone()

    if time_zone and now.tzinfo is not None:
        try:
            now = now.astimezone(ZoneInfo(time_zone))
        except (ZoneInfoNotFoundError, ValueError):
            print(f"[reminder] Unknown time zone '{time_zone}', keeping offset from nowIso")
    return now


def build_reminder_prompt(text: str, now: datetime, time_zone: str) -> str:
    today = now.date().isoformat()
    tomorrow = (now + timedelta(days=1)).date().isoformat()

    return f"""You are a reminder parser. Return ONLY ONE JSON object (no markdown, no explanations, no code blocks).

Schema:
{{
  "isReminder": boolean,
  "title": string or null,
  "date": "YYYY-MM-DD" or null,
  "time": "HH:MM" or null,
  "durationMinutes": number or null,
  "description": string or null
}}

Rules:
- If the text has reminder/alarm/schedule intent ("remind me", "set reminder", "@", "alarm"), set isReminder=true, otherwise false
- Extract a concise title of what to remind about
- Always convert times to 24-hour HH:MM ("3pm" = "15:00", "12am" = "00:00", "9 AM" = "09:00")
- Resolve "today" as {today} and "tomorrow" as {tomorrow}
- If isReminder is true and no date is mentioned, use {today}
- Default durationMinutes to 30 when isReminder is true
- Use null for fields that do not apply

Examples:
- "Remind me @ 10:45 for visiting bike broker" -> {{"isReminder": true, "title": "Visiting bike broker", "date": "{today}", "time": "10:45", "durationMinutes": 30, "description": null}}
- "Remind me tomorrow at 9am for lab" -> {{"isReminder": true, "title": "Lab", "date": "{tomorrow}", "time": "09:00", "durationMinutes": 30, "description": null}}
- "Hello there" -> {{"isReminder": false, "title": null, "date": null, "time": null, "durationMinutes": null, "description": null}}

Current time (ISO): {now.isoformat()}
Timezone: {time_zone or 'unknown'}
User text: {text}"""


def correct_time(parsed: dict, text: str) -> dict:
    """Prefer an explicit 12-hour time from the user's own words"""
    if parsed.get("isReminder") and parsed.get("time"):
        extracted = convert_to_24_hour(text)
        if extracted and extracted != parsed["time"]:
            print(f"[reminder] Correcting time from LLM '{parsed['time']}' to extracted '{extracted}'")
            parsed["time"] = extracted
    return parsed


async def parse_reminder(text: str, time_zone: Optional[str] = None, now_iso: Optional[str] = None) -> dict:
    """
    Parse a message into a reminder object

    Raises:
        ValueError: The reply did not contain a single JSON object
    """
    now = local_now(now_iso, time_zone)
    result = await llm_client.complete(
        [ConversationTurn(USER, build_reminder_prompt(text, now, time_zone or ""))],
        max_tokens=REMINDER_MAX_TOKENS,
        temperature=0.1,
        model=config.ANTHROPIC_FAST_MODEL,
    )

    parsed = first_json_object(result.text)
    if isinstance(parsed, MalformedOutput):
        print(f"[reminder] Failed to parse reply: {result.text[:200]}")
        raise ValueError("Failed to parse reminder response")

    reminder = correct_time(parsed.value, text)
    print(f"[reminder] Final parsed reminder: {reminder}")
    return reminder

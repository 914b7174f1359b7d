"""
Timetable Generation and Storage
================================

Turns a free-text request ("plan my exam week") into a list of timetable
slots, and stores named timetables per user in the `schedules` table.

Author: EduGenie Team
"""

from typing import Any, Optional

import llm_client
from database import user_client
from json_extract import MalformedOutput, extract_json, find_array
from llm_client import USER, ConversationTurn

SCHEDULE_MAX_TOKENS = 2000
STATUSES = {"DONE", "PENDING", "UPCOMING"}
DEFAULT_STATUS = "PENDING"


def build_schedule_prompt(prompt: str) -> str:
    return f"""You are a strict JSON timetable generator.
Output ONLY a valid JSON array. Do not output Markdown.
Use double quotes (") for all keys and strings. No single quotes.
Schema: [{{ "time": "hh:mm AM/PM", "activity": "string", "status": "PENDING", "day": "string (optional)" }}]
RULES:
1. If the request implies multiple days, include the "day" field.
2. If it is a single day, OMIT "day".
3. "status" must be "DONE", "PENDING" or "UPCOMING".
User request: {prompt}"""


def normalize_slot(raw: Any) -> Optional[dict]:
    """Coerce one model-produced slot into {time, activity, status[, day]}"""
    if not isinstance(raw, dict):
        return None

    time = raw.get("time")
    activity = raw.get("activity") or raw.get("subject") or raw.get("task")
    if not isinstance(time, str) or not time.strip() or not isinstance(activity, str) or not activity.strip():
        return None

    status = str(raw.get("status") or DEFAULT_STATUS).strip().upper()
    slot = {
        "time": time.strip(),
        "activity": activity.strip(),
        "status": status if status in STATUSES else DEFAULT_STATUS,
    }
    day = raw.get("day")
    if isinstance(day, str) and day.strip():
        slot["day"] = day.strip()
    return slot


def normalize_schedule(value: Any) -> list:
    return [slot for slot in (normalize_slot(item) for item in find_array(value, "schedule")) if slot]


async def generate_schedule(prompt: str) -> list:
    """
    Generate a timetable from a natural-language request

    Raises:
        ValueError: Empty reply or no JSON in the reply
    """
    print(f"[schedule] Generating timetable for: {prompt[:80]}")
    result = await llm_client.complete(
        [ConversationTurn(USER, build_schedule_prompt(prompt))],
        max_tokens=SCHEDULE_MAX_TOKENS,
        temperature=0.3,
    )
    if not result.text.strip():
        raise ValueError("Empty response from AI")

    parsed = extract_json(result.text)
    if isinstance(parsed, MalformedOutput):
        print(f"[schedule] Unparseable reply: {result.text[:200]}")
        raise ValueError("AI did not return valid JSON")

    return normalize_schedule(parsed.value)


# ============================================================================
# STORAGE (all queries filtered by user_id on top of RLS)
# ============================================================================

def save_schedule(access_token: str, user_id: str, schedule: list, name: str) -> dict:
    result = (
        user_client(access_token)
        .table("schedules")
        .insert({"content": schedule, "name": name, "user_id": user_id})
        .execute()
    )
    return result.data[0] if result.data else {}


def list_schedules(access_token: str, user_id: str) -> list:
    result = (
        user_client(access_token)
        .table("schedules")
        .select("id, name, created_at")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
    )
    return result.data or []


def load_schedule(access_token: str, user_id: str, schedule_id) -> Optional[dict]:
    result = (
        user_client(access_token)
        .table("schedules")
        .select("*")
        .eq("id", schedule_id)
        .eq("user_id", user_id)
        .execute()
    )
    return result.data[0] if result.data else None


def update_schedule(access_token: str, user_id: str, schedule_id, schedule: list, name: str):
    (
        user_client(access_token)
        .table("schedules")
        .update({"content": schedule, "name": name})
        .eq("id", schedule_id)
        .eq("user_id", user_id)
        .execute()
    )


def delete_schedule(access_token: str, user_id: str, schedule_id):
    (
        user_client(access_token)
        .table("schedules")
        .delete()
        .eq("id", schedule_id)
        .eq("user_id", user_id)
        .execute()
    )

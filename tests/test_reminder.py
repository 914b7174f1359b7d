"""Tests for reminder: 12-hour time conversion and reply parsing."""

import json

import pytest

import reminder
from reminder import build_reminder_prompt, convert_to_24_hour, correct_time, local_now


class TestConvertTo24Hour:
    @pytest.mark.parametrize("text,expected", [
        ("2pm", "14:00"),
        ("2:30 PM", "14:30"),
        ("remind me at 9 am to study", "09:00"),
        ("12am", "00:00"),
        ("12:15pm", "12:15"),
        ("11:59 PM", "23:59"),
    ])
    def test_conversions(self, text, expected):
        assert convert_to_24_hour(text) == expected

    def test_no_time(self):
        assert convert_to_24_hour("remind me tomorrow") is None

    def test_out_of_range_hour(self):
        assert convert_to_24_hour("13pm") is None


class TestLocalNow:
    def test_converts_to_user_zone(self):
        now = local_now("2025-03-10T20:00:00Z", "Asia/Kolkata")
        assert now.isoformat() == "2025-03-11T01:30:00+05:30"

    def test_unknown_zone_keeps_offset(self):
        now = local_now("2025-03-10T20:00:00+00:00", "Not/AZone")
        assert now.hour == 20

    def test_prompt_resolves_today_and_tomorrow(self):
        now = local_now("2025-03-10T20:00:00Z", "Asia/Kolkata")
        prompt = build_reminder_prompt("remind me tomorrow", now, "Asia/Kolkata")
        assert '"today" as 2025-03-11' in prompt
        assert '"tomorrow" as 2025-03-12' in prompt


class TestCorrectTime:
    def test_explicit_time_wins(self):
        parsed = correct_time({"isReminder": True, "time": "02:00"}, "call mom at 2pm")
        assert parsed["time"] == "14:00"

    def test_not_a_reminder_untouched(self):
        parsed = correct_time({"isReminder": False, "time": None}, "hello at 2pm")
        assert parsed["time"] is None


class TestParseReminder:
    @pytest.mark.asyncio()
    async def test_first_object_used_and_time_corrected(self, script_completion):
        reply = json.dumps({
            "isReminder": True,
            "title": "Lab",
            "date": "2025-03-12",
            "time": "09:00",
            "durationMinutes": 30,
            "description": None,
        })
        fake = script_completion((f"{reply}\n{{\"isReminder\": false}}", "stop"))

        result = await reminder.parse_reminder(
            "Remind me tomorrow at 9:30am for lab", "Asia/Kolkata", "2025-03-11T04:00:00Z"
        )

        assert result["title"] == "Lab"
        assert result["time"] == "09:30"
        assert fake.calls[0]["model"] == reminder.config.ANTHROPIC_FAST_MODEL

    @pytest.mark.asyncio()
    async def test_unparseable_reply(self, script_completion):
        script_completion(("no json here", "stop"))
        with pytest.raises(ValueError, match="Failed to parse reminder response"):
            await reminder.parse_reminder("hello")

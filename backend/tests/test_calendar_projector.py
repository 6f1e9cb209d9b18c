from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from plan_lifecycle.api.schemas.plan import WeeklyPracticePlan, YinPracticeDetail
from plan_lifecycle.services.calendar_projector import (
    TIME_OF_DAY_SLOTS,
    CalendarProjector,
    escape_ics_text,
    export_filename,
    unescape_ics_text,
)
from plan_lifecycle.services.errors import MalformedPlanError

FIXTURE_PATH = Path(__file__).parent / "data" / "legacy_plan.json"
GENERATED_AT = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


@pytest.fixture()
def plan() -> WeeklyPracticePlan:
    return WeeklyPracticePlan.model_validate(json.loads(FIXTURE_PATH.read_text()))


@pytest.fixture()
def projector() -> CalendarProjector:
    return CalendarProjector(prodid="-//Test//Plans//EN", uid_domain="example.test", plan_timezone="UTC")


def _unfold(content: str) -> list[str]:
    return content.replace("\r\n ", "").split("\r\n")


def test_wind_down_label_resolves_before_evening(projector):
    slot = projector.infer_time_slot("Evening, 30 min before bed")

    assert slot.key == "winddown"
    assert (slot.hour, slot.minute) == (21, 0)


def test_slot_inference_is_cached_per_instance(projector):
    first = projector.infer_time_slot("Evening, 30 min before bed")
    second = projector.infer_time_slot("Evening, 30 min before bed")
    other = CalendarProjector()

    assert first is second
    other.infer_time_slot("Morning")
    assert "Morning" not in projector._slot_cache


def test_missing_label_defaults_to_half_past_nine(projector):
    slot = projector.infer_time_slot(None)

    assert (slot.hour, slot.minute) == (21, 30)
    assert projector.infer_time_slot(None) is slot
    assert projector.infer_time_slot("whenever works") is TIME_OF_DAY_SLOTS["bedtime"]


@pytest.mark.parametrize(
    "label,key",
    [
        ("Morning", "morning"),
        ("Early morning, after coffee", "morning"),
        ("Mid-morning", "midmorning"),
        ("Late-morning stretch", "midmorning"),
        ("Late morning", "midmorning"),
        ("Lunch break", "midday"),
        ("Afternoon", "afternoon"),
        ("After dinner", "evening"),
        ("Evening", "evening"),
        ("Evening before sleep", "bedtime"),
        ("Evening, 30 min before bed", "winddown"),
        ("Wind-down", "winddown"),
        ("Before bed", "bedtime"),
        ("Late night", "bedtime"),
    ],
)
def test_keyword_table_order(projector, label, key):
    assert projector.infer_time_slot(label).key == key


def test_structured_time_beats_label(projector):
    practice = YinPracticeDetail(name="Breath", time_of_day="Evening", scheduled_time={"hour": 6, "minute": 15})

    slot = projector.slot_for_practice(practice)

    assert (slot.hour, slot.minute) == (6, 15)
    assert "Evening" not in projector._slot_cache


def test_one_workout_and_two_practices_make_three_events(projector, plan):
    monday_only = plan.model_copy(update={"days": plan.days[:1]})

    events = projector.build_events(monday_only)

    assert [event.uid for event in events] == [
        f"{plan.id}-workout-0",
        f"{plan.id}-yin-0-0",
        f"{plan.id}-yin-0-1",
    ]
    assert events[1].start == datetime(2024, 1, 1, 7, 0, tzinfo=timezone.utc)
    assert events[2].start == datetime(2024, 1, 1, 21, 0, tzinfo=timezone.utc)
    assert events[2].end == datetime(2024, 1, 1, 21, 15, tzinfo=timezone.utc)


def test_full_week_event_count(projector, plan):
    assert len(projector.build_events(plan)) == 9


def test_end_to_end_workout_event(projector, plan):
    content = projector.render(plan, generated_at=GENERATED_AT)
    lines = _unfold(content)

    uid_index = lines.index(f"UID:{plan.id}-workout-2@example.test")
    assert lines[uid_index + 1] == "DTSTAMP:20240101T000000Z"
    assert lines[uid_index + 2] == "DTSTART:20240103T070000Z"
    assert lines[uid_index + 3] == "DTEND:20240103T075500Z"
    assert lines[uid_index + 4] == "SUMMARY:Workout: Full Body B"


def test_render_envelope_and_line_endings(projector, plan):
    content = projector.render(plan, generated_at=GENERATED_AT)

    assert content.startswith("BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//Test//Plans//EN\r\n")
    assert content.endswith("END:VCALENDAR\r\n")
    assert "\n" not in content.replace("\r\n", "")
    assert content.count("BEGIN:VEVENT") == content.count("END:VEVENT") == 9
    assert all(len(line.encode("utf-8")) <= 75 for line in content.split("\r\n"))


def test_description_text_is_escaped(projector, plan):
    lines = _unfold(projector.render(plan, generated_at=GENERATED_AT))

    uid_index = lines.index(f"UID:{plan.id}-yin-0-1@example.test")
    description = lines[uid_index + 5]
    assert description.startswith("DESCRIPTION:Downshift before sleep\\nLie with legs on the wall")
    assert "Time of day: Evening\\, 30 min before bed" in description
    assert unescape_ics_text(description[len("DESCRIPTION:"):]).endswith("Time of day: Evening, 30 min before bed")


@pytest.mark.parametrize(
    "text",
    ["plain", "a;b,c", "back\\slash", "line one\nline two", "\\n is not a newline;,\\", ""],
)
def test_escape_round_trip(text):
    assert unescape_ics_text(escape_ics_text(text)) == text


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("crlf\r\nline", "crlf\nline"),
        ("a,b;c\\d\r\ne", "a,b;c\\d\ne"),
        ("old mac\rline", "old mac\nline"),
    ],
)
def test_escape_normalises_line_endings(text, expected):
    escaped = escape_ics_text(text)

    assert "\r" not in escaped
    assert unescape_ics_text(escaped) == expected


def test_escape_order():
    assert escape_ics_text("a\\;b") == "a\\\\\\;b"


def test_empty_plan_renders_without_events(projector):
    empty = WeeklyPracticePlan(id="empty", week_start_date="2024-01-01T00:00:00.000Z")

    content = projector.render(empty, generated_at=GENERATED_AT)

    assert "BEGIN:VEVENT" not in content
    assert content.endswith("END:VCALENDAR\r\n")


def test_invalid_week_start_is_rejected(projector):
    broken = WeeklyPracticePlan(id="broken", week_start_date="next monday")

    with pytest.raises(MalformedPlanError):
        projector.build_events(broken)


def test_week_start_uses_plan_timezone(plan):
    projector = CalendarProjector(plan_timezone="America/New_York")
    local_midnight = plan.model_copy(update={"week_start_date": "2024-01-01T05:00:00.000Z"})

    events = projector.build_events(local_midnight)

    assert events[0].start == datetime(2024, 1, 1, 7, 0, tzinfo=timezone.utc)


def test_export_names_file_after_plan(projector, plan):
    export = projector.export(plan, generated_at=GENERATED_AT)

    assert export.filename == f"{plan.id}.ics"
    assert export.content_type == "text/calendar"
    assert export.event_count == 9


@pytest.mark.parametrize(
    ("plan_id", "expected"),
    [
        ("integral-plan-1704067200000", "integral-plan-1704067200000.ics"),
        ('evil"; filename=x.sh', "evil___filename_x.sh.ics"),
        ("../../etc/passwd", "etc_passwd.ics"),
        ("\"\"", "integral-body-architect-week.ics"),
    ],
)
def test_export_filename_is_header_safe(plan_id, expected):
    assert export_filename(plan_id) == expected

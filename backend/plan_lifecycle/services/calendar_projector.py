"""Project a weekly practice plan onto timed calendar events (iCalendar export).

Practices carry a structured ``scheduledTime`` when the generator provides one;
otherwise their free-text ``timeOfDay`` label is mapped onto a fixed anchor time
through an ordered keyword table. The table is kept for plans generated before
structured times existed, and the label itself is only shown in the event text.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Pattern, Sequence, Tuple
from zoneinfo import ZoneInfo

from plan_lifecycle.api.schemas.plan import DayPlan, Exercise, WeeklyPracticePlan, YinPracticeDetail
from plan_lifecycle.core.config import settings
from plan_lifecycle.services.errors import MalformedPlanError

logger = logging.getLogger(__name__)

DEFAULT_WORKOUT_MINUTES = 55
DEFAULT_PRACTICE_MINUTES = 15
ICS_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
ICS_LINE_LIMIT = 75


@dataclass(frozen=True)
class TimeSlot:
    key: str
    label: str
    hour: int
    minute: int


TIME_OF_DAY_SLOTS: Dict[str, TimeSlot] = {
    "morning": TimeSlot("morning", "Morning", 7, 0),
    "midmorning": TimeSlot("midmorning", "Mid-Morning", 9, 30),
    "midday": TimeSlot("midday", "Midday", 12, 0),
    "afternoon": TimeSlot("afternoon", "Afternoon", 16, 0),
    "evening": TimeSlot("evening", "Evening", 19, 30),
    "winddown": TimeSlot("winddown", "Wind Down", 21, 0),
    "bedtime": TimeSlot("bedtime", "Before Bed", 21, 30),
}

# First match wins, so the order matters: "Evening, 30 min before bed" must reach
# the wind-down entry, and "mid-morning" must not stop at "morning".
TIME_KEYWORDS: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"(?<!mid-)(?<!mid )(?<!late )(?<!late-)\bmorning", re.IGNORECASE), "morning"),
    (re.compile(r"mid\s*-?\s*morning|late[- ]morning", re.IGNORECASE), "midmorning"),
    (re.compile(r"mid\s*-?\s*day|lunch|\bnoon\b", re.IGNORECASE), "midday"),
    (re.compile(r"afternoon", re.IGNORECASE), "afternoon"),
    (re.compile(r"evening(?!.*\b(?:bed|sleep))|after dinner", re.IGNORECASE), "evening"),
    (re.compile(r"wind[- ]?down|30 ?min(utes)? before bed|pre-bed", re.IGNORECASE), "winddown"),
    (re.compile(r"bedtime|before (bed|sleep)|night", re.IGNORECASE), "bedtime"),
)

UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
DEFAULT_EXPORT_STEM = "integral-body-architect-week"

DEFAULT_WORKOUT_SLOT = TIME_OF_DAY_SLOTS["morning"]
# Unlabelled Yin practices are restorative by default and land late in the evening.
DEFAULT_PRACTICE_SLOT = TIME_OF_DAY_SLOTS["bedtime"]


@dataclass(frozen=True)
class CalendarEvent:
    uid: str
    start: datetime
    end: datetime
    summary: str
    description: str


@dataclass
class CalendarExport:
    filename: str
    content: str
    event_count: int
    content_type: str = "text/calendar"


def escape_ics_text(text: str) -> str:
    """Escape TEXT values: backslash first, then semicolon, comma and newline.

    Line endings are normalised first: ``\\r\\n`` and a lone ``\\r`` both become ``\\n``,
    since TEXT has no escape for a carriage return. Unescaping therefore yields
    ``\\n``-terminated lines.
    """
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\n")
        .replace("\r", "\n")
        .replace("\n", "\\n")
    )


def unescape_ics_text(text: str) -> str:
    """Inverse of :func:`escape_ics_text`."""
    out: List[str] = []
    chars = iter(text)
    for char in chars:
        if char != "\\":
            out.append(char)
            continue
        following = next(chars, "")
        if following in ("n", "N"):
            out.append("\n")
        else:
            out.append(following)
    return "".join(out)


def export_filename(plan_id: str) -> str:
    """Attachment name for a plan export, safe to quote in a Content-Disposition header."""
    stem = UNSAFE_FILENAME_CHARS.sub("_", plan_id or "").strip("._")
    return f"{stem or DEFAULT_EXPORT_STEM}.ics"


def format_ics_datetime(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(ICS_DATE_FORMAT)


class CalendarProjector:
    """Deterministic plan -> calendar projection with a per-instance slot cache."""

    def __init__(
        self,
        *,
        prodid: str | None = None,
        uid_domain: str | None = None,
        plan_timezone: str | None = None,
    ) -> None:
        self.prodid = prodid or settings.calendar_prodid
        self.uid_domain = uid_domain if uid_domain is not None else settings.calendar_uid_domain
        self.plan_timezone = ZoneInfo(plan_timezone or settings.plan_timezone)
        self._slot_cache: Dict[Optional[str], TimeSlot] = {}

    def infer_time_slot(self, label: str | None) -> TimeSlot:
        """Map a free-text time-of-day label onto an anchor slot (memoised per label)."""
        cached = self._slot_cache.get(label)
        if cached is not None:
            return cached

        slot = DEFAULT_PRACTICE_SLOT
        if label:
            for pattern, key in TIME_KEYWORDS:
                if pattern.search(label):
                    slot = TIME_OF_DAY_SLOTS[key]
                    break
            else:
                logger.debug("No time-of-day keyword in %r; using %s", label, DEFAULT_PRACTICE_SLOT.label)

        self._slot_cache[label] = slot
        return slot

    def slot_for_practice(self, practice: YinPracticeDetail) -> TimeSlot:
        scheduled = practice.scheduled_time
        if scheduled is not None:
            return TimeSlot("scheduled", practice.time_of_day or "Scheduled", scheduled.hour, scheduled.minute)
        return self.infer_time_slot(practice.time_of_day)

    def build_events(self, plan: WeeklyPracticePlan) -> List[CalendarEvent]:
        week_start = self._week_start(plan)
        events: List[CalendarEvent] = []
        for index, day in enumerate(plan.days):
            day_date = week_start + timedelta(days=index)
            events.extend(self._day_events(plan.id, index, day_date, day))
        return events

    def render(self, plan: WeeklyPracticePlan, *, generated_at: datetime | None = None) -> str:
        """Serialize the plan as a VCALENDAR document (CRLF line endings)."""
        stamp = format_ics_datetime(generated_at or datetime.now(timezone.utc))
        lines = [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            f"PRODID:{self.prodid}",
            "CALSCALE:GREGORIAN",
            "METHOD:PUBLISH",
        ]
        for event in self.build_events(plan):
            lines.extend(self._event_lines(event, stamp))
        lines.append("END:VCALENDAR")
        return "".join(f"{_fold(line)}\r\n" for line in lines)

    def export(self, plan: WeeklyPracticePlan, *, generated_at: datetime | None = None) -> CalendarExport:
        content = self.render(plan, generated_at=generated_at)
        return CalendarExport(
            filename=export_filename(plan.id),
            content=content,
            event_count=content.count("BEGIN:VEVENT"),
        )

    def _week_start(self, plan: WeeklyPracticePlan) -> date:
        raw = plan.week_start_date
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except (AttributeError, ValueError) as exc:
            raise MalformedPlanError(f"invalid weekStartDate {raw!r}", plan_id=plan.id) from exc
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(self.plan_timezone)
        return parsed.date()

    def _day_events(self, plan_id: str, index: int, day_date: date, day: DayPlan) -> List[CalendarEvent]:
        events: List[CalendarEvent] = []
        if day.workout is not None:
            workout = day.workout
            start = _floating_utc(day_date, DEFAULT_WORKOUT_SLOT)
            exercise_lines = [_describe_exercise(exercise) for exercise in workout.exercises]
            events.append(
                CalendarEvent(
                    uid=f"{plan_id}-workout-{index}",
                    start=start,
                    end=start + timedelta(minutes=workout.duration or DEFAULT_WORKOUT_MINUTES),
                    summary=f"Workout: {workout.name}",
                    description=_join_lines(["Exercises:", *exercise_lines, workout.notes]),
                )
            )

        for practice_index, practice in enumerate(day.yin_practices):
            start = _floating_utc(day_date, self.slot_for_practice(practice))
            time_label = f"Time of day: {practice.time_of_day}" if practice.time_of_day else None
            events.append(
                CalendarEvent(
                    uid=f"{plan_id}-yin-{index}-{practice_index}",
                    start=start,
                    end=start + timedelta(minutes=practice.duration or DEFAULT_PRACTICE_MINUTES),
                    summary=f"Yin Practice: {practice.name}",
                    description=_join_lines([practice.intention, *practice.instructions, time_label]),
                )
            )
        return events

    def _event_lines(self, event: CalendarEvent, stamp: str) -> List[str]:
        uid = f"{event.uid}@{self.uid_domain}" if self.uid_domain else event.uid
        return [
            "BEGIN:VEVENT",
            f"UID:{uid}",
            f"DTSTAMP:{stamp}",
            f"DTSTART:{format_ics_datetime(event.start)}",
            f"DTEND:{format_ics_datetime(event.end)}",
            f"SUMMARY:{escape_ics_text(event.summary)}",
            f"DESCRIPTION:{escape_ics_text(event.description)}",
            "END:VEVENT",
        ]


def _floating_utc(day_date: date, slot: TimeSlot) -> datetime:
    # Anchor times are wall-clock times written as UTC instants without a TZID.
    return datetime.combine(day_date, time(slot.hour, slot.minute), tzinfo=timezone.utc)


def _describe_exercise(exercise: Exercise) -> str:
    text = exercise.name
    if exercise.sets and exercise.reps:
        text += f" - {exercise.sets} sets x {exercise.reps}"
    elif exercise.reps:
        text += f" - {exercise.reps}"
    if exercise.notes:
        text += f" ({exercise.notes})"
    return text


def _join_lines(parts: Sequence[Optional[str]]) -> str:
    return "\n".join(part for part in parts if part)


def _fold(line: str) -> str:
    """Fold a content line at 75 octets (RFC 5545 section 3.1)."""
    if len(line.encode("utf-8")) <= ICS_LINE_LIMIT:
        return line
    chunks: List[str] = []
    current = ""
    limit = ICS_LINE_LIMIT
    for char in line:
        if len((current + char).encode("utf-8")) > limit:
            chunks.append(current)
            current = char
            limit = ICS_LINE_LIMIT - 1
        else:
            current += char
    chunks.append(current)
    return "\r\n ".join(chunks)

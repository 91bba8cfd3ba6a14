"""
agent/expansion.py — Pattern-Expansion Fallback

A pure second pass over the interpreter's outcome. When the engine returned
a single CREATE_TASK but the utterance clearly asked for more, expand it:

  1. Weekday ranges : "Monday to Friday", "lunes a viernes"
                       → one task per day, starting at the next occurrence
                         of the first day (strictly after today)
  2. Continuations  : "... and also ...", "... y también ...", "... y poneme ..."
                       → one task per clause

Clock times are read from the utterance: "from 8 to 2:30", "8 to 2:30",
"de 8 a 14:30", plus word forms such as "half past two" or "dos y media".
An end time earlier than the start on a 12-hour reading moves to the
afternoon (8 → 2:30 is 08:00–14:30).

If expansion yields one action or fewer, the outcome comes back unchanged.
Batches from the engine are never re-expanded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from agent.interpreter import ActionOutcome, BatchOutcome, Outcome
from tools.types import ActionKind, ActionRequest

DEFAULT_START = time(8, 0)

_DAYS = {
    "monday": 0, "lunes": 0,
    "tuesday": 1, "martes": 1,
    "wednesday": 2, "miercoles": 2, "miércoles": 2,
    "thursday": 3, "jueves": 3,
    "friday": 4, "viernes": 4,
    "saturday": 5, "sabado": 5, "sábado": 5,
    "sunday": 6, "domingo": 6,
}
_DAY_ALT = "|".join(sorted(_DAYS, key=len, reverse=True))

_WEEKDAY_RANGE = re.compile(
    rf"\b({_DAY_ALT})\s+(?:to|through|thru|until|a|al|hasta|-)\s+({_DAY_ALT})\b",
    re.IGNORECASE,
)

_CONTINUATION = re.compile(
    r"\s*[,.;]?\s*\b(?:and also|y tambi[eé]n|y poneme)\b\s*",
    re.IGNORECASE,
)

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
    "una": 1, "uno": 1, "dos": 2, "tres": 3, "cuatro": 4, "cinco": 5, "seis": 6,
    "siete": 7, "ocho": 8, "nueve": 9, "diez": 10, "once": 11, "doce": 12,
}
_HOUR = r"(\d{1,2}|" + "|".join(sorted(_NUMBER_WORDS, key=len, reverse=True)) + r")"

# (pattern, minutes, hour offset)
_WORD_TIMES = [
    (re.compile(rf"\bhalf past {_HOUR}\b", re.IGNORECASE), 30, 0),
    (re.compile(rf"\bquarter past {_HOUR}\b", re.IGNORECASE), 15, 0),
    (re.compile(rf"\bquarter to {_HOUR}\b", re.IGNORECASE), 45, -1),
    (re.compile(rf"\b{_HOUR} y media\b", re.IGNORECASE), 30, 0),
    (re.compile(rf"\b{_HOUR} y cuarto\b", re.IGNORECASE), 15, 0),
    (re.compile(rf"\b{_HOUR} menos cuarto\b", re.IGNORECASE), 45, -1),
    (re.compile(rf"\b{_HOUR} o'?clock\b", re.IGNORECASE), 0, 0),
]

_CLOCK = r"(\d{1,2})(?::(\d{2}))?(?:\s*(am|pm)\b)?"
_TIME_RANGE = re.compile(
    rf"(?:\b(?:from|de|entre|between)\s+)?\b{_CLOCK}\s*"
    rf"(?:-|\bto\b|\ba\b|\by\b|\band\b|\buntil\b|\bhasta\b)\s*{_CLOCK}",
    re.IGNORECASE,
)
_SINGLE_TIME = re.compile(rf"\b(?:at|a las|a la)\s+{_CLOCK}", re.IGNORECASE)

_TITLE_WORDS = re.compile(
    r"\b(trabajar|caminar|reuni[oó]n|meeting|work|walk|gym|gimnasio|call|llamada|study|estudiar)\b",
    re.IGNORECASE,
)
_FILLER = re.compile(
    r"\b(?:please|por favor|add|put|schedule|create|set|agendame|agenda|poneme|pone|"
    r"crea|creame|an?|the|un|una|el|la|every|todos los|cada|from|de|entre|at|a las|a la)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TimeRange:
    start: time
    end: Optional[time] = None


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def expand(utterance: str, outcome: Outcome, now: datetime) -> Outcome:
    """
    Expand a single CREATE_TASK outcome into a batch when the utterance
    carries a weekday range or continuation clauses.

    Args:
        utterance: the user's raw text.
        outcome:   the interpreter's outcome for that text.
        now:       timezone-aware anchor instant for the turn.
    """
    if not isinstance(outcome, ActionOutcome):
        return outcome
    if outcome.action.kind != ActionKind.CREATE_TASK.value:
        return outcome

    text = normalise_word_times(utterance)
    clauses = [c.strip(" ,.;") for c in _CONTINUATION.split(text)]
    clauses = [c for c in clauses if c]
    if not clauses:
        return outcome
    if len(clauses) == 1 and not _WEEKDAY_RANGE.search(clauses[0]):
        return outcome

    base = outcome.action
    actions: list[ActionRequest] = []
    for index, clause in enumerate(clauses):
        actions.extend(_expand_clause(clause, base, first=index == 0, now=now))

    if len(actions) <= 1:
        return outcome
    return BatchOutcome(
        actions=actions,
        summary=outcome.message or f"Creating {len(actions)} tasks.",
    )


def normalise_word_times(text: str) -> str:
    """Rewrite spoken clock times as digits: "half past two" → "2:30"."""
    for pattern, minutes, offset in _WORD_TIMES:
        def _sub(m: re.Match, minutes=minutes, offset=offset) -> str:
            hour = _hour_value(m.group(1))
            if hour is None:
                return m.group(0)
            hour = (hour + offset) % 24
            return f"{hour}:{minutes:02d}"
        text = pattern.sub(_sub, text)
    return text


def parse_time_range(text: str) -> Optional[TimeRange]:
    """First clock range in `text`, else a single "at 9" time, else None."""
    m = _TIME_RANGE.search(text)
    if m:
        start = _clock(m.group(1), m.group(2), m.group(3))
        end = _clock(m.group(4), m.group(5), m.group(6))
        if start is not None and end is not None:
            if m.group(3) is None and m.group(6) is not None:
                # "2 to 4pm": the end's am/pm carries over when the order still holds
                shared = _clock(m.group(1), m.group(2), m.group(6))
                if shared is not None and shared <= end:
                    start = shared
            if m.group(6) is None and end <= start and end.hour < 12:
                end = end.replace(hour=end.hour + 12)
            return TimeRange(start=start, end=end)
    m = _SINGLE_TIME.search(text)
    if m:
        start = _clock(m.group(1), m.group(2), m.group(3))
        if start is not None:
            return TimeRange(start=start)
    return None


def weekday_dates(text: str, today: date) -> list[date]:
    """Dates for a weekday range in `text`, anchored after `today`."""
    m = _WEEKDAY_RANGE.search(text)
    if not m:
        return []
    first = _DAYS[m.group(1).lower()]
    last = _DAYS[m.group(2).lower()]
    count = (last - first) % 7 + 1
    offset = (first - today.weekday()) % 7 or 7
    start = today + timedelta(days=offset)
    return [start + timedelta(days=i) for i in range(count)]


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _expand_clause(
    clause: str, base: ActionRequest, first: bool, now: datetime
) -> list[ActionRequest]:
    days = weekday_dates(clause, now.date())
    span = parse_time_range(clause)
    title = _clause_title(clause) if not first else None
    base_start = _parse_iso(base.payload.get("dueDate"))
    base_end = _parse_iso(base.payload.get("endTime"))

    if days:
        if span is None:
            start = _local_time(base_start, now) if base_start else DEFAULT_START
            end = _local_time(base_end, now) if base_end else None
            span = TimeRange(start=start, end=end)
        return [_task(base, title, day, span, now) for day in days]

    if first:
        return [base]

    day = _local_date(base_start, now) if base_start else now.date()
    return [_task(base, title, day, span, now)]


def _task(
    base: ActionRequest,
    title: Optional[str],
    day: date,
    span: Optional[TimeRange],
    now: datetime,
) -> ActionRequest:
    payload: dict[str, Any] = {
        k: v for k, v in base.payload.items() if k not in ("dueDate", "endTime")
    }
    if title:
        payload["title"] = title
    payload.setdefault("title", "Task")
    if span is not None:
        payload["dueDate"] = datetime.combine(day, span.start, tzinfo=now.tzinfo).isoformat()
        if span.end is not None:
            payload["endTime"] = datetime.combine(day, span.end, tzinfo=now.tzinfo).isoformat()
    return ActionRequest(kind=ActionKind.CREATE_TASK.value, payload=payload)


def _clause_title(clause: str) -> Optional[str]:
    m = _TITLE_WORDS.search(clause)
    if m:
        return m.group(1).capitalize()
    stripped = _WEEKDAY_RANGE.sub(" ", clause)
    stripped = _TIME_RANGE.sub(" ", stripped)
    stripped = _SINGLE_TIME.sub(" ", stripped)
    stripped = _FILLER.sub(" ", stripped)
    words = re.sub(r"[^\w\s]", " ", stripped).split()
    if not words:
        return None
    return " ".join(words)[:60].capitalize()


def _local_time(dt: datetime, now: datetime) -> time:
    return dt.astimezone(now.tzinfo).time() if dt.tzinfo else dt.time()


def _local_date(dt: datetime, now: datetime) -> date:
    return dt.astimezone(now.tzinfo).date() if dt.tzinfo else dt.date()


def _hour_value(token: str) -> Optional[int]:
    token = token.lower()
    if token.isdigit():
        return int(token)
    return _NUMBER_WORDS.get(token)


def _clock(hour: str, minute: Optional[str], meridiem: Optional[str]) -> Optional[time]:
    h = int(hour)
    m = int(minute) if minute else 0
    if meridiem:
        meridiem = meridiem.lower()
        if meridiem == "pm" and h < 12:
            h += 12
        elif meridiem == "am" and h == 12:
            h = 0
    if h > 23 or m > 59:
        return None
    return time(h, m)


def _parse_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None

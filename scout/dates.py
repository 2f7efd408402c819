"""Turn locale-specific date/time fragments into absolute timestamps.

Handles the Lithuanian and English vocabulary used by the crawled sites:
"Sausio 15", "2025 m. vasario 3 d.", "JAN 15", "Šeštadienis, spalio 4, 19:00",
plain ISO dates and full ISO-8601 instants from structured data.
"""

import calendar
import re
from datetime import datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from scout.config import settings

DEFAULT_HOUR = 19
DEFAULT_MINUTE = 0

# Substring table, checked in order; the first hit decides the month.
MONTHS: tuple[tuple[str, int], ...] = (
    ("sausio", 1), ("vasario", 2), ("kovo", 3), ("balandžio", 4),
    ("gegužės", 5), ("birželio", 6), ("liepos", 7), ("rugpjūčio", 8),
    ("rugsėjo", 9), ("spalio", 10), ("lapkričio", 11), ("gruodžio", 12),
    ("saus", 1), ("vas", 2), ("kov", 3), ("bal", 4), ("geg", 5), ("bir", 6),
    ("lie", 7), ("rgp", 8), ("rugp", 8), ("rgs", 9), ("rugs", 9), ("spa", 10),
    ("lap", 11), ("gruod", 12), ("gruo", 12),
    ("jan", 1), ("feb", 2), ("mar", 3), ("apr", 4), ("may", 5), ("jun", 6),
    ("jul", 7), ("aug", 8), ("sep", 9), ("oct", 10), ("nov", 11), ("dec", 12),
)

# Whole-word month tokens accepted on a date line.
_MONTH_TOKENS = (
    "sausio", "vasario", "kovo", "balandžio", "gegužės", "birželio", "liepos",
    "rugpjūčio", "rugsėjo", "spalio", "lapkričio", "gruodžio",
    "sausis", "vasaris", "kovas", "balandis", "gegužė", "birželis", "liepa",
    "rugpjūtis", "rugsėjis", "spalis", "lapkritis", "gruodis",
    "sau", "saus", "vas", "kov", "bal", "geg", "bir", "lie", "rgp", "rugp",
    "rgs", "rugs", "spa", "lap", "gru", "gruod",
    "january", "february", "march", "april", "june", "july", "august",
    "september", "october", "november", "december",
    "jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "sept",
    "oct", "nov", "dec",
)
_WEEKDAY_TOKENS = (
    "pirmadienis", "antradienis", "trečiadienis", "ketvirtadienis",
    "penktadienis", "šeštadienis", "sekmadienis",
    "pirmadienį", "antradienį", "trečiadienį", "ketvirtadienį",
    "penktadienį", "šeštadienį", "sekmadienį",
    "pir", "ant", "tre", "ket", "pen", "šeš", "sek",
    "pr", "an", "tr", "kt", "pn", "št", "sk",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "mon", "tue", "tues", "wed", "thu", "thur", "thurs", "fri", "sat", "sun",
)


def _alternation(tokens: tuple[str, ...]) -> str:
    return "|".join(re.escape(t) for t in sorted(set(tokens), key=len, reverse=True))


_MONTH = _alternation(_MONTH_TOKENS)
_WEEKDAY = _alternation(_WEEKDAY_TOKENS)

DATE_LINE_RE = re.compile(
    rf"""^
    (?:(?:{_WEEKDAY})\b\.?,?\s+)?
    (?:\d{{4}}\s*(?:m\.)?[\s,/-]*)?
    (?:\d{{1,2}}\s*(?:d\.)?[\s.,/-]*)?
    (?:{_MONTH})\b\.?
    (?:[\s.,/-]*\d{{1,2}}(?:st|nd|rd|th)?\b(?:\s*d\.)?)?
    (?:[\s,]+\d{{4}}(?:\s*m\.)?)?
    (?:[\s,.-]+(?:{_WEEKDAY})\b\.?)?
    (?:[\s,.-]+\d{{1,2}}[:.]\d{{2}}(?:\s*[ap]m)?)?
    \s*$""",
    re.IGNORECASE | re.VERBOSE,
)
INLINE_DATE_RE = re.compile(
    rf"\b(?:(?:{_MONTH})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?|\d{{1,2}}\s*(?:d\.)?\s*(?:{_MONTH})\.?)\b",
    re.IGNORECASE,
)
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})\b")
ISO_INSTANT_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")

TWELVE_HOUR_RE = re.compile(r"\b(1[0-2]|0?[1-9])(?::([0-5]\d))?\s*(am|pm)\b", re.IGNORECASE)
TWENTY_FOUR_HOUR_RE = re.compile(r"(?<![\d:])([01]?\d|2[0-3]):([0-5]\d)(?![\d:])")
# "19.30" only counts as a time at the end of a date line; elsewhere it is a price
DOTTED_TIME_RE = re.compile(r"(?<![\d.])([01]?\d|2[0-3])\.([0-5]\d)\s*$")

_YEAR_RE = re.compile(r"(?<!\d)(\d{4})(?!\d)")
_DAY_RE = re.compile(r"(?<!\d)(\d{1,2})(?!\d)")


def is_date_line(line: str) -> bool:
    return bool(DATE_LINE_RE.match(line.strip()))


def is_iso_date_line(line: str) -> bool:
    return bool(ISO_DATE_RE.match(line.strip()))


def find_inline_date(text: str) -> Optional[str]:
    """First ``month day`` / ``day month`` phrase inside running text."""
    match = INLINE_DATE_RE.search(text or "")
    return match.group(0) if match else None


def extract_time(text: str) -> Optional[str]:
    """
    Find a time of day in free text and return it as ``HH:MM`` (24-hour).

    A 12-hour ``7 PM`` / ``7:30 pm`` token is preferred over a 24-hour
    ``19:30`` one. Returns None when neither is present.
    """
    if not text:
        return None
    match = TWELVE_HOUR_RE.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if match.group(3).lower() == "pm":
            if hour != 12:
                hour += 12
        elif hour == 12:
            hour = 0
        return f"{hour:02d}:{minute:02d}"
    match = TWENTY_FOUR_HOUR_RE.search(text)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2)}"
    for line in text.splitlines():
        if is_date_line(line):
            match = DOTTED_TIME_RE.search(line.strip())
            if match:
                return f"{int(match.group(1)):02d}:{match.group(2)}"
    return None


def _split_time(time_raw: Optional[str]) -> tuple[int, int]:
    normalized = extract_time(time_raw) if time_raw else None
    if not normalized:
        return DEFAULT_HOUR, DEFAULT_MINUTE
    hours, minutes = normalized.split(":")
    return int(hours), int(minutes)


def _clamped(year: int, month: int, day: int, hour: int, minute: int, zone: tzinfo) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(max(day, 1), last_day), hour, minute, tzinfo=zone)


def match_month(text: str) -> Optional[int]:
    """Month number (1-12) of the first month name found in *text*."""
    lower = text.lower()
    for name, number in MONTHS:
        if name in lower:
            return number
    return None


def normalize_date(
    date_raw: Optional[str],
    time_raw: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Resolve a scraped date fragment (plus optional time) to an aware datetime.

    Returns None only when ``date_raw`` is empty; every other input resolves
    to something, falling back to today's date and 19:00.

    Year rollover: a date more than 24 hours in the past whose month name
    was matched and is earlier than the current month is moved to next
    year (a January event scraped in December). Only the month is
    compared, so a past day in the current month stays in the past.
    """
    if not date_raw or not date_raw.strip():
        return None

    zone = ZoneInfo(settings.timezone)
    if now is None:
        now = datetime.now(zone)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=zone)

    raw = date_raw.strip()

    if ISO_INSTANT_RE.match(raw):
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=zone)

    hour, minute = _split_time(time_raw)

    iso_date = ISO_DATE_RE.match(raw)
    if iso_date:
        year, month, day = (int(part) for part in iso_date.groups())
        if 1 <= month <= 12:
            return _clamped(year, month, day, hour, minute, zone)

    lower = raw.lower()
    month = match_month(lower)
    month_matched = month is not None

    # Times and years would otherwise be taken for the day number
    without_times = DOTTED_TIME_RE.sub(" ", TWENTY_FOUR_HOUR_RE.sub(" ", TWELVE_HOUR_RE.sub(" ", lower)))
    year_match = _YEAR_RE.search(without_times)
    explicit_year = bool(year_match) and 1900 < int(year_match.group(1)) < 2100
    year = int(year_match.group(1)) if explicit_year else now.year
    day_match = _DAY_RE.search(_YEAR_RE.sub(" ", without_times))
    day = int(day_match.group(1)) if day_match else now.day

    result = _clamped(year, month if month_matched else now.month, day, hour, minute, zone)

    if (
        not explicit_year
        and month_matched
        and result < now - timedelta(hours=24)
        and result.month < now.month
    ):
        result = _clamped(result.year + 1, result.month, result.day, hour, minute, zone)

    return result

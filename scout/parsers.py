"""Text parser strategies: raw card/post text -> ParsedEvent.

One strategy per source family. The crawler picks the strategy; parsers know
nothing about URLs or DOM.
"""

import re
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol
from zoneinfo import ZoneInfo

from scout.cities import detect_city
from scout.config import settings
from scout.dates import extract_time, find_inline_date, is_date_line, is_iso_date_line
from scout.models import TITLE_SENTINEL, VENUE_SENTINEL, ParsedEvent, SourceFamily

# UI noise stripped from the head (and, for listing cards, the tail) of a card
NOISE_RE = re.compile(
    r"€|\beur\b|\bkaina\b|išparduota|nemokamai|\bpirkti\b|\bbilietai\b|\bbilietą\b"
    r"|\bbuy tickets?\b|\bget tickets?\b|\bsold out\b",
    re.IGNORECASE,
)
_PRICE_RE = re.compile(r"^(?:nuo\s+|from\s+)?\d+(?:[.,]\d{1,2})?\s*(?:€|eur\b)", re.IGNORECASE)
_NOISE_MAX_LEN = 40

SOCIAL_TITLE_MAX_LEN = 120
_LOCATION_MARKER_RE = re.compile(
    r"(?:\bvieta|\blocation|\bwhere)\s*:\s*(.+)|📍\s*(.+)|(?:^|\s)@\s*([^\n,.!?]+)",
    re.IGNORECASE,
)


def is_noise_line(line: str) -> bool:
    """Ticket prompts, price tokens and status badges; short lines only."""
    if len(line) > _NOISE_MAX_LEN:
        return False
    return bool(_PRICE_RE.match(line) or NOISE_RE.search(line))


def split_lines(text: str) -> list[str]:
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


def strip_head_noise(lines: list[str]) -> list[str]:
    start = 0
    while start < len(lines) and is_noise_line(lines[start]):
        start += 1
    return lines[start:]


def strip_tail_noise(lines: list[str]) -> list[str]:
    end = len(lines)
    while end > 0 and is_noise_line(lines[end - 1]):
        end -= 1
    return lines[:end]


def find_date_index(lines: list[str]) -> Optional[int]:
    """Index of the first date line, else the first strict YYYY-MM-DD line."""
    for i, line in enumerate(lines):
        if is_date_line(line):
            return i
    for i, line in enumerate(lines):
        if is_iso_date_line(line):
            return i
    return None


def _is_any_date(line: str) -> bool:
    return is_date_line(line) or is_iso_date_line(line)


class TextParser(Protocol):
    family: SourceFamily

    def parse(self, raw_text: str) -> Optional[ParsedEvent]:
        ...


class GenericEventParser:
    """Ticketing-style cards: date, title and venue lines in varying order."""

    family = SourceFamily.TICKETING

    def parse(self, raw_text: str) -> Optional[ParsedEvent]:
        lines = self._prepare(split_lines(raw_text))
        if not lines:
            return None
        return self._build(lines, raw_text)

    def _prepare(self, lines: list[str]) -> list[str]:
        return strip_head_noise(lines)

    def _build(self, lines: list[str], raw_text: str) -> ParsedEvent:
        date_index = find_date_index(lines)
        date_raw = lines[date_index] if date_index is not None else ""

        title_index = next(
            (i for i, line in enumerate(lines) if not _is_any_date(line) and not is_noise_line(line)),
            None,
        )
        title = lines[title_index] if title_index is not None else None
        location = self._pick_location(lines, date_index, title_index)

        return self._result(
            title=title,
            location=location,
            date_raw=date_raw,
            time_raw=extract_time(raw_text),
            city_text=raw_text,
        )

    def _pick_location(
        self, lines: list[str], date_index: Optional[int], title_index: Optional[int]
    ) -> Optional[str]:
        def usable(i: int) -> bool:
            if i in (title_index, date_index):
                return False
            return not is_noise_line(lines[i]) and not _is_any_date(lines[i])

        if date_index is not None:
            for i in range(date_index + 1, len(lines)):
                if usable(i):
                    return lines[i]
        for i in range(len(lines) - 1, -1, -1):
            if usable(i):
                return lines[i]
        return None

    @staticmethod
    def _result(
        *,
        title: Optional[str],
        location: Optional[str],
        date_raw: str,
        time_raw: Optional[str],
        city_text: str,
    ) -> ParsedEvent:
        defaulted = []
        if not title:
            title = TITLE_SENTINEL
            defaulted.append("title")
        if not location:
            location = VENUE_SENTINEL
            defaulted.append("location")
        if not date_raw:
            defaulted.append("date_raw")
        return ParsedEvent(
            title=title,
            location=location,
            date_raw=date_raw,
            time_raw=time_raw,
            detected_city=detect_city(city_text),
            defaulted_fields=defaulted,
        )


class ListingEventParser(GenericEventParser):
    """
    Listing-site cards: ``Title / Date[, time] / Venue[, City] / Price``.

    Price and status badges sit at the bottom of these cards, so noise is
    stripped from both ends.
    """

    family = SourceFamily.LISTING

    def _prepare(self, lines: list[str]) -> list[str]:
        return strip_tail_noise(strip_head_noise(lines))


class SocialPostParser(GenericEventParser):
    """
    Free-form social posts.

    Posts rarely follow a layout, so an explicit date is required: a date
    line, a "January 3rd" phrase in the text, an ISO date, or a relative
    keyword (today / tomorrow / New Year's). Without one the post is skipped.
    """

    family = SourceFamily.SOCIAL

    RELATIVE_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
        (("šiandien", "today", "tonight", "šįvakar"), "today"),
        (("rytoj", "tomorrow"), "tomorrow"),
        (("naujųjų", "naujieji", "new year's", "new years"), "new_year"),
    )

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(ZoneInfo(settings.timezone)))

    def parse(self, raw_text: str) -> Optional[ParsedEvent]:
        lines = strip_head_noise(split_lines(raw_text))
        if not lines:
            return None

        date_index = find_date_index(lines)
        if date_index is not None:
            date_raw = lines[date_index]
        else:
            date_raw = find_inline_date(raw_text) or self._relative_date(raw_text) or ""
        if not date_raw:
            return None

        title_line = next((line for line in lines if not _is_any_date(line)), None)
        title = title_line[:SOCIAL_TITLE_MAX_LEN].rstrip() if title_line else None

        return self._result(
            title=title,
            location=self._marked_location(raw_text),
            date_raw=date_raw,
            time_raw=extract_time(raw_text),
            city_text=raw_text,
        )

    def _relative_date(self, text: str) -> Optional[str]:
        lower = text.lower()
        today = self._clock().date()
        for keywords, kind in self.RELATIVE_KEYWORDS:
            if not any(keyword in lower for keyword in keywords):
                continue
            if kind == "today":
                return today.isoformat()
            if kind == "tomorrow":
                return (today + timedelta(days=1)).isoformat()
            return today.replace(month=12, day=31).isoformat()
        return None

    @staticmethod
    def _marked_location(text: str) -> Optional[str]:
        match = _LOCATION_MARKER_RE.search(text)
        if not match:
            return None
        location = next((group for group in match.groups() if group), "").strip()
        return location.splitlines()[0].strip() if location else None


_PARSERS: dict[SourceFamily, TextParser] = {
    SourceFamily.TICKETING: GenericEventParser(),
    SourceFamily.GENERIC: GenericEventParser(),
    SourceFamily.LISTING: ListingEventParser(),
    SourceFamily.SOCIAL: SocialPostParser(),
}


def parser_for_family(family: SourceFamily) -> TextParser:
    return _PARSERS[family]


def parse_generic_event(raw_text: str) -> Optional[ParsedEvent]:
    """Parse ticketing/generic card text. Pure: same input, same output."""
    return _PARSERS[SourceFamily.GENERIC].parse(raw_text)

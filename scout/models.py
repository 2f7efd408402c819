from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TITLE_SENTINEL = "Unknown Title"
VENUE_SENTINEL = "Unknown Venue"


class ApiModel(BaseModel):
    """Base for models exchanged with the events API (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class SourceFamily(str, Enum):
    """Layout family of a target site; selects selectors and text parser."""

    TICKETING = "ticketing"
    """Ticket vendor listings (class-based cards)."""

    LISTING = "listing"
    """Regional listing sites; cards link to detail pages worth a deep scrape."""

    SOCIAL = "social"
    """Social feeds; free-form post text behind a login wall."""

    GENERIC = "generic"
    """Anything else; anchors pointing at event pages."""


class MissionStatus(str, Enum):
    INIT = "INIT"
    """In-process only, never pushed to the API."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Target(ApiModel):
    """A configured site/page the crawler visits on each run."""

    id: Optional[int | str] = None
    name: str
    url: str
    city: Optional[str] = None
    selector: Optional[str] = None
    last_events_found: Optional[int] = None
    last_scraped_at: Optional[datetime] = None


class RawCandidate(BaseModel):
    """Unparsed text + link pair taken from one matched DOM element."""

    text: str
    link: Optional[str] = None


class ParsedEvent(BaseModel):
    """Structured candidate produced by a text parser.

    ``title`` and ``location`` are never empty; when extraction fails they
    carry sentinel values and the field name is recorded in
    ``defaulted_fields``.
    """

    title: str = TITLE_SENTINEL
    location: str = VENUE_SENTINEL
    date_raw: str = ""
    time_raw: Optional[str] = None
    detected_city: Optional[str] = None
    defaulted_fields: list[str] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.defaulted_fields

    @property
    def has_title(self) -> bool:
        return "title" not in self.defaulted_fields

    @property
    def has_location(self) -> bool:
        return "location" not in self.defaulted_fields


class GeoPoint(BaseModel):
    lat: float
    lon: float


class PublishableEvent(ApiModel):
    """Final record posted to ``POST /events``."""

    title: str
    venue: str
    description: str
    type: str
    lat: float
    lng: float
    start_time: datetime
    end_time: datetime
    link: Optional[str] = None


class MissionLog(ApiModel):
    """Progress/status record of one mission, pushed to ``POST /scout/log``."""

    id: str
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None
    status: MissionStatus = MissionStatus.INIT
    events_found: int = 0
    log_summary: str = ""

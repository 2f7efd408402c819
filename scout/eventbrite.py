"""Eventbrite as an event source: structured API data, no crawling or geocoding."""

import logging
import random
from datetime import timedelta
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from scout.config import Settings, settings as default_settings
from scout.geocoder import scatter_point
from scout.models import PublishableEvent

logger = logging.getLogger(__name__)

VENUE_FALLBACK = "Eventbrite Event"
DESCRIPTION_FALLBACK = "No description"


class EventbriteSource:
    """
    Events near the default city from the Eventbrite v3 API.

    The public search endpoint is restricted for most tokens; when it is
    refused, the live events of the token owner's organizations are used.
    """

    name = "Eventbrite"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        config: Settings = default_settings,
        *,
        rng: Optional[random.Random] = None,
    ):
        self._client = client
        self._api_key = api_key
        self._config = config
        self._base_url = config.eventbrite_api_url.rstrip("/")
        self._rng = rng or random.Random()

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        resp = await self._client.get(
            f"{self._base_url}{path}",
            params=params,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        resp.raise_for_status()
        return resp.json()

    # ── Fetching ────────────────────────────────────────────

    async def fetch_raw(self) -> list[dict]:
        me = await self._get("/users/me/")
        logger.info("[%s] Authenticated as %s", self.name, me.get("name"))

        try:
            data = await self._get(
                "/events/search/",
                params={
                    "location.latitude": self._config.default_lat,
                    "location.longitude": self._config.default_lng,
                    "location.within": self._config.eventbrite_search_radius,
                    "expand": "venue",
                },
            )
            events = data.get("events") or []
            logger.info("[%s] Search found %d events", self.name, len(events))
            return events
        except httpx.HTTPError as e:
            logger.warning("[%s] Search refused (%s), using organization events", self.name, e)

        return await self._organization_events(me["id"])

    async def _organization_events(self, user_id: str) -> list[dict]:
        data = await self._get(f"/users/{user_id}/organizations/")
        events: list[dict] = []
        for org in data.get("organizations") or []:
            logger.info("[%s] Organization %s (%s)", self.name, org.get("name"), org.get("id"))
            org_data = await self._get(
                f"/organizations/{org['id']}/events/",
                params={"status": "live", "expand": "venue"},
            )
            events.extend(org_data.get("events") or [])
        return events

    # ── Mapping ─────────────────────────────────────────────

    def to_event(self, raw: Any) -> Optional[PublishableEvent]:
        """Map one API event to a PublishableEvent; None when name or start is missing."""
        if not isinstance(raw, dict):
            return None
        title = _text(raw.get("name"))
        start = (raw.get("start") or {}).get("utc")
        if not title or not start:
            return None

        venue = raw.get("venue") or {}
        address = venue.get("address") or {}
        lat, lng = _coordinate(venue.get("latitude")), _coordinate(venue.get("longitude"))
        if lat is None or lng is None:
            point = scatter_point(
                self._config.default_lat,
                self._config.default_lng,
                self._config.eventbrite_scatter_radius,
                rng=self._rng,
            )
            lat, lng = point.lat, point.lon

        try:
            event = PublishableEvent(
                title=title,
                venue=address.get("localized_address_display") or VENUE_FALLBACK,
                description=_text(raw.get("description")) or DESCRIPTION_FALLBACK,
                type=self._config.eventbrite_event_type,
                lat=lat,
                lng=lng,
                start_time=start,
                end_time=(raw.get("end") or {}).get("utc") or start,
                link=raw.get("url"),
            )
        except ValidationError as e:
            logger.warning("[%s] Skipping %r: %s", self.name, title, e)
            return None

        if event.end_time <= event.start_time:
            event.end_time = event.start_time + timedelta(hours=self._config.event_duration_hours)
        return event

    async def collect(self) -> list[PublishableEvent]:
        raw_events = await self.fetch_raw()
        events = [event for event in map(self.to_event, raw_events) if event is not None]
        logger.info("[%s] %d of %d events usable", self.name, len(events), len(raw_events))
        return events


def _text(value: Any) -> Optional[str]:
    # Eventbrite wraps rich fields as {"text": ..., "html": ...}
    if isinstance(value, dict):
        value = value.get("text")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _coordinate(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

"""Resolve free-text venue strings to coordinates, politely and memoized.

A query is built from the venue text (newlines collapsed, known venue aliases
rewritten to street addresses, city and country appended), then looked up in
the on-disk cache. On a miss the resolvers are tried in order: Nominatim
first, then a rendered map search page. External calls are spaced by at
least ``geocode_delay_seconds``; cache hits never wait.
"""

import asyncio
import json
import logging
import random
import re
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Sequence
from urllib.parse import quote_plus

import httpx

from scout.cities import mentions_city
from scout.config import settings
from scout.errors import GeocodeFailure, NavigationError
from scout.models import GeoPoint

logger = logging.getLogger(__name__)

# Venue names that geocode badly or to the wrong place -> precise address.
# Checked in order, first substring match wins.
VENUE_ALIASES: tuple[tuple[str, str], ...] = (
    ("žalgirio arena", "Karaliaus Mindaugo pr. 50, Kaunas"),
    ("švyturio arena", "Dubysos g. 10, Klaipėda"),
    ("avia solutions group arena", "Ozo g. 14A, Vilnius"),
    ("siemens arena", "Ozo g. 14A, Vilnius"),
    ("compensa", "Kernavės g. 84, Vilnius"),
    ("nacionalinė filharmonija", "Aušros Vartų g. 5, Vilnius"),
    ("kauno filharmonija", "L. Sapiegos g. 5, Kaunas"),
    ("kauno valstybinė filharmonija", "L. Sapiegos g. 5, Kaunas"),
    ("klaipėdos koncertų salė", "Šaulių g. 36, Klaipėda"),
    ("forum palace", "Konstitucijos pr. 26, Vilnius"),
)

_COUNTRY_MARKERS = ("lithuania", "lietuva")

# "@54.8985,23.9036,15z" in a map URL, or "center=54.8985%2C23.9036" in its HTML
_MAP_AT_RE = re.compile(r"@(-?\d{1,2}\.\d+),(-?\d{1,3}\.\d+)")
_MAP_CENTER_RE = re.compile(r"center=(-?\d{1,2}\.\d+)(?:%2C|,)(-?\d{1,3}\.\d+)")


def clean_address(address: str) -> str:
    collapsed = re.sub(r"\s*[\r\n]+\s*", ", ", (address or "").strip())
    return re.sub(r"\s+", " ", collapsed).strip(" ,")


def apply_alias(address: str) -> str:
    lower = address.lower()
    for needle, replacement in VENUE_ALIASES:
        if needle in lower:
            return replacement
    return address


def build_query(address: str, city_context: Optional[str] = None, country: str = settings.country) -> str:
    """Fully qualified geocode query for a scraped venue string.

    An aliased venue already carries its own city; only the country is added.
    """
    cleaned = clean_address(address)
    query = apply_alias(cleaned)
    if query == cleaned and city_context and not mentions_city(query, city_context):
        query = f"{query}, {city_context}"
    lower = query.lower()
    if country.lower() not in lower and not any(marker in lower for marker in _COUNTRY_MARKERS):
        query = f"{query}, {country}"
    return query


def cache_key(query: str) -> str:
    return re.sub(r"\s+", " ", query.strip().lower())


def scatter_point(
    lat: float = settings.default_lat,
    lng: float = settings.default_lng,
    radius: float = settings.scatter_radius,
    rng: Optional[random.Random] = None,
) -> GeoPoint:
    """Random point within ``radius`` degrees of a center; placeable, not accurate."""
    rng = rng or random
    return GeoPoint(
        lat=lat + rng.uniform(-radius, radius),
        lon=lng + rng.uniform(-radius, radius),
    )


def parse_map_coordinates(text: Optional[str]) -> Optional[GeoPoint]:
    if not text:
        return None
    match = _MAP_AT_RE.search(text) or _MAP_CENTER_RE.search(text)
    if not match:
        return None
    return GeoPoint(lat=float(match.group(1)), lon=float(match.group(2)))


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class GeocodeCache:
    """
    JSON file mapping normalized query -> ``{"lat": .., "lon": ..}``.

    Lifecycle: ``open()`` at run start, ``checkpoint()`` after each target,
    ``close()`` at run end. Entries are only ever added during a run.
    """

    def __init__(self, path: str | Path = settings.geocode_cache_path):
        self.path = Path(path)
        self._entries: dict[str, GeoPoint] = {}
        self._dirty = False

    def open(self) -> "GeocodeCache":
        self._entries = {}
        self._dirty = False
        if not self.path.exists():
            logger.info("No geocode cache at %s, starting empty", self.path)
            return self
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            self._entries = {cache_key(k): GeoPoint(**v) for k, v in raw.items()}
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable geocode cache %s: %s", self.path, e)
            self._entries = {}
        logger.info("Loaded %d cached geocodes", len(self._entries))
        return self

    def get(self, query: str) -> Optional[GeoPoint]:
        return self._entries.get(cache_key(query))

    def put(self, query: str, point: GeoPoint) -> None:
        self._entries[cache_key(query)] = point
        self._dirty = True

    def __contains__(self, query: str) -> bool:
        return cache_key(query) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def checkpoint(self) -> bool:
        """Write the cache to disk if anything changed. Returns True on write."""
        if not self._dirty:
            return False
        data = {k: v.model_dump() for k, v in sorted(self._entries.items())}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        self._dirty = False
        logger.debug("Geocode cache saved (%d entries)", len(self._entries))
        return True

    def close(self) -> None:
        self.checkpoint()


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


class GeocodeResolver(Protocol):
    name: str

    async def resolve(self, query: str) -> Optional[GeoPoint]:
        """Coordinates for *query*, None when not found; GeocodeFailure on error."""
        ...


class NominatimResolver:
    """OpenStreetMap Nominatim search; first result wins."""

    name = "nominatim"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str = settings.nominatim_url,
        user_agent: str = settings.geocode_user_agent,
    ):
        self._client = client
        self._base_url = base_url
        self._user_agent = user_agent

    async def resolve(self, query: str) -> Optional[GeoPoint]:
        try:
            resp = await self._client.get(
                self._base_url,
                params={"q": query, "format": "json", "limit": 1},
                headers={"User-Agent": self._user_agent},
            )
            resp.raise_for_status()
            results = resp.json()
            if not results:
                return None
            first = results[0]
            return GeoPoint(lat=float(first["lat"]), lon=float(first["lon"]))
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise GeocodeFailure(f"Nominatim lookup failed for {query!r}: {e}") from e


PageFetcher = Callable[[str], Awaitable[tuple[str, str]]]


class MapsSearchResolver:
    """
    Render a map search page and read the coordinates the map centred on.

    ``fetch_page`` returns ``(final_url, html)``; the crawler provides it.
    """

    name = "maps_search"

    def __init__(self, fetch_page: PageFetcher, *, search_url: str = settings.maps_search_url):
        self._fetch_page = fetch_page
        self._search_url = search_url

    async def resolve(self, query: str) -> Optional[GeoPoint]:
        url = self._search_url + quote_plus(query)
        try:
            final_url, html = await self._fetch_page(url)
        except NavigationError as e:
            raise GeocodeFailure(f"Map search failed for {query!r}: {e}") from e
        return parse_map_coordinates(final_url) or parse_map_coordinates(html)


# ---------------------------------------------------------------------------
# Geocoder
# ---------------------------------------------------------------------------


class Geocoder:
    """Cached, rate-limited resolver chain."""

    def __init__(
        self,
        cache: GeocodeCache,
        resolvers: Sequence[GeocodeResolver],
        *,
        min_delay: float = settings.geocode_delay_seconds,
        country: str = settings.country,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.resolvers = list(resolvers)
        self.external_calls = 0
        self._min_delay = min_delay
        self._country = country
        self._sleep = sleep
        self._clock = clock
        self._last_call: Optional[float] = None

    async def geocode(self, address: str, city_context: Optional[str] = None) -> Optional[GeoPoint]:
        if not address or not address.strip():
            return None

        query = build_query(address, city_context, self._country)
        cached = self.cache.get(query)
        if cached is not None:
            return cached

        for resolver in self.resolvers:
            await self._throttle()
            self.external_calls += 1
            try:
                point = await resolver.resolve(query)
            except GeocodeFailure as e:
                logger.warning("[%s] %s", resolver.name, e)
                continue
            if point is not None:
                logger.debug("[%s] %r -> %.5f, %.5f", resolver.name, query, point.lat, point.lon)
                self.cache.put(query, point)
                return point

        logger.info("No coordinates found for %r", query)
        return None

    async def _throttle(self) -> None:
        if self._last_call is not None:
            wait = self._min_delay - (self._clock() - self._last_call)
            if wait > 0:
                await self._sleep(wait)
        self._last_call = self._clock()

import json
import random
from typing import Optional

import httpx
import pytest

from scout.errors import GeocodeFailure, NavigationError
from scout.geocoder import (
    GeocodeCache,
    Geocoder,
    MapsSearchResolver,
    NominatimResolver,
    build_query,
    cache_key,
    clean_address,
    parse_map_coordinates,
    scatter_point,
)
from scout.models import GeoPoint

KAUNAS = GeoPoint(lat=54.8985, lon=23.9036)


class StubResolver:
    def __init__(self, name: str, result: Optional[GeoPoint] = None, error: bool = False):
        self.name = name
        self.result = result
        self.error = error
        self.queries: list[str] = []

    async def resolve(self, query: str) -> Optional[GeoPoint]:
        self.queries.append(query)
        if self.error:
            raise GeocodeFailure(f"{self.name} is down")
        return self.result


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _geocoder(tmp_path, *resolvers, clock: Optional[FakeClock] = None) -> Geocoder:
    clock = clock or FakeClock()
    cache = GeocodeCache(tmp_path / "cache.json").open()
    return Geocoder(cache, resolvers, min_delay=1.1, sleep=clock.sleep, clock=clock)


# ── Query building ──────────────────────────────────────


def test_clean_address_collapses_newlines() -> None:
    assert clean_address("  Lizdas bar\n Vilniaus g. 5 \n") == "Lizdas bar, Vilniaus g. 5"


def test_build_query_appends_city_and_country() -> None:
    assert build_query("Some Club", "Kaunas") == "Some Club, Kaunas, Lithuania"


def test_build_query_keeps_existing_city_and_country() -> None:
    assert build_query("Kauno menininkų namai, Lietuva", "Kaunas") == "Kauno menininkų namai, Lietuva"


def test_build_query_applies_venue_alias() -> None:
    assert build_query("ŽALGIRIO ARENA (didžioji salė)", "Kaunas") == "Karaliaus Mindaugo pr. 50, Kaunas, Lithuania"


def test_venue_alias_ignores_other_city_context() -> None:
    assert build_query("Žalgirio arena", "Vilnius") == "Karaliaus Mindaugo pr. 50, Kaunas, Lithuania"


def test_cache_key_normalizes_case_and_spaces() -> None:
    assert cache_key("  Some   Club, KAUNAS ") == "some club, kaunas"


# ── Geocoder ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_geocode_is_idempotent(tmp_path) -> None:
    resolver = StubResolver("stub", KAUNAS)
    geocoder = _geocoder(tmp_path, resolver)

    first = await geocoder.geocode("Some Club", "Kaunas")
    second = await geocoder.geocode("Some  club", "Kaunas")

    assert first == second == KAUNAS
    assert len(resolver.queries) == 1
    assert geocoder.external_calls == 1


@pytest.mark.asyncio
async def test_resolver_chain_falls_through(tmp_path) -> None:
    broken = StubResolver("broken", error=True)
    empty = StubResolver("empty")
    working = StubResolver("working", KAUNAS)
    geocoder = _geocoder(tmp_path, broken, empty, working)

    assert await geocoder.geocode("Some Club", "Kaunas") == KAUNAS
    assert broken.queries == empty.queries == working.queries == ["Some Club, Kaunas, Lithuania"]


@pytest.mark.asyncio
async def test_total_failure_is_not_cached(tmp_path) -> None:
    resolver = StubResolver("empty")
    geocoder = _geocoder(tmp_path, resolver)

    assert await geocoder.geocode("Nowhere", "Kaunas") is None
    assert await geocoder.geocode("Nowhere", "Kaunas") is None
    assert len(resolver.queries) == 2
    assert len(geocoder.cache) == 0


@pytest.mark.asyncio
async def test_blank_address_makes_no_call(tmp_path) -> None:
    resolver = StubResolver("stub", KAUNAS)
    geocoder = _geocoder(tmp_path, resolver)

    assert await geocoder.geocode("   ", "Kaunas") is None
    assert resolver.queries == []


@pytest.mark.asyncio
async def test_only_uncached_lookups_are_throttled(tmp_path) -> None:
    clock = FakeClock()
    geocoder = _geocoder(tmp_path, StubResolver("stub", KAUNAS), clock=clock)

    await geocoder.geocode("Club A", "Kaunas")
    await geocoder.geocode("Club B", "Kaunas")
    await geocoder.geocode("Club A", "Kaunas")
    await geocoder.geocode("Club B", "Kaunas")

    assert clock.sleeps == [pytest.approx(1.1)]
    assert geocoder.external_calls == 2


# ── Cache ───────────────────────────────────────────────


def test_cache_round_trip(tmp_path) -> None:
    path = tmp_path / "geo" / "cache.json"
    cache = GeocodeCache(path).open()
    assert len(cache) == 0
    assert cache.checkpoint() is False

    cache.put("Some Club, Kaunas, Lithuania", KAUNAS)
    assert cache.checkpoint() is True
    assert cache.checkpoint() is False

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk == {"some club, kaunas, lithuania": {"lat": 54.8985, "lon": 23.9036}}

    reopened = GeocodeCache(path).open()
    assert reopened.get("SOME CLUB, Kaunas, Lithuania") == KAUNAS
    assert "some club, kaunas, lithuania" in reopened


def test_corrupt_cache_starts_empty(tmp_path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")

    cache = GeocodeCache(path).open()
    assert len(cache) == 0


# ── Resolvers ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_nominatim_request_and_first_result() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"lat": "54.9", "lon": "23.95"}, {"lat": "1", "lon": "1"}])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        resolver = NominatimResolver(client, base_url="https://geo.test/search", user_agent="ScoutTest/1.0")
        point = await resolver.resolve("Some Club, Kaunas, Lithuania")

    assert point == GeoPoint(lat=54.9, lon=23.95)
    request = seen[0]
    assert request.url.params["q"] == "Some Club, Kaunas, Lithuania"
    assert request.url.params["format"] == "json"
    assert request.url.params["limit"] == "1"
    assert request.headers["User-Agent"] == "ScoutTest/1.0"


@pytest.mark.asyncio
async def test_nominatim_empty_and_error() -> None:
    responses = iter([httpx.Response(200, json=[]), httpx.Response(503)])

    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: next(responses))) as client:
        resolver = NominatimResolver(client, base_url="https://geo.test/search")
        assert await resolver.resolve("Nowhere") is None
        with pytest.raises(GeocodeFailure):
            await resolver.resolve("Nowhere")


def test_parse_map_coordinates() -> None:
    url = "https://www.google.com/maps/place/Loftas/@54.6796,25.2920,17z/data=x"
    assert parse_map_coordinates(url) == GeoPoint(lat=54.6796, lon=25.2920)
    assert parse_map_coordinates('<img src="/maps/api?center=55.7033%2C21.1443&zoom=15">') == GeoPoint(
        lat=55.7033, lon=21.1443
    )
    assert parse_map_coordinates("https://www.google.com/maps/search/nothing") is None


@pytest.mark.asyncio
async def test_maps_search_resolver() -> None:
    requested: list[str] = []

    async def fetch(url: str) -> tuple[str, str]:
        requested.append(url)
        return "https://www.google.com/maps/place/X/@55.7033,21.1443,15z", ""

    resolver = MapsSearchResolver(fetch, search_url="https://maps.test/search/")
    assert await resolver.resolve("Švyturio arena, Klaipėda") == GeoPoint(lat=55.7033, lon=21.1443)
    assert requested[0].startswith("https://maps.test/search/")


@pytest.mark.asyncio
async def test_maps_search_navigation_error() -> None:
    async def fetch(url: str) -> tuple[str, str]:
        raise NavigationError("timeout")

    with pytest.raises(GeocodeFailure):
        await MapsSearchResolver(fetch).resolve("Anywhere")


def test_scatter_point_stays_near_center() -> None:
    rng = random.Random(7)
    for _ in range(50):
        point = scatter_point(54.8985, 23.9036, 0.025, rng=rng)
        assert abs(point.lat - 54.8985) <= 0.025
        assert abs(point.lon - 23.9036) <= 0.025

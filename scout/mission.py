"""Scout mission: crawl every target, parse, geocode and publish events."""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, Sequence
from uuid import uuid4
from zoneinfo import ZoneInfo

import httpx

from scout.api import ScoutApi
from scout.config import Settings, settings as default_settings
from scout.dates import normalize_date
from scout.errors import ParseFailure, UploadFailure
from scout.eventbrite import EventbriteSource
from scout.geocoder import GeocodeCache, Geocoder, MapsSearchResolver, NominatimResolver, scatter_point
from scout.models import (
    MissionLog,
    MissionStatus,
    ParsedEvent,
    PublishableEvent,
    RawCandidate,
    Target,
)
from scout.parsers import TextParser
from scout.scraper import TargetCrawler, merge_detail

logger = logging.getLogger(__name__)

DEFAULT_TARGETS = (
    Target(
        name="Bandsintown Klaipėda",
        url="https://www.bandsintown.com/c/klaipeda-lithuania",
        city="Klaipėda",
        selector="a[href*='/e/']",
    ),
)


class EventSource(Protocol):
    """A source that yields ready-made events (API data, no crawling)."""

    name: str

    async def collect(self) -> list[PublishableEvent]:
        ...


@dataclass
class TargetReport:
    name: str
    candidates: int = 0
    events: int = 0
    uploaded: int = 0
    skipped: int = 0


class Mission:
    """
    One end-to-end run over all targets, then all API sources.

    ``INIT -> RUNNING -> SUCCESS | FAILED``. Only a failure before the first
    target (browser launch) fails the run. Errors inside a target or source
    are logged and the next one is processed; an unreachable targets endpoint
    falls back to the built-in default target.

    In dry-run mode nothing is written to the backend and the run stops after
    the first candidate that parses to a dated event.
    """

    def __init__(
        self,
        *,
        api: ScoutApi,
        crawler: TargetCrawler,
        geocoder: Geocoder,
        config: Settings = default_settings,
        sources: Sequence[EventSource] = (),
        dry_run: bool = False,
        url_override: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ):
        self.api = api
        self.crawler = crawler
        self.geocoder = geocoder
        self.config = config
        self.sources = list(sources)
        self.dry_run = dry_run
        self.url_override = url_override
        self.reports: list[TargetReport] = []
        self.log = MissionLog(id=str(uuid4()))
        self._rng = rng or random.Random()

    def _now(self) -> datetime:
        return datetime.now(ZoneInfo(self.config.timezone))

    async def run(self) -> MissionLog:
        self.log.start_time = self._now()
        logger.info("Mission %s starting%s", self.log.id, " (dry run)" if self.dry_run else "")
        cache = self.geocoder.cache
        cache.open()

        try:
            try:
                targets = await self._resolve_targets()
                await self.crawler.start()
            except Exception as e:
                return await self._fail(e)

            self.log.status = MissionStatus.RUNNING
            self.log.log_summary = f"Scouting {len(targets)} targets"
            await self._push_log()

            stop = False
            for target in targets:
                try:
                    stop = await self._run_target(target)
                except Exception as e:
                    logger.exception("[%s] Target failed: %s", target.name, e)
                finally:
                    cache.checkpoint()
                if stop:
                    break

            # An ad-hoc --url run scouts that page only
            if not stop and not self.url_override:
                for source in self.sources:
                    try:
                        stop = await self._run_source(source)
                    except Exception as e:
                        logger.exception("[%s] Source failed: %s", source.name, e)
                    if stop:
                        break

            self.log.status = MissionStatus.SUCCESS
            self.log.end_time = self._now()
            self.log.log_summary = (
                f"Found {self.log.events_found} events across {len(self.reports)} targets"
            )
            logger.info("Mission %s complete: %s", self.log.id, self.log.log_summary)
            await self._push_log()
            return self.log
        finally:
            await self.crawler.close()
            cache.close()

    async def _fail(self, error: Exception) -> MissionLog:
        logger.error("Mission %s failed before scouting: %s", self.log.id, error)
        self.log.status = MissionStatus.FAILED
        self.log.end_time = self._now()
        self.log.log_summary = f"Fatal: {error}"
        await self._push_log()
        return self.log

    async def _resolve_targets(self) -> list[Target]:
        if self.url_override:
            return [Target(name="Manual", url=self.url_override)]
        try:
            targets = await self.api.get_targets()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not load targets from API: %s", e)
            targets = []
        if not targets:
            logger.warning("No targets configured, using defaults")
            return list(DEFAULT_TARGETS)
        return targets

    # ------------------------------------------------------------------
    # Per target
    # ------------------------------------------------------------------

    async def _run_target(self, target: Target) -> bool:
        """Process one target. Returns True when the mission should stop (dry run).

        Events already built are uploaded and the target's stats written even
        when processing stops on an error.
        """
        report = TargetReport(name=target.name)
        self.reports.append(report)
        parser = self.crawler.parser_for(target)
        deep = self.crawler.requires_deep_scrape(target)
        pending: list[PublishableEvent] = []

        try:
            async with self.crawler.session(target):
                candidates = await self.crawler.crawl_target(target)
                report.candidates = len(candidates)

                for candidate in candidates:
                    try:
                        parsed, start = await self._parse_candidate(candidate, parser, deep)
                    except ParseFailure as e:
                        report.skipped += 1
                        logger.debug("[%s] Skipping candidate: %s", target.name, e)
                        continue

                    if self.dry_run:
                        self._print_preview(target, candidate, parsed, start)
                        return True

                    pending.append(await self._build_event(target, candidate, parsed, start))
                    report.events += 1
                    self.log.events_found += 1
                    if len(pending) >= self.config.batch_size:
                        batch, pending = pending, []
                        await self._upload_batch(target.name, batch, report)
        finally:
            if pending:
                batch, pending = pending, []
                await self._upload_batch(target.name, batch, report)
            await self._write_stats(target, report.events)

        logger.info(
            "[%s] %d candidates, %d events, %d uploaded, %d skipped",
            target.name, report.candidates, report.events, report.uploaded, report.skipped,
        )
        return False

    async def _parse_candidate(
        self, candidate: RawCandidate, parser: TextParser, deep: bool
    ) -> tuple[ParsedEvent, datetime]:
        parsed = parser.parse(candidate.text)
        if deep:
            detail = await self.crawler.deep_scrape(candidate, parser)
            parsed = merge_detail(parsed, detail, candidate.text)
        if parsed is None:
            raise ParseFailure(f"no event in {candidate.text[:40]!r}")
        start = normalize_date(parsed.date_raw, parsed.time_raw, now=self._now())
        if start is None:
            raise ParseFailure(f"no date for {parsed.title!r}")
        return parsed, start

    async def _build_event(
        self, target: Target, candidate: RawCandidate, parsed: ParsedEvent, start: datetime
    ) -> PublishableEvent:
        city = parsed.detected_city or target.city
        point = None
        if parsed.has_location:
            point = await self.geocoder.geocode(parsed.location, city)
        if point is None:
            point = scatter_point(
                self.config.default_lat,
                self.config.default_lng,
                self.config.scatter_radius,
                rng=self._rng,
            )
            logger.info("[%s] No coordinates for %r, scattering", target.name, parsed.location)

        return PublishableEvent(
            title=parsed.title,
            venue=parsed.location,
            description=f"Event from {target.name}",
            type=self.config.default_event_type,
            lat=point.lat,
            lng=point.lon,
            start_time=start,
            end_time=start + timedelta(hours=self.config.event_duration_hours),
            link=candidate.link,
        )

    # ------------------------------------------------------------------
    # API sources
    # ------------------------------------------------------------------

    async def _run_source(self, source: EventSource) -> bool:
        """Upload everything a source returns. Returns True to stop (dry run)."""
        report = TargetReport(name=source.name)
        self.reports.append(report)

        events = await source.collect()
        report.candidates = report.events = len(events)
        if self.dry_run:
            if events:
                self._print_event_preview(source.name, events[0])
                return True
            return False

        self.log.events_found += len(events)
        size = self.config.batch_size
        for i in range(0, len(events), size):
            await self._upload_batch(source.name, events[i:i + size], report)

        logger.info("[%s] %d events, %d uploaded", source.name, report.events, report.uploaded)
        return False

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def _upload_batch(self, name: str, events: list[PublishableEvent], report: TargetReport) -> None:
        uploaded = 0
        for event in events:
            try:
                await self.api.post_event(event)
                uploaded += 1
            except UploadFailure as e:
                logger.warning("[%s] %s", name, e)
        report.uploaded += uploaded
        logger.info("[%s] Uploaded %d/%d events", name, uploaded, len(events))

        self.log.log_summary = f"{name}: uploaded {report.uploaded} of {report.events} events so far"
        await self._push_log()

    async def _write_stats(self, target: Target, events_found: int) -> None:
        if self.dry_run or target.id is None:
            return
        try:
            await self.api.update_target_stats(target.id, events_found, self._now())
        except httpx.HTTPError as e:
            logger.warning("[%s] Could not update target stats: %s", target.name, e)

    async def _push_log(self) -> None:
        if self.dry_run:
            return
        try:
            await self.api.push_log(self.log)
        except httpx.HTTPError as e:
            logger.warning("Could not push mission log: %s", e)

    @staticmethod
    def _print_preview(target: Target, candidate: RawCandidate, parsed: ParsedEvent, start: datetime) -> None:
        print(f"\n{'=' * 60}")
        print(f"DRY RUN: first event from {target.name}")
        print("=" * 60)
        print(f"  Title:    {parsed.title}")
        print(f"  Venue:    {parsed.location}")
        print(f"  Date raw: {parsed.date_raw!r}  time raw: {parsed.time_raw!r}")
        print(f"  City:     {parsed.detected_city or target.city or '-'}")
        print(f"  Start:    {start.isoformat()}")
        print(f"  Link:     {candidate.link}")
        if not parsed.is_clean:
            print(f"  Defaults: {', '.join(parsed.defaulted_fields)}")

    @staticmethod
    def _print_event_preview(name: str, event: PublishableEvent) -> None:
        print(f"\n{'=' * 60}")
        print(f"DRY RUN: first event from {name}")
        print("=" * 60)
        print(f"  Title:    {event.title}")
        print(f"  Venue:    {event.venue}")
        print(f"  Start:    {event.start_time.isoformat()}")
        print(f"  Where:    {event.lat:.5f}, {event.lng:.5f}")
        print(f"  Link:     {event.link}")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _parse_main_args(argv: list[str]) -> tuple[bool, Optional[str]]:
    """Return (dry_run, url)."""
    dry_run = False
    url: Optional[str] = None

    i = 0
    while i < len(argv):
        a = argv[i]
        if a == "--dry-run":
            dry_run = True
        elif a.startswith("--url="):
            url = a.split("=", 1)[1].strip() or None
        elif a == "--url" and i + 1 < len(argv):
            url = argv[i + 1].strip() or None
            i += 1
        i += 1
    return dry_run, url


async def main(argv: list[str], config: Settings = default_settings) -> int:
    """Run one mission; exit code 0 on SUCCESS."""
    dry_run, url = _parse_main_args(argv)

    crawler = TargetCrawler(config)
    cache = GeocodeCache(config.geocode_cache_path)

    async with httpx.AsyncClient(timeout=config.api_timeout_seconds) as client:
        geocoder = Geocoder(
            cache,
            [
                NominatimResolver(client, base_url=config.nominatim_url, user_agent=config.geocode_user_agent),
                MapsSearchResolver(crawler.fetch_rendered, search_url=config.maps_search_url),
            ],
            min_delay=config.geocode_delay_seconds,
            country=config.country,
        )
        sources: list[EventSource] = []
        if config.eventbrite_api_key:
            sources.append(EventbriteSource(client, config.eventbrite_api_key, config))
        else:
            logger.info("No Eventbrite API key, skipping Eventbrite")

        mission = Mission(
            api=ScoutApi(client, config.api_url),
            crawler=crawler,
            geocoder=geocoder,
            config=config,
            sources=sources,
            dry_run=dry_run,
            url_override=url,
        )
        log = await mission.run()

    print(f"\n{'=' * 60}")
    print(f"Mission {log.id}: {log.status.value}. {log.log_summary}")
    return 0 if log.status == MissionStatus.SUCCESS else 1

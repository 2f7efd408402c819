"""Crawl target pages in a headless browser (Crawl4AI) and pull raw event candidates."""

import asyncio
import json
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass, fields
from typing import Any, AsyncIterator, Awaitable, Callable, Optional
from urllib.parse import urljoin, urlparse
from uuid import uuid4

from bs4 import BeautifulSoup, Tag
from crawl4ai import AsyncWebCrawler, BrowserConfig, CacheMode, CrawlerRunConfig

from scout.cities import detect_city
from scout.config import Settings, settings as default_settings
from scout.errors import FatalError, NavigationError
from scout.models import (
    TITLE_SENTINEL,
    VENUE_SENTINEL,
    ParsedEvent,
    RawCandidate,
    SourceFamily,
    Target,
)
from scout.parsers import TextParser, parser_for_family

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Source families & selectors
# ---------------------------------------------------------------------------

FAMILY_HOSTS: tuple[tuple[str, SourceFamily], ...] = (
    ("bilietai.lt", SourceFamily.TICKETING),
    ("kakava.lt", SourceFamily.LISTING),
    ("facebook.com", SourceFamily.SOCIAL),
    ("fb.com", SourceFamily.SOCIAL),
)

DEFAULT_SELECTORS: dict[SourceFamily, str] = {
    SourceFamily.TICKETING: ".event_short",
    SourceFamily.LISTING: "a.c-card",
    SourceFamily.SOCIAL: "div[role='article']",
    SourceFamily.GENERIC: "a[href*='/e/']",
}

FALLBACK_SELECTORS: dict[SourceFamily, str] = {
    SourceFamily.TICKETING: "a[href*='/renginiai/']",
    SourceFamily.LISTING: "a[href*='/renginys/']",
}

DEEP_SCRAPE_FAMILIES = frozenset({SourceFamily.LISTING})

# Detail page selectors, most specific first
DETAIL_SELECTORS: dict[str, tuple[str, ...]] = {
    "title": ("h1", "[itemprop='name']", ".event-title", ".event__title"),
    "location": ("[itemprop='location']", ".event-venue", ".venue", ".event__venue", ".location"),
    "time_raw": (".event-time", ".event__time", ".time"),
    "date_raw": ("time[datetime]", "[itemprop='startDate']", ".event-date", ".event__date", ".date"),
}

SOCIAL_POST_LINK_SELECTOR = "a[href*='/posts/'], a[href*='/events/'], a[href*='/permalink/']"

# Detail pages put the whole article in <body>; only the top matters
BODY_TEXT_LIMIT = 4000
MIN_CANDIDATE_TEXT = 10

SOCIAL_UNBLOCK_JS = """
(() => {
  const closers = document.querySelectorAll(
    "div[aria-label='Close'], div[role='dialog'] [aria-label='Close'], [data-testid='cookie-policy-manage-dialog-accept-button']"
  );
  closers.forEach(el => { try { el.click(); } catch (e) {} });
  document.querySelectorAll("div[role='dialog'], div[data-nosnippet]").forEach(el => el.remove());
  document.body.style.overflow = "auto";
  window.scrollBy(0, 600);
})();
"""


def build_scroll_js(step_px: int, max_steps: int, max_ms: int, pause_ms: int) -> str:
    """
    Auto-scroll in fixed steps, bounded by step count and total time.

    The script awaits its own loop, so the crawler's script runner does not
    return until scrolling has finished.
    """
    return f"""await (async () => {{
  const started = Date.now();
  for (let i = 0; i < {max_steps}; i++) {{
    if (Date.now() - started > {max_ms}) break;
    window.scrollBy(0, {step_px});
    await new Promise(r => setTimeout(r, {pause_ms}));
    if (window.innerHeight + window.scrollY >= document.body.scrollHeight) break;
  }}
}})();
"""


def detect_family(url: str) -> SourceFamily:
    host = urlparse(url).netloc.lower()
    for needle, family in FAMILY_HOSTS:
        if needle in host:
            return family
    return SourceFamily.GENERIC


def resolve_selector(target: Target) -> str:
    """Explicit target selector first, otherwise the family default."""
    if target.selector:
        return target.selector
    return DEFAULT_SELECTORS[detect_family(target.url)]


def fallback_selector(target: Target) -> Optional[str]:
    alternate = FALLBACK_SELECTORS.get(detect_family(target.url))
    if alternate and alternate != resolve_selector(target):
        return alternate
    return None


# ---------------------------------------------------------------------------
# HTML extraction (pure)
# ---------------------------------------------------------------------------


def _element_link(element: Tag, base_url: str) -> Optional[str]:
    href = element.get("href") if element.name == "a" else None
    if not href:
        anchor = element.select_one(SOCIAL_POST_LINK_SELECTOR) or element.select_one("a[href]")
        href = anchor.get("href") if anchor else None
    if not href or href.startswith(("javascript:", "#")):
        return None
    return urljoin(base_url, href)


def extract_candidates(
    html: str,
    selector: str,
    base_url: str,
    limit: int = default_settings.max_candidates_per_target,
) -> list[RawCandidate]:
    """One RawCandidate per element matching ``selector``, visible text line by line."""
    soup = BeautifulSoup(html or "", "html.parser")
    candidates: list[RawCandidate] = []
    seen: set[tuple[str, Optional[str]]] = set()
    for element in soup.select(selector):
        text = element.get_text("\n", strip=True)
        if len(text) <= MIN_CANDIDATE_TEXT:
            continue
        link = _element_link(element, base_url)
        if (text, link) in seen:
            continue
        seen.add((text, link))
        candidates.append(RawCandidate(text=text, link=link))
        if len(candidates) >= limit:
            break
    return candidates


@dataclass
class DetailFields:
    """Partial event data from one detail-page source."""

    title: Optional[str] = None
    location: Optional[str] = None
    date_raw: Optional[str] = None
    time_raw: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.title and self.date_raw)

    def fill_from(self, other: "DetailFields") -> None:
        for field in fields(self):
            if not getattr(self, field.name) and getattr(other, field.name):
                setattr(self, field.name, getattr(other, field.name))

    @classmethod
    def from_parsed(cls, parsed: Optional[ParsedEvent]) -> Optional["DetailFields"]:
        if parsed is None:
            return None
        return cls(
            title=parsed.title if parsed.has_title else None,
            location=parsed.location if parsed.has_location else None,
            date_raw=parsed.date_raw or None,
            time_raw=parsed.time_raw,
        )


def _is_event_type(item: dict) -> bool:
    raw_type = item.get("@type")
    types = raw_type if isinstance(raw_type, list) else [raw_type]
    return any(isinstance(t, str) and t.endswith("Event") for t in types)


def _json_ld_items(payload: Any) -> list[dict]:
    if isinstance(payload, list):
        return [item for entry in payload for item in _json_ld_items(entry)]
    if isinstance(payload, dict):
        if "@graph" in payload:
            return _json_ld_items(payload["@graph"])
        return [payload]
    return []


def _json_ld_location(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, str):
        return value.strip() or None
    if not isinstance(value, dict):
        return None
    parts = [value.get("name")]
    address = value.get("address")
    if isinstance(address, dict):
        parts += [address.get("streetAddress"), address.get("addressLocality")]
    elif isinstance(address, str):
        parts.append(address)
    cleaned = [p.strip() for p in parts if isinstance(p, str) and p.strip()]
    return ", ".join(dict.fromkeys(cleaned)) or None


def _from_json_ld(soup: BeautifulSoup) -> Optional[DetailFields]:
    for script in soup.select("script[type='application/ld+json']"):
        try:
            payload = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        for item in _json_ld_items(payload):
            if not _is_event_type(item) or not item.get("startDate"):
                continue
            name = item.get("name")
            return DetailFields(
                title=name.strip() if isinstance(name, str) and name.strip() else None,
                location=_json_ld_location(item.get("location")),
                date_raw=str(item["startDate"]).strip(),
            )
    return None


def _select_text(soup: BeautifulSoup, selectors: tuple[str, ...]) -> Optional[str]:
    for selector in selectors:
        element = soup.select_one(selector)
        if element is None:
            continue
        if element.name == "time" and element.get("datetime"):
            return element["datetime"].strip()
        text = element.get_text(" ", strip=True)
        if text:
            return text
    return None


def _from_dom(soup: BeautifulSoup) -> Optional[DetailFields]:
    found = DetailFields(**{name: _select_text(soup, sels) for name, sels in DETAIL_SELECTORS.items()})
    if not any(getattr(found, f.name) for f in fields(found)):
        return None
    return found


def _meta_content(soup: BeautifulSoup, *selectors: str) -> Optional[str]:
    for selector in selectors:
        tag = soup.select_one(selector)
        if tag and tag.get("content", "").strip():
            return tag["content"].strip()
    return None


def _from_meta(soup: BeautifulSoup, parser: TextParser) -> Optional[DetailFields]:
    description = _meta_content(soup, "meta[name='description']", "meta[property='og:description']")
    if not description:
        return None
    found = DetailFields.from_parsed(parser.parse(description)) or DetailFields()
    og_title = _meta_content(soup, "meta[property='og:title']")
    if og_title:
        found.title = og_title
    return found


def _from_body(soup: BeautifulSoup, parser: TextParser) -> Optional[DetailFields]:
    if soup.body is None:
        return None
    text = soup.body.get_text("\n", strip=True)[:BODY_TEXT_LIMIT]
    return DetailFields.from_parsed(parser.parse(text)) if text else None


def extract_detail(html: str, parser: TextParser) -> Optional[DetailFields]:
    """
    Pull event fields from a detail page.

    Sources in priority order: JSON-LD Event with a startDate, well-known DOM
    selectors, meta description, body text. The first source giving both a
    title and a date wins; the others only fill fields it left empty.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    for script in soup.select("script:not([type='application/ld+json']), style, noscript"):
        script.decompose()

    sources: list[Callable[[], Optional[DetailFields]]] = [
        lambda: _from_json_ld(soup),
        lambda: _from_dom(soup),
        lambda: _from_meta(soup, parser),
        lambda: _from_body(soup, parser),
    ]
    found: list[DetailFields] = []
    winner: Optional[DetailFields] = None
    for source in sources:
        result = source()
        if result is None:
            continue
        found.append(result)
        if result.complete:
            winner = result
            break

    if not found:
        return None
    merged = DetailFields(**vars(winner)) if winner else DetailFields()
    for result in found:
        merged.fill_from(result)
    return merged


def merge_detail(card: Optional[ParsedEvent], detail: Optional[DetailFields], raw_text: str = "") -> Optional[ParsedEvent]:
    """Overlay deep-scrape fields on the list-card parse; the card fills the gaps."""
    if detail is None:
        return card
    base = DetailFields.from_parsed(card) or DetailFields()
    combined = DetailFields(**vars(detail))
    combined.fill_from(base)

    defaulted = [name for name in ("title", "location", "date_raw") if not getattr(combined, name)]
    city_text = " ".join(filter(None, [combined.location, raw_text]))
    return ParsedEvent(
        title=combined.title or TITLE_SENTINEL,
        location=combined.location or VENUE_SENTINEL,
        date_raw=combined.date_raw or "",
        time_raw=combined.time_raw,
        detected_city=detect_city(city_text) or (card.detected_city if card else None),
        defaulted_fields=defaulted,
    )


# ---------------------------------------------------------------------------
# Crawler
# ---------------------------------------------------------------------------


class TargetCrawler:
    """
    One headless browser per mission, one browser page (Crawl4AI session) per
    target. Everything runs sequentially on that page.
    """

    def __init__(
        self,
        config: Settings = default_settings,
        *,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._crawler: Optional[AsyncWebCrawler] = None
        self._session_id: Optional[str] = None

    async def start(self) -> None:
        browser_config = BrowserConfig(
            headless=True,
            text_mode=False,
            user_agent=self.config.browser_user_agent,
        )
        try:
            self._crawler = AsyncWebCrawler(config=browser_config)
            await self._crawler.start()
        except Exception as e:
            self._crawler = None
            raise FatalError(f"Browser launch failed: {e}") from e
        logger.info("Browser started")

    async def close(self) -> None:
        if self._crawler is not None:
            await self._crawler.close()
            self._crawler = None
            logger.info("Browser closed")

    async def __aenter__(self) -> "TargetCrawler":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -- family dispatch ----------------------------------------------------

    def family_for(self, target: Target) -> SourceFamily:
        return detect_family(target.url)

    def parser_for(self, target: Target) -> TextParser:
        return parser_for_family(self.family_for(target))

    def requires_deep_scrape(self, target: Target) -> bool:
        return self.family_for(target) in DEEP_SCRAPE_FAMILIES

    # -- page lifecycle -----------------------------------------------------

    @asynccontextmanager
    async def session(self, target: Target) -> AsyncIterator["TargetCrawler"]:
        """Dedicated browser page for one target, closed however the target ends."""
        self._session_id = f"target-{uuid4().hex[:12]}"
        try:
            yield self
        finally:
            session_id, self._session_id = self._session_id, None
            await self._kill_session(session_id)

    async def _kill_session(self, session_id: str) -> None:
        if self._crawler is None:
            return
        try:
            await self._crawler.crawler_strategy.kill_session(session_id)
        except Exception as e:
            logger.warning("Could not close page %s: %s", session_id, e)

    async def _fetch(
        self,
        url: str,
        *,
        wait_for: Optional[str] = None,
        js_before_wait: Optional[list[str]] = None,
        wait_until: str = "domcontentloaded",
        delay: float = 0.0,
    ) -> tuple[str, str]:
        """
        Navigate the current page to ``url``; returns ``(final_url, html)``.

        Order on the page: load, ``js_before_wait`` scripts, ``wait_for``,
        then ``delay`` seconds of settling before the HTML is taken.
        """
        if self._crawler is None:
            raise NavigationError("Browser not started")

        run_config = CrawlerRunConfig(
            cache_mode=CacheMode.BYPASS,
            session_id=self._session_id,
            wait_until=wait_until,
            wait_for=wait_for,
            js_code_before_wait=js_before_wait,
            page_timeout=self.config.page_timeout_ms,
            delay_before_return_html=delay,
        )
        try:
            result = await self._crawler.arun(url=url, config=run_config)
        except Exception as e:
            raise NavigationError(f"Crawl failed for {url}: {e}") from e

        if not result.success:
            raise NavigationError(f"Crawl failed for {url}: {result.error_message}")
        final_url = getattr(result, "redirected_url", None) or result.url or url
        return final_url, result.html or ""

    # -- operations ---------------------------------------------------------

    async def crawl_target(self, target: Target) -> list[RawCandidate]:
        """Raw candidates for one target; navigation problems mean zero candidates."""
        family = self.family_for(target)
        primary = resolve_selector(target)
        alternate = fallback_selector(target)
        wait_selector = f"{primary}, {alternate}" if alternate else primary

        # Overlays go first, then lazy-load scrolling; both before the selector wait
        js_before_wait = [
            build_scroll_js(
                self.config.scroll_step_px,
                self.config.scroll_max_steps,
                self.config.scroll_max_ms,
                self.config.scroll_pause_ms,
            )
        ]
        if family == SourceFamily.SOCIAL:
            js_before_wait.insert(0, SOCIAL_UNBLOCK_JS)

        logger.info("[%s] Visiting %s (%s, selector %r)", target.name, target.url, family.value, primary)
        try:
            final_url, html = await self._fetch(
                target.url,
                wait_for=f"css:{wait_selector}",
                js_before_wait=js_before_wait,
                wait_until="networkidle",
                delay=self.config.settle_delay_seconds,
            )
        except NavigationError as e:
            logger.warning("[%s] %s", target.name, e)
            return []

        limit = self.config.max_candidates_per_target
        candidates = extract_candidates(html, primary, final_url, limit)
        if not candidates and alternate:
            logger.info("[%s] No match for %r, trying %r", target.name, primary, alternate)
            candidates = extract_candidates(html, alternate, final_url, limit)

        logger.info("[%s] Extracted %d raw candidates", target.name, len(candidates))
        return candidates

    async def deep_scrape(self, candidate: RawCandidate, parser: TextParser) -> Optional[DetailFields]:
        """Visit the candidate's own page; None when it cannot be loaded."""
        if not candidate.link:
            return None
        try:
            _, html = await self._fetch(candidate.link, delay=self.config.hydration_delay_seconds)
        except NavigationError as e:
            logger.warning("Deep scrape failed, keeping card fields: %s", e)
            return None
        finally:
            await self._pace()
        return extract_detail(html, parser)

    async def fetch_rendered(self, url: str) -> tuple[str, str]:
        """Rendered ``(final_url, html)`` of an arbitrary page, e.g. a map search."""
        return await self._fetch(url, delay=self.config.hydration_delay_seconds)

    async def _pace(self) -> None:
        """Randomized pause between detail page visits."""
        await self._sleep(self._rng.uniform(self.config.pacing_min_seconds, self.config.pacing_max_seconds))

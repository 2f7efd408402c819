"""Client for the events backend: targets, events and mission logs."""

import logging
from datetime import datetime
from typing import Optional

import httpx

from scout.config import settings
from scout.errors import UploadFailure
from scout.models import MissionLog, PublishableEvent, Target

logger = logging.getLogger(__name__)


class ScoutApi:
    """
    Thin async wrapper over the backend's JSON endpoints.

    The backend owns persistence and deduplication (same link, or same title
    and start time, is not stored twice).
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str = settings.api_url):
        self._client = client
        self._base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    # ── Targets ─────────────────────────────────────────────

    async def get_targets(self) -> list[Target]:
        resp = await self._client.get(self._url("/targets"))
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, list):
            raise ValueError(f"Expected a list of targets, got {type(data).__name__}")
        return [Target.model_validate(item) for item in data]

    async def update_target_stats(
        self, target_id: int | str, events_found: int, scraped_at: datetime
    ) -> None:
        body = {"lastEventsFound": events_found, "lastScrapedAt": scraped_at.isoformat()}
        resp = await self._client.patch(self._url(f"/targets/{target_id}"), json=body)
        resp.raise_for_status()

    # ── Events ──────────────────────────────────────────────

    async def post_event(self, event: PublishableEvent) -> Optional[dict]:
        """Create one event; raises UploadFailure when the backend refuses it."""
        try:
            resp = await self._client.post(self._url("/events"), json=event.to_payload())
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise UploadFailure(f"Upload of {event.title!r} failed: {e}") from e
        try:
            return resp.json()
        except ValueError:
            return None

    # ── Mission log ─────────────────────────────────────────

    async def push_log(self, log: MissionLog) -> None:
        resp = await self._client.post(self._url("/scout/log"), json=log.to_payload())
        resp.raise_for_status()

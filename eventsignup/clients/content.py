"""WordPress GraphQL content source (events, guide rosters, release dates)."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from ..config import Settings
from ..domain.capacity import RIDE_LEVELS, EventAccessData
from ..domain.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

ACCESS_QUERY = (
    "query GetRideEventAccess($id: ID!) { rideEvent(id: $id, idType: DATABASE_ID) { "
    "publicReleaseDate eventDetails { isFlintaOnly workshopCapacity "
    + " ".join(f"{level} {{ guides {{ nodes {{ id }} }} }}" for level in RIDE_LEVELS)
    + " } } }"
)
TITLE_QUERY = "query GetRideEventTitle($id: ID!) { rideEvent(id: $id, idType: DATABASE_ID) { title } }"


class ContentSourceError(Exception):
    pass


def _guide_count(details: dict[str, Any], level: str) -> int:
    nodes = ((details.get(level) or {}).get("guides") or {}).get("nodes")
    return len(nodes) if isinstance(nodes, list) else 0


def parse_access_data(payload: dict[str, Any]) -> Optional[EventAccessData]:
    ride_event = (payload.get("data") or {}).get("rideEvent")
    if not ride_event:
        return None
    details = ride_event.get("eventDetails") or {}
    workshop_capacity = details.get("workshopCapacity")
    return EventAccessData(
        public_release_date=ride_event.get("publicReleaseDate"),
        is_flinta_only=bool(details.get("isFlintaOnly")),
        workshop_capacity=workshop_capacity if isinstance(workshop_capacity, int) else None,
        guide_counts={level: _guide_count(details, level) for level in RIDE_LEVELS},
    )


class ContentSource:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._url = settings.CONTENT_GRAPHQL_URL
        self._retries = settings.UPSTREAM_RETRIES
        self._backoff = settings.UPSTREAM_RETRY_BACKOFF_SEC
        self._default_title = settings.DEFAULT_EVENT_TITLE
        self._client = client or httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SEC)

    async def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """POST a read-only query; retried because it has no side effects."""
        last: Exception | None = None
        for attempt in range(self._retries + 1):
            try:
                resp = await self._client.post(self._url, json={"query": query, "variables": variables})
                resp.raise_for_status()
                payload = resp.json()
                if payload.get("errors"):
                    raise ContentSourceError("graphql errors")
                return payload
            except (httpx.HTTPError, ValueError, ContentSourceError) as e:
                last = e
                logger.warning(
                    "content_query_failed",
                    extra={"attempt": attempt + 1, "error": str(e)},
                )
                if attempt < self._retries:
                    await asyncio.sleep(self._backoff * (attempt + 1))
        raise ContentSourceError("content source unavailable") from last

    async def fetch_event_access_data(self, event_id: int) -> Optional[EventAccessData]:
        try:
            payload = await self._query(ACCESS_QUERY, {"id": event_id})
        except ContentSourceError:
            raise UpstreamUnavailable("Unable to verify event access window.")
        return parse_access_data(payload)

    async def fetch_event_title(self, event_id: int) -> str:
        # only used for email copy, so never fail
        try:
            payload = await self._query(TITLE_QUERY, {"id": event_id})
        except ContentSourceError:
            return self._default_title
        ride_event = (payload.get("data") or {}).get("rideEvent") or {}
        return ride_event.get("title") or self._default_title

    async def aclose(self) -> None:
        await self._client.aclose()

import logging
from typing import Any, Optional

import httpx

from .config import settings
from .database import ACTIVITY_COLUMNS, NORMALIZED_USER, row_to_event
from .ids import normalize_id
from .models import PlaybackEvent

logger = logging.getLogger(__name__)


class PlaybackReportingClient:
    """Read playback activity through the Playback Reporting plugin's HTTP API."""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        self.base_url = (base_url or settings.jellyfin_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.jellyfin_api_key

    async def submit_custom_query(self, query: str) -> list[dict[str, Any]]:
        """Run a read-only SQL query on the plugin and return rows as dicts."""
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/user_usage_stats/submit_custom_query",
                params={"api_key": self.api_key},
                json={"CustomQueryString": query, "ReplaceUserId": False},
                timeout=60.0,
            )

            if response.status_code != 200:
                logger.error(f"Failed to query Playback Reporting: {response.status_code}")
                return []

            data = response.json()

        # Older plugin versions misspell the key
        columns = data.get("columns") or data.get("colums") or []
        results = data.get("results", [])

        if not columns:
            logger.error("Playback Reporting response missing columns")
            return []

        return [dict(zip(columns, row)) for row in results]

    async def list_events(self, user_id: str, year: int) -> list[PlaybackEvent]:
        """All non-audio playback rows of a user in a year, oldest first."""
        # The plugin endpoint takes no bind parameters
        user = normalize_id(user_id).replace("'", "")
        query = f"""
            SELECT {ACTIVITY_COLUMNS}
            FROM PlaybackActivity
            WHERE {NORMALIZED_USER} = '{user}'
                AND strftime('%Y', DateCreated) = '{int(year)}'
                AND ItemType != 'Audio'
            ORDER BY DateCreated ASC, rowid ASC
        """

        rows = await self.submit_custom_query(query)
        events = []
        for row in rows:
            try:
                events.append(row_to_event(row))
            except ValueError as e:
                logger.warning(f"Skipping unparseable playback row: {e}")

        logger.info(f"Fetched {len(events)} playback events for {user} in {year}")
        return events

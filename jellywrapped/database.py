import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from .config import settings
from .formatting import seconds_to_hours
from .ids import normalize_id, to_uuid_format
from .models import (
    PlaybackEvent,
    PlaybackMethodCounts,
    Population,
    PopulationEntry,
    ServerStats,
    ServerTopMovie,
    ServerTopShow,
    User,
)
from .series import SeriesNameParser, series_from_episode_name

logger = logging.getLogger(__name__)

# Jellyfin stores runtimes in 100-nanosecond ticks
TICKS_PER_SECOND = 10_000_000

SERIES_TYPE = "MediaBrowser.Controller.Entities.TV.Series"
EPISODE_TYPE = "MediaBrowser.Controller.Entities.TV.Episode"

ACTIVITY_COLUMNS = """
    rowid,
    DateCreated,
    UserId,
    ItemId,
    ItemType,
    ItemName,
    PlaybackMethod,
    ClientName,
    DeviceName,
    PlayDuration
"""

NORMALIZED_USER = "LOWER(REPLACE(UserId, '-', ''))"

METHOD_COUNTS = """
    SUM(CASE WHEN PlaybackMethod = 'DirectPlay' THEN 1 ELSE 0 END) as direct,
    SUM(CASE WHEN PlaybackMethod = 'DirectStream' OR PlaybackMethod LIKE '%v:direct%'
        THEN 1 ELSE 0 END) as remux,
    SUM(CASE WHEN PlaybackMethod LIKE 'Transcode%' AND PlaybackMethod NOT LIKE '%v:direct%'
        THEN 1 ELSE 0 END) as transcode
"""


def parse_date_created(value: Any) -> datetime:
    """Parse a Playback Reporting timestamp. Naive values are UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        date_str = str(value or "")
        try:
            parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = datetime.strptime(date_str, "%Y-%m-%d %H:%M:%S.%f")
            except ValueError:
                parsed = datetime.strptime(date_str[:19], "%Y-%m-%d %H:%M:%S")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def row_to_event(row: Mapping[str, Any]) -> PlaybackEvent:
    """Convert a PlaybackActivity row, from SQLite or the plugin API."""
    return PlaybackEvent(
        user_id=normalize_id(str(row.get("UserId") or "")),
        item_id=normalize_id(str(row.get("ItemId") or "")),
        item_name=row.get("ItemName") or "Unknown",
        item_type=row.get("ItemType") or "Unknown",
        playback_method=row.get("PlaybackMethod") or "",
        client_name=row.get("ClientName") or "Unknown",
        device_name=row.get("DeviceName") or "Unknown",
        started_at=parse_date_created(row.get("DateCreated")),
        play_duration_seconds=max(0, int(row.get("PlayDuration") or 0)),
    )


def row_to_user(row: Mapping[str, Any]) -> User:
    return User(id=row["Id"], username=row["Username"], normalized_id=normalize_id(row["Id"]))


def split_genres(value: Optional[str]) -> list[str]:
    """Jellyfin keeps genres as one pipe-delimited string."""
    if not value:
        return []
    return [genre for genre in value.split("|") if genre]


class _ReadOnlyDatabase:
    """aiosqlite connection to a database owned by Jellyfin or its plugins."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Open the database read-only."""
        uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
        self._connection = await aiosqlite.connect(uri, uri=True)
        self._connection.row_factory = aiosqlite.Row
        logger.info(f"Opened {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("Database not connected")
        return self._connection

    async def _fetchall(self, query: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        cursor = await self.conn.execute(query, tuple(params))
        return list(await cursor.fetchall())

    async def _fetchone(self, query: str, params: Iterable[Any] = ()) -> Optional[aiosqlite.Row]:
        cursor = await self.conn.execute(query, tuple(params))
        return await cursor.fetchone()


class PlaybackDatabase(_ReadOnlyDatabase):
    """Queries against the Playback Reporting plugin's PlaybackActivity table."""

    def __init__(self, db_path: Optional[Path] = None):
        super().__init__(db_path or settings.playback_database_path_resolved)

    async def list_events(self, user_id: str, year: int) -> list[PlaybackEvent]:
        """All non-audio playback rows of a user in a year, oldest first."""
        rows = await self._fetchall(
            f"""
            SELECT {ACTIVITY_COLUMNS}
            FROM PlaybackActivity
            WHERE {NORMALIZED_USER} = ?
                AND strftime('%Y', DateCreated) = ?
                AND ItemType != 'Audio'
            ORDER BY DateCreated ASC, rowid ASC
            """,
            (normalize_id(user_id), str(year)),
        )
        return [row_to_event(dict(row)) for row in rows]

    async def get_available_years(self, user_id: Optional[str] = None) -> list[int]:
        """Years with playback, newest first, for one user or the whole server."""
        params: list[str] = []
        user_filter = ""
        if user_id:
            user_filter = f" AND {NORMALIZED_USER} = ?"
            params.append(normalize_id(user_id))
        rows = await self._fetchall(
            f"""
            SELECT DISTINCT strftime('%Y', DateCreated) as year
            FROM PlaybackActivity
            WHERE ItemType != 'Audio'{user_filter}
            ORDER BY year DESC
            """,
            params,
        )
        return [int(row["year"]) for row in rows if row["year"]]

    async def get_user_ids(self, year: Optional[int] = None) -> list[str]:
        params: list[str] = []
        year_filter = ""
        if year is not None:
            year_filter = " AND strftime('%Y', DateCreated) = ?"
            params.append(str(year))
        rows = await self._fetchall(
            f"""
            SELECT DISTINCT {NORMALIZED_USER} as user_id
            FROM PlaybackActivity
            WHERE ItemType != 'Audio'{year_filter}
            ORDER BY user_id
            """,
            params,
        )
        return [row["user_id"] for row in rows]

    async def _hours_by_user(self, year: int, type_filter: str) -> list[PopulationEntry]:
        rows = await self._fetchall(
            f"""
            SELECT
                {NORMALIZED_USER} as user_id,
                SUM(PlayDuration) / 3600.0 as hours
            FROM PlaybackActivity
            WHERE strftime('%Y', DateCreated) = ?
                AND {type_filter}
            GROUP BY user_id
            ORDER BY hours DESC
            """,
            (str(year),),
        )
        return [PopulationEntry(user_id=row["user_id"], value=row["hours"] or 0.0) for row in rows]

    async def get_user_hours(self, year: int) -> list[PopulationEntry]:
        """Total non-audio hours per user in a year."""
        return await self._hours_by_user(year, "ItemType != 'Audio'")

    async def _unique_movies_by_user(self, year: int) -> list[PopulationEntry]:
        rows = await self._fetchall(
            f"""
            SELECT
                {NORMALIZED_USER} as user_id,
                COUNT(DISTINCT ItemId) as unique_movies
            FROM PlaybackActivity
            WHERE strftime('%Y', DateCreated) = ?
                AND ItemType = 'Movie'
            GROUP BY user_id
            ORDER BY unique_movies DESC
            """,
            (str(year),),
        )
        return [PopulationEntry(user_id=row["user_id"], value=row["unique_movies"]) for row in rows]

    async def _unique_shows_by_user(
        self, year: int, parser: SeriesNameParser
    ) -> list[PopulationEntry]:
        rows = await self._fetchall(
            f"""
            SELECT DISTINCT
                {NORMALIZED_USER} as user_id,
                ItemName as item_name
            FROM PlaybackActivity
            WHERE strftime('%Y', DateCreated) = ?
                AND ItemType = 'Episode'
            """,
            (str(year),),
        )
        shows: dict[str, set[str]] = {}
        for row in rows:
            shows.setdefault(row["user_id"], set()).add(parser(row["item_name"] or ""))
        return [PopulationEntry(user_id=user_id, value=len(names)) for user_id, names in shows.items()]

    async def _playback_methods_by_user(self, year: int) -> list[PlaybackMethodCounts]:
        rows = await self._fetchall(
            f"""
            SELECT
                {NORMALIZED_USER} as user_id,
                {METHOD_COUNTS}
            FROM PlaybackActivity
            WHERE strftime('%Y', DateCreated) = ?
                AND ItemType != 'Audio'
            GROUP BY user_id
            """,
            (str(year),),
        )
        return [
            PlaybackMethodCounts(
                user_id=row["user_id"],
                direct=row["direct"] or 0,
                remux=row["remux"] or 0,
                transcode=row["transcode"] or 0,
            )
            for row in rows
        ]

    async def get_population(
        self, year: int, parser: SeriesNameParser = series_from_episode_name
    ) -> Population:
        """Per-metric values for every user with playback in the year."""
        return Population(
            total_hours=await self.get_user_hours(year),
            movie_hours=await self._hours_by_user(year, "ItemType = 'Movie'"),
            show_hours=await self._hours_by_user(year, "ItemType = 'Episode'"),
            unique_movies=await self._unique_movies_by_user(year),
            unique_shows=await self._unique_shows_by_user(year, parser),
            playback_methods=await self._playback_methods_by_user(year),
        )

    async def get_server_top_movies(self, year: int, limit: int = 5) -> list[ServerTopMovie]:
        rows = await self._fetchall(
            f"""
            SELECT
                ItemId as item_id,
                MAX(ItemName) as item_name,
                SUM(PlayDuration) as total_seconds,
                COUNT(*) as total_plays,
                COUNT(DISTINCT {NORMALIZED_USER}) as unique_viewers
            FROM PlaybackActivity
            WHERE strftime('%Y', DateCreated) = ?
                AND ItemType = 'Movie'
            GROUP BY ItemId
            ORDER BY total_seconds DESC
            LIMIT ?
            """,
            (str(year), limit),
        )
        return [
            ServerTopMovie(
                item_id=normalize_id(row["item_id"] or ""),
                item_name=row["item_name"] or "Unknown",
                total_hours=seconds_to_hours(row["total_seconds"] or 0),
                total_plays=row["total_plays"],
                unique_viewers=row["unique_viewers"],
            )
            for row in rows
        ]

    async def get_server_top_shows(
        self,
        year: int,
        limit: int = 5,
        parser: SeriesNameParser = series_from_episode_name,
    ) -> list[ServerTopShow]:
        rows = await self._fetchall(
            f"""
            SELECT
                ItemName as item_name,
                {NORMALIZED_USER} as user_id,
                SUM(PlayDuration) as total_seconds,
                COUNT(*) as plays
            FROM PlaybackActivity
            WHERE strftime('%Y', DateCreated) = ?
                AND ItemType = 'Episode'
            GROUP BY item_name, user_id
            """,
            (str(year),),
        )

        shows: dict[str, dict[str, Any]] = {}
        for row in rows:
            series_name = parser(row["item_name"] or "")
            show = shows.setdefault(
                series_name, {"total_seconds": 0, "total_episodes": 0, "viewers": set()}
            )
            show["total_seconds"] += row["total_seconds"] or 0
            show["total_episodes"] += row["plays"]
            show["viewers"].add(row["user_id"])

        ranked = sorted(shows.items(), key=lambda item: item[1]["total_seconds"], reverse=True)
        return [
            ServerTopShow(
                series_name=series_name,
                total_hours=seconds_to_hours(show["total_seconds"]),
                total_episodes=show["total_episodes"],
                unique_viewers=len(show["viewers"]),
            )
            for series_name, show in ranked[:limit]
        ]

    async def get_server_stats(
        self,
        year: int,
        limit: int = 5,
        parser: SeriesNameParser = series_from_episode_name,
    ) -> ServerStats:
        """Server-wide totals and top titles for a year."""
        row = await self._fetchone(
            f"""
            SELECT
                COALESCE(SUM(PlayDuration), 0) as total_seconds,
                COUNT(*) as total_plays,
                COUNT(DISTINCT {NORMALIZED_USER}) as unique_users,
                COUNT(DISTINCT CASE WHEN ItemType = 'Movie' THEN ItemId END) as unique_movies,
                COUNT(DISTINCT CASE WHEN ItemType = 'Episode' THEN ItemId END) as unique_episodes
            FROM PlaybackActivity
            WHERE strftime('%Y', DateCreated) = ?
                AND ItemType != 'Audio'
            """,
            (str(year),),
        )
        return ServerStats(
            year=year,
            total_hours=seconds_to_hours(row["total_seconds"] or 0),
            total_plays=row["total_plays"] or 0,
            unique_users=row["unique_users"] or 0,
            unique_movies=row["unique_movies"] or 0,
            unique_episodes=row["unique_episodes"] or 0,
            top_movies=await self.get_server_top_movies(year, limit),
            top_shows=await self.get_server_top_shows(year, limit, parser),
        )


class LibraryDatabase(_ReadOnlyDatabase):
    """Runtime and genre lookups against Jellyfin's own jellyfin.db."""

    def __init__(self, db_path: Optional[Path] = None):
        super().__init__(db_path or settings.jellyfin_database_path_resolved)

    async def get_item_runtimes(self, item_ids: Iterable[str]) -> dict[str, float]:
        """Runtime in seconds per normalized item id. Unknown runtimes are left out."""
        uuid_ids = [to_uuid_format(item_id) for item_id in item_ids]
        if not uuid_ids:
            return {}
        placeholders = ", ".join("?" for _ in uuid_ids)
        rows = await self._fetchall(
            f"""
            SELECT Id, RunTimeTicks / ? as runtime_seconds
            FROM BaseItems
            WHERE Id IN ({placeholders})
                AND RunTimeTicks > 0
            """,
            (TICKS_PER_SECOND, *uuid_ids),
        )
        return {normalize_id(row["Id"]): row["runtime_seconds"] for row in rows}

    async def get_series_average_episode_runtime(self, series_name: str) -> Optional[float]:
        row = await self._fetchone(
            """
            SELECT AVG(RunTimeTicks) / ? as average_seconds
            FROM BaseItems
            WHERE Type = ?
                AND SeriesName = ?
                AND RunTimeTicks > 0
            """,
            (TICKS_PER_SECOND, EPISODE_TYPE, series_name),
        )
        if not row or not row["average_seconds"]:
            return None
        return row["average_seconds"]

    async def get_items_genres(self, item_ids: Iterable[str]) -> dict[str, list[str]]:
        uuid_ids = [to_uuid_format(item_id) for item_id in item_ids]
        if not uuid_ids:
            return {}
        placeholders = ", ".join("?" for _ in uuid_ids)
        rows = await self._fetchall(
            f"""
            SELECT Id, Genres
            FROM BaseItems
            WHERE Id IN ({placeholders})
                AND Genres IS NOT NULL
                AND length(Genres) > 0
            """,
            uuid_ids,
        )
        return {normalize_id(row["Id"]): split_genres(row["Genres"]) for row in rows}

    async def get_users(self) -> list[User]:
        rows = await self._fetchall("SELECT Id, Username FROM Users ORDER BY Username")
        return [row_to_user(row) for row in rows]

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Look a user up by id in either the dashed or the plain form."""
        row = await self._fetchone(
            "SELECT Id, Username FROM Users WHERE LOWER(REPLACE(Id, '-', '')) = ?",
            (normalize_id(user_id),),
        )
        return row_to_user(row) if row else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        row = await self._fetchone(
            "SELECT Id, Username FROM Users WHERE LOWER(Username) = LOWER(?)",
            (username,),
        )
        return row_to_user(row) if row else None

    async def get_series_genres(self, series_name: str) -> list[str]:
        row = await self._fetchone(
            """
            SELECT Genres
            FROM BaseItems
            WHERE Type = ?
                AND Name = ?
            LIMIT 1
            """,
            (SERIES_TYPE, series_name),
        )
        if not row:
            return []
        return split_genres(row["Genres"])


# Global database instances
playback_db = PlaybackDatabase()
library_db = LibraryDatabase()

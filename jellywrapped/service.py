"""Orchestrates I/O and the pure analytics for one user and one year.

Everything a stage needs is fetched up front, then the synchronous
functions from ``sessions``, ``marathons``, ``stats``, ``comparison`` and
``personality`` run over it.
"""

import logging
from collections.abc import Iterable
from typing import Optional, Protocol

from . import comparison, personality
from .cache import MetadataCache
from .config import Settings, settings
from .database import LibraryDatabase, PlaybackDatabase, library_db, playback_db
from .formatting import round_half_up
from .marathons import detect_marathons, get_marathon_stats, get_top_marathons
from .models import (
    Marathon,
    MarathonStats,
    MetadataSnapshot,
    PlaybackEvent,
    PlaybackSession,
    ServerStats,
    User,
    UserComparison,
    UserRanking,
    UserWithHours,
    YearInReview,
)
from .reporting_client import PlaybackReportingClient
from .series import SeriesNameParser, series_from_episode_name
from .sessions import (
    calculate_total_stats,
    ensure_chronological,
    exclude_audio,
    flatten_events,
    reconstruct_sessions,
)
from .stats import (
    aggregate_by_series,
    get_abandoned_movies,
    get_client_stats,
    get_day_of_week_stats,
    get_device_stats,
    get_finished_movie_count,
    get_hourly_stats,
    get_monthly_stats,
    get_playback_method_stats,
    get_top_genres,
    get_top_movies,
    get_top_shows,
)
from .timeutils import resolve_timezone

logger = logging.getLogger(__name__)


class UserNotFoundError(LookupError):
    """No Jellyfin account matches a user id or username."""


class EventSource(Protocol):
    async def list_events(self, user_id: str, year: int) -> list[PlaybackEvent]: ...


class WrappedService:
    def __init__(
        self,
        playback: PlaybackDatabase,
        library: LibraryDatabase,
        cache: MetadataCache,
        event_source: Optional[EventSource] = None,
        config: Optional[Settings] = None,
        series_parser: SeriesNameParser = series_from_episode_name,
    ):
        self.playback = playback
        self.library = library
        self.cache = cache
        self.event_source = event_source or playback
        self.config = config or settings
        self.series_parser = series_parser

    async def get_events(self, user_id: str, year: int) -> list[PlaybackEvent]:
        events = exclude_audio(await self.event_source.list_events(user_id, year))
        return ensure_chronological(events)

    async def get_sessions(self, user_id: str, year: int) -> list[PlaybackSession]:
        events = await self.get_events(user_id, year)
        sessions = reconstruct_sessions(
            events,
            min_gap_seconds=self.config.session_gap_min_seconds,
            max_gap_seconds=self.config.session_gap_max_seconds,
        )
        logger.debug(f"Merged {len(events)} events into {len(sessions)} sessions for {user_id}")
        return sessions

    async def _cached_item_lookup(self, prefix: str, item_ids: list[str], fetch) -> dict:
        found, missing = self.cache.get_many(f"{prefix}:{item_id}" for item_id in item_ids)
        values = {key.split(":", 1)[1]: value for key, value in found.items()}
        if missing:
            missing_ids = [key.split(":", 1)[1] for key in missing]
            fetched = await fetch(missing_ids)
            resolved = {item_id: fetched.get(item_id) for item_id in missing_ids}
            self.cache.set_many(
                {f"{prefix}:{item_id}": value for item_id, value in resolved.items()}
            )
            values.update(resolved)
        return {item_id: value for item_id, value in values.items() if value is not None}

    async def _cached_series_lookup(self, prefix: str, series_name: str, fetch):
        key = f"{prefix}:{series_name}"
        hit, value = self.cache.get(key)
        if not hit:
            value = await fetch(series_name)
            self.cache.set(key, value)
        return value

    async def get_metadata(self, sessions: Iterable[PlaybackSession]) -> MetadataSnapshot:
        """Resolve runtimes and genres for every movie and series in the sessions."""
        sessions = list(sessions)
        movie_ids = list(dict.fromkeys(s.item_id for s in sessions if s.item_type == "Movie"))
        series_names = list(aggregate_by_series(sessions, self.series_parser))

        runtimes = await self._cached_item_lookup("runtime", movie_ids, self.library.get_item_runtimes)
        item_genres = await self._cached_item_lookup("genres", movie_ids, self.library.get_items_genres)

        series_runtimes = {}
        series_genres = {}
        for name in series_names:
            runtime = await self._cached_series_lookup(
                "series_runtime", name, self.library.get_series_average_episode_runtime
            )
            if runtime is not None:
                series_runtimes[name] = runtime
            series_genres[name] = await self._cached_series_lookup(
                "series_genres", name, self.library.get_series_genres
            )

        return MetadataSnapshot(
            runtimes=runtimes,
            series_runtimes=series_runtimes,
            item_genres=item_genres,
            series_genres=series_genres,
        )

    def _detect_marathons(self, sessions: list[PlaybackSession], timezone: str) -> list[Marathon]:
        return detect_marathons(
            sessions,
            timezone=timezone,
            min_gap_minutes=self.config.marathon_gap_min_minutes,
            max_gap_minutes=self.config.marathon_gap_max_minutes,
            significant_break_minutes=self.config.significant_break_minutes,
        )

    async def get_marathons(
        self,
        user_id: str,
        year: int,
        timezone: Optional[str] = None,
        limit: int = 5,
    ) -> tuple[MarathonStats, list[Marathon]]:
        timezone = timezone or self.config.timezone
        resolve_timezone(timezone)
        sessions = await self.get_sessions(user_id, year)
        marathons = self._detect_marathons(sessions, timezone)
        min_items = self.config.marathon_min_items
        return (
            get_marathon_stats(marathons, min_items),
            get_top_marathons(marathons, limit=limit, min_items=min_items),
        )

    async def get_year_review(
        self, user_id: str, year: int, timezone: Optional[str] = None
    ) -> YearInReview:
        """Compute the whole year in review for a user."""
        timezone = timezone or self.config.timezone
        resolve_timezone(timezone)

        sessions = await self.get_sessions(user_id, year)
        events = flatten_events(sessions)
        metadata = await self.get_metadata(sessions)
        finished = self.config.finished_threshold
        parser = self.series_parser

        totals = calculate_total_stats(sessions)
        hourly = get_hourly_stats(sessions, timezone)
        day_of_week = get_day_of_week_stats(sessions, timezone)

        marathons = self._detect_marathons(sessions, timezone)
        min_items = self.config.marathon_min_items
        marathon_stats = get_marathon_stats(marathons, min_items)

        label = personality.determine_personality(
            hourly, day_of_week, totals, marathon_stats.longest_marathon
        )
        logger.info(f"Computed {year} review for {user_id}: {len(sessions)} sessions")

        return YearInReview(
            user_id=user_id,
            year=year,
            timezone=timezone,
            stats=totals,
            top_movies=get_top_movies(sessions, metadata, finished_threshold=finished),
            abandoned_movies=get_abandoned_movies(
                sessions,
                metadata,
                finished_threshold=finished,
                abandoned_min_threshold=self.config.abandoned_min_threshold,
            ),
            finished_movies=get_finished_movie_count(sessions, metadata, finished),
            top_shows=get_top_shows(sessions, metadata, parser=parser),
            top_genres=get_top_genres(sessions, metadata, parser=parser),
            hourly=hourly,
            day_of_week=day_of_week,
            monthly=get_monthly_stats(sessions, timezone),
            devices=get_device_stats(events),
            clients=get_client_stats(events),
            playback_methods=get_playback_method_stats(events),
            marathons=marathon_stats,
            top_marathons=get_top_marathons(marathons, min_items=min_items),
            personality=label,
            personality_description=personality.get_personality_description(label),
            personality_emoji=personality.get_personality_emoji(label),
        )

    async def get_user_comparison(self, user_id: str, year: int) -> UserComparison:
        population = await self.playback.get_population(year, self.series_parser)
        return comparison.get_user_comparison(user_id, population)

    async def get_user_ranking(self, user_id: str, year: int) -> UserRanking:
        population = await self.playback.get_population(year, self.series_parser)
        return comparison.get_user_ranking(user_id, population)

    async def get_server_stats(self, year: int, limit: int = 5) -> ServerStats:
        return await self.playback.get_server_stats(year, limit, self.series_parser)

    async def get_available_years(self, user_id: Optional[str] = None) -> list[int]:
        return await self.playback.get_available_years(user_id)

    async def get_users(self) -> list[User]:
        return await self.library.get_users()

    async def get_active_users(self) -> list[User]:
        """Jellyfin accounts that have any non-audio playback."""
        active = set(await self.playback.get_user_ids())
        return [user for user in await self.library.get_users() if user.normalized_id in active]

    async def get_user(self, identifier: str) -> User:
        """Find an account by id (dashed or plain) or by username."""
        user = await self.library.get_user_by_id(identifier)
        if user is None:
            user = await self.library.get_user_by_username(identifier)
        if user is None:
            raise UserNotFoundError(f"User not found: {identifier}")
        return user

    async def resolve_user_id(self, identifier: str) -> str:
        return (await self.get_user(identifier)).normalized_id

    async def get_users_with_hours(self, year: int, min_hours: float = 0) -> list[UserWithHours]:
        """Accounts ranked by total hours watched in a year.

        Playback rows whose user no longer exists in jellyfin.db still take
        a rank but are left out of the result.
        """
        users = {user.normalized_id: user for user in await self.library.get_users()}
        ranked = comparison.sort_population(await self.playback.get_user_hours(year))
        result = []
        for index, entry in enumerate(ranked):
            user = users.get(entry.user_id)
            if user is None or entry.value < min_hours:
                continue
            result.append(
                UserWithHours(
                    **user.model_dump(),
                    total_hours=round_half_up(entry.value, 1),
                    rank=index + 1,
                )
            )
        return result


def build_event_source(config: Settings = settings) -> EventSource:
    if config.uses_reporting_api:
        return PlaybackReportingClient(config.jellyfin_url, config.jellyfin_api_key)
    return playback_db


# Global service instance
wrapped_service = WrappedService(
    playback=playback_db,
    library=library_db,
    cache=MetadataCache(
        ttl_seconds=settings.metadata_cache_ttl_seconds,
        max_size=settings.metadata_cache_max_size,
    ),
    event_source=build_event_source(),
)

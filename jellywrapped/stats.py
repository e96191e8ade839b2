"""Year-in-review statistics computed from reconstructed sessions.

Every function here is pure. Metadata (runtimes, genres) is resolved by the
caller into a :class:`MetadataSnapshot` before anything is computed.
"""

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Optional

from .formatting import percentage, round_half_up, seconds_to_hours, seconds_to_minutes
from .models import (
    ClientStats,
    DayOfWeekStats,
    DeviceStats,
    GenreStats,
    HourlyStats,
    ItemAggregatedStats,
    MetadataSnapshot,
    MonthlyStats,
    PlaybackEvent,
    PlaybackMethodStats,
    PlaybackSession,
    TopItem,
)
from .series import SeriesNameParser, series_from_episode_name
from .sessions import aggregate_by_item, filter_by_type
from .timeutils import (
    DAY_NAMES,
    MONTH_NAMES,
    day_of_week_in_timezone,
    hour_in_timezone,
    month_in_timezone,
    resolve_timezone,
)

FINISHED_THRESHOLD = 0.8
ABANDONED_MIN_THRESHOLD = 0.01

DIRECT = "direct"
REMUX = "remux"
TRANSCODE = "transcode"


@dataclass
class MovieWatchData:
    """A movie's aggregate together with its known runtime."""

    stats: ItemAggregatedStats
    runtime_seconds: Optional[float] = None

    @property
    def has_runtime_data(self) -> bool:
        return bool(self.runtime_seconds) and self.runtime_seconds > 0

    @property
    def actual_watches(self) -> float:
        """How many full runtimes the watched time adds up to, 0 without runtime."""
        if not self.has_runtime_data:
            return 0.0
        return self.stats.total_seconds / self.runtime_seconds


@dataclass
class SeriesAggregate:
    series_name: str
    sample_item_id: str
    total_seconds: int = 0
    session_count: int = 0
    episode_ids: set[str] = field(default_factory=set)

    @property
    def total_minutes(self) -> int:
        return seconds_to_minutes(self.total_seconds)


def get_movie_watch_data(
    sessions: Iterable[PlaybackSession], metadata: MetadataSnapshot
) -> list[MovieWatchData]:
    movies = aggregate_by_item(filter_by_type(sessions, "Movie"))
    return [
        MovieWatchData(stats=movie, runtime_seconds=metadata.runtime_seconds(item_id))
        for item_id, movie in movies.items()
    ]


def is_finished(movie: MovieWatchData, finished_threshold: float = FINISHED_THRESHOLD) -> bool:
    return movie.has_runtime_data and movie.actual_watches >= finished_threshold


def is_abandoned(
    movie: MovieWatchData,
    finished_threshold: float = FINISHED_THRESHOLD,
    abandoned_min_threshold: float = ABANDONED_MIN_THRESHOLD,
) -> bool:
    return (
        movie.has_runtime_data
        and abandoned_min_threshold <= movie.actual_watches < finished_threshold
    )


def get_top_movies(
    sessions: Iterable[PlaybackSession],
    metadata: MetadataSnapshot,
    limit: int = 10,
    finished_threshold: float = FINISHED_THRESHOLD,
) -> list[TopItem]:
    """Finished movies ranked by how many times they were watched."""
    finished = [
        m for m in get_movie_watch_data(sessions, metadata) if is_finished(m, finished_threshold)
    ]
    finished.sort(key=lambda m: (-m.actual_watches, -m.stats.total_seconds))

    return [
        TopItem(
            item_id=m.stats.item_id,
            item_name=m.stats.item_name,
            item_type=m.stats.item_type,
            plays=round_half_up(m.actual_watches, 1),
            total_minutes=m.stats.total_minutes,
        )
        for m in finished[:limit]
    ]


def get_abandoned_movies(
    sessions: Iterable[PlaybackSession],
    metadata: MetadataSnapshot,
    limit: int = 10,
    finished_threshold: float = FINISHED_THRESHOLD,
    abandoned_min_threshold: float = ABANDONED_MIN_THRESHOLD,
) -> list[TopItem]:
    """Started but unfinished movies, closest to finishing first.

    ``plays`` holds the completion percentage.
    """
    abandoned = [
        m
        for m in get_movie_watch_data(sessions, metadata)
        if is_abandoned(m, finished_threshold, abandoned_min_threshold)
    ]
    abandoned.sort(key=lambda m: m.actual_watches, reverse=True)

    return [
        TopItem(
            item_id=m.stats.item_id,
            item_name=m.stats.item_name,
            item_type=m.stats.item_type,
            plays=round_half_up(m.actual_watches * 100),
            total_minutes=m.stats.total_minutes,
        )
        for m in abandoned[:limit]
    ]


def get_finished_movie_count(
    sessions: Iterable[PlaybackSession],
    metadata: MetadataSnapshot,
    finished_threshold: float = FINISHED_THRESHOLD,
) -> int:
    return sum(
        1 for m in get_movie_watch_data(sessions, metadata) if is_finished(m, finished_threshold)
    )


def aggregate_by_series(
    sessions: Iterable[PlaybackSession],
    parser: SeriesNameParser = series_from_episode_name,
) -> dict[str, SeriesAggregate]:
    """Group episode sessions by the series their name belongs to."""
    shows: dict[str, SeriesAggregate] = {}

    for session in filter_by_type(sessions, "Episode"):
        series_name = parser(session.item_name)
        show = shows.get(series_name)
        if show is None:
            show = SeriesAggregate(series_name=series_name, sample_item_id=session.item_id)
            shows[series_name] = show
        show.total_seconds += session.total_watched_seconds
        show.session_count += 1
        show.episode_ids.add(session.item_id)

    return shows


def _episode_watches(show: SeriesAggregate, metadata: MetadataSnapshot) -> float:
    average_runtime = metadata.average_episode_runtime_seconds(show.series_name)
    if average_runtime and average_runtime > 0:
        return show.total_seconds / average_runtime
    return float(show.session_count)


def get_top_shows(
    sessions: Iterable[PlaybackSession],
    metadata: MetadataSnapshot,
    limit: int = 10,
    parser: SeriesNameParser = series_from_episode_name,
) -> list[TopItem]:
    shows = [
        (show, _episode_watches(show, metadata))
        for show in aggregate_by_series(sessions, parser).values()
    ]
    shows.sort(key=lambda entry: (-entry[1], -entry[0].total_seconds))

    return [
        TopItem(
            item_id=show.sample_item_id,
            item_name=show.series_name,
            item_type="Series",
            plays=round_half_up(watches, 1),
            total_minutes=show.total_minutes,
            series_name=show.series_name,
        )
        for show, watches in shows[:limit]
    ]


def get_top_genres(
    sessions: Sequence[PlaybackSession],
    metadata: MetadataSnapshot,
    limit: int = 10,
    parser: SeriesNameParser = series_from_episode_name,
) -> list[GenreStats]:
    """Genres by combined movie and show minutes.

    Minutes are rounded per title before they are summed into a genre.
    """
    genres: dict[str, GenreStats] = {}

    def genre_entry(name: str) -> GenreStats:
        if name not in genres:
            genres[name] = GenreStats(genre=name)
        return genres[name]

    for item_id, movie in aggregate_by_item(filter_by_type(sessions, "Movie")).items():
        for genre in metadata.genres_of(item_id):
            entry = genre_entry(genre)
            entry.movie_minutes += movie.total_minutes
            entry.movie_count += 1

    for series_name, show in aggregate_by_series(sessions, parser).items():
        for genre in metadata.genres_of_series(series_name):
            entry = genre_entry(genre)
            entry.show_minutes += show.total_minutes
            entry.show_count += 1

    ranked = sorted(genres.values(), key=lambda g: g.total_minutes, reverse=True)
    return ranked[:limit]


def _bucket_sessions(sessions, bucket_of) -> dict[int, list[int]]:
    buckets: dict[int, list[int]] = {}
    for session in sessions:
        bucket = buckets.setdefault(bucket_of(session.started_at), [0, 0])
        bucket[0] += 1
        bucket[1] += session.total_watched_seconds
    return buckets


def get_hourly_stats(
    sessions: Iterable[PlaybackSession], timezone: Optional[str] = None
) -> list[HourlyStats]:
    """Plays and minutes for each of the 24 local hours."""
    tz = resolve_timezone(timezone)
    buckets = _bucket_sessions(sessions, lambda moment: hour_in_timezone(moment, tz))

    return [
        HourlyStats(
            hour=hour,
            plays=buckets.get(hour, [0, 0])[0],
            minutes=seconds_to_minutes(buckets.get(hour, [0, 0])[1]),
        )
        for hour in range(24)
    ]


def get_day_of_week_stats(
    sessions: Iterable[PlaybackSession], timezone: Optional[str] = None
) -> list[DayOfWeekStats]:
    """Plays and minutes per local weekday, Sunday first."""
    tz = resolve_timezone(timezone)
    buckets = _bucket_sessions(sessions, lambda moment: day_of_week_in_timezone(moment, tz))

    return [
        DayOfWeekStats(
            day=day,
            day_name=DAY_NAMES[day],
            plays=buckets.get(day, [0, 0])[0],
            minutes=seconds_to_minutes(buckets.get(day, [0, 0])[1]),
        )
        for day in range(7)
    ]


def get_monthly_stats(
    sessions: Iterable[PlaybackSession], timezone: Optional[str] = None
) -> list[MonthlyStats]:
    tz = resolve_timezone(timezone)
    buckets = _bucket_sessions(sessions, lambda moment: month_in_timezone(moment, tz))

    return [
        MonthlyStats(
            month=month,
            month_name=MONTH_NAMES[month - 1],
            plays=buckets.get(month, [0, 0])[0],
            hours=seconds_to_hours(buckets.get(month, [0, 0])[1]),
        )
        for month in range(1, 13)
    ]


def get_device_stats(events: Iterable[PlaybackEvent]) -> list[DeviceStats]:
    """Share of raw playback rows per device, most used first."""
    counts = Counter(event.device_name or "Unknown" for event in events)
    total = sum(counts.values())
    return [
        DeviceStats(device_name=name, plays=plays, percentage=percentage(plays, total))
        for name, plays in counts.most_common()
    ]


def get_client_stats(events: Iterable[PlaybackEvent]) -> list[ClientStats]:
    counts = Counter(event.client_name or "Unknown" for event in events)
    total = sum(counts.values())
    return [
        ClientStats(client_name=name, plays=plays, percentage=percentage(plays, total))
        for name, plays in counts.most_common()
    ]


def classify_playback_method(method: Optional[str]) -> Optional[str]:
    """Classify a Playback Reporting method string.

    ``DirectPlay`` is direct, ``DirectStream`` or any method keeping the video
    stream (``v:direct``) is a remux and the remaining ``Transcode...``
    methods are full transcodes. Anything else is not classified.
    """
    if not method:
        return None
    lowered = method.lower()
    if method == "DirectPlay":
        return DIRECT
    if method == "DirectStream" or "v:direct" in lowered:
        return REMUX
    if lowered.startswith("transcode"):
        return TRANSCODE
    return None


def get_playback_method_stats(events: Iterable[PlaybackEvent]) -> PlaybackMethodStats:
    counts = Counter(classify_playback_method(event.playback_method) for event in events)
    direct = counts[DIRECT]
    remux = counts[REMUX]
    transcode = counts[TRANSCODE]
    total = direct + remux + transcode

    return PlaybackMethodStats(
        direct=direct,
        remux=remux,
        transcode=transcode,
        direct_percentage=percentage(direct, total),
        remux_percentage=percentage(remux, total),
        transcode_percentage=percentage(transcode, total),
    )

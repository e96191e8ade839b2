from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .formatting import round_half_up


class PlaybackEvent(BaseModel):
    """One raw row of the Playback Reporting activity log."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    item_id: str
    item_name: str
    item_type: str
    playback_method: str = ""
    client_name: str = "Unknown"
    device_name: str = "Unknown"
    started_at: datetime
    play_duration_seconds: int = Field(default=0, ge=0)


class PlaybackSession(BaseModel):
    """A continuous viewing of one item, merged from one or more events."""

    item_id: str
    item_name: str
    item_type: str
    started_at: datetime
    ended_at: datetime
    total_watched_seconds: int
    event_count: int
    events: list[PlaybackEvent] = Field(default_factory=list, repr=False)


class ItemAggregatedStats(BaseModel):
    """All sessions of a single item."""

    item_id: str
    item_name: str
    item_type: str
    session_count: int
    total_seconds: int
    sessions: list[PlaybackSession] = Field(default_factory=list, repr=False)

    @property
    def total_minutes(self) -> int:
        return int(round_half_up(self.total_seconds / 60))


class MarathonItem(BaseModel):
    item_id: str
    item_name: str
    item_type: str
    started_at: datetime
    ended_at: datetime
    duration_minutes: int


class Marathon(BaseModel):
    """Chronologically adjacent sessions watched in one sitting."""

    started_at: datetime
    ended_at: datetime
    total_minutes: int
    total_hours: float
    items: list[MarathonItem]
    item_count: int
    local_date: date
    significant_break_minutes: int = 5

    @computed_field
    @property
    def watched_minutes(self) -> int:
        return sum(item.duration_minutes for item in self.items)

    @computed_field
    @property
    def break_minutes(self) -> int:
        return max(0, self.total_minutes - self.watched_minutes)

    @computed_field
    @property
    def has_significant_break(self) -> bool:
        return self.break_minutes >= self.significant_break_minutes


class MarathonStats(BaseModel):
    total_marathons: int = 0
    total_marathon_hours: float = 0.0
    average_marathon_minutes: int = 0
    longest_marathon: Optional[Marathon] = None


class TopItem(BaseModel):
    """Ranked movie or show. For abandoned movies `plays` is a completion percentage."""

    item_id: str
    item_name: str
    item_type: str
    plays: float
    total_minutes: int
    series_name: Optional[str] = None


class GenreStats(BaseModel):
    genre: str
    movie_minutes: int = 0
    show_minutes: int = 0
    movie_count: int = 0
    show_count: int = 0

    @computed_field
    @property
    def total_minutes(self) -> int:
        return self.movie_minutes + self.show_minutes


class HourlyStats(BaseModel):
    """Usage stats by hour."""

    hour: int
    plays: int
    minutes: int


class DayOfWeekStats(BaseModel):
    """Usage stats by weekday, 0 = Sunday."""

    day: int
    day_name: str
    plays: int
    minutes: int


class MonthlyStats(BaseModel):
    """Usage stats by month, 1 = January."""

    month: int
    month_name: str
    plays: int
    hours: float


class DeviceStats(BaseModel):
    """Device usage stats."""

    device_name: str
    plays: int
    percentage: float


class ClientStats(BaseModel):
    client_name: str
    plays: int
    percentage: float


class PlaybackMethodStats(BaseModel):
    direct: int = 0
    remux: int = 0
    transcode: int = 0
    direct_percentage: float = 0.0
    remux_percentage: float = 0.0
    transcode_percentage: float = 0.0


class PlaybackStats(BaseModel):
    total_plays: int = 0
    total_seconds: int = 0
    total_hours: float = 0.0
    total_days: float = 0.0
    movie_plays: int = 0
    movie_seconds: int = 0
    episode_plays: int = 0
    episode_seconds: int = 0
    unique_movies: int = 0
    unique_episodes: int = 0


class User(BaseModel):
    """A Jellyfin account from jellyfin.db."""

    id: str
    username: str
    normalized_id: str


class UserWithHours(User):
    total_hours: float
    rank: int


class UserRanking(BaseModel):
    rank: int
    total_users: int
    percentile: int
    top_viewer_hours: float


class MetricComparison(BaseModel):
    """Where one user stands on a single metric."""

    value: float
    rank: int
    percentile: int
    average: float
    maximum: float
    population: int


class UserComparison(BaseModel):
    total_hours: MetricComparison
    movie_hours: MetricComparison
    unique_movies: MetricComparison
    show_hours: MetricComparison
    unique_shows: MetricComparison
    direct_percentage: MetricComparison
    remux_percentage: MetricComparison
    transcode_percentage: MetricComparison
    server_friendliness: MetricComparison
    total_users: int


class PopulationEntry(BaseModel):
    user_id: str
    value: float


class PlaybackMethodCounts(BaseModel):
    user_id: str
    direct: int = 0
    remux: int = 0
    transcode: int = 0

    @property
    def total(self) -> int:
        return self.direct + self.remux + self.transcode


class Population(BaseModel):
    """Per-metric values for every user with playback in a year."""

    total_hours: list[PopulationEntry] = Field(default_factory=list)
    movie_hours: list[PopulationEntry] = Field(default_factory=list)
    show_hours: list[PopulationEntry] = Field(default_factory=list)
    unique_movies: list[PopulationEntry] = Field(default_factory=list)
    unique_shows: list[PopulationEntry] = Field(default_factory=list)
    playback_methods: list[PlaybackMethodCounts] = Field(default_factory=list)


class MetadataSnapshot(BaseModel):
    """Runtime and genre metadata resolved ahead of a computation."""

    runtimes: dict[str, float] = Field(default_factory=dict)
    series_runtimes: dict[str, float] = Field(default_factory=dict)
    item_genres: dict[str, list[str]] = Field(default_factory=dict)
    series_genres: dict[str, list[str]] = Field(default_factory=dict)

    def runtime_seconds(self, item_id: str) -> Optional[float]:
        return self.runtimes.get(item_id)

    def average_episode_runtime_seconds(self, series_name: str) -> Optional[float]:
        return self.series_runtimes.get(series_name)

    def genres_of(self, item_id: str) -> list[str]:
        return self.item_genres.get(item_id, [])

    def genres_of_series(self, series_name: str) -> list[str]:
        return self.series_genres.get(series_name, [])


class YearInReview(BaseModel):
    """Everything computed for one user and one year."""

    user_id: str
    year: int
    timezone: str
    stats: PlaybackStats
    top_movies: list[TopItem]
    abandoned_movies: list[TopItem]
    finished_movies: int
    top_shows: list[TopItem]
    top_genres: list[GenreStats]
    hourly: list[HourlyStats]
    day_of_week: list[DayOfWeekStats]
    monthly: list[MonthlyStats]
    devices: list[DeviceStats]
    clients: list[ClientStats]
    playback_methods: PlaybackMethodStats
    marathons: MarathonStats
    top_marathons: list[Marathon]
    personality: str
    personality_description: str
    personality_emoji: str


class ServerTopMovie(BaseModel):
    item_id: str
    item_name: str
    total_hours: float
    total_plays: int
    unique_viewers: int


class ServerTopShow(BaseModel):
    series_name: str
    total_hours: float
    total_episodes: int
    unique_viewers: int


class ServerStats(BaseModel):
    year: int
    total_hours: float = 0.0
    total_plays: int = 0
    unique_users: int = 0
    unique_movies: int = 0
    unique_episodes: int = 0
    top_movies: list[ServerTopMovie] = Field(default_factory=list)
    top_shows: list[ServerTopShow] = Field(default_factory=list)

from datetime import datetime, timedelta, timezone

from jellywrapped.models import MetadataSnapshot, PlaybackEvent, PlaybackSession
from jellywrapped.stats import (
    classify_playback_method,
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

BASE = datetime(2024, 3, 1, 20, 0, 0, tzinfo=timezone.utc)


def _session(
    item_id: str,
    watched_seconds: int,
    item_type: str = "Movie",
    item_name=None,
    started_at: datetime = BASE,
):
    return PlaybackSession(
        item_id=item_id,
        item_name=item_name or f"Movie {item_id}",
        item_type=item_type,
        started_at=started_at,
        ended_at=started_at + timedelta(seconds=watched_seconds),
        total_watched_seconds=watched_seconds,
        event_count=1,
    )


def _episode(item_id: str, name: str, watched_seconds: int):
    return _session(item_id, watched_seconds, item_type="Episode", item_name=name)


def _event(device="TV", client="Jellyfin Web", method="DirectPlay"):
    return PlaybackEvent(
        user_id="user1",
        item_id="m1",
        item_name="Movie",
        item_type="Movie",
        playback_method=method,
        client_name=client,
        device_name=device,
        started_at=BASE,
        play_duration_seconds=60,
    )


def test_movie_watched_past_threshold_is_finished():
    sessions = [_session("m1", 5000)]
    metadata = MetadataSnapshot(runtimes={"m1": 6000})

    top = get_top_movies(sessions, metadata)

    assert [m.item_id for m in top] == ["m1"]
    assert top[0].plays == 0.8
    assert top[0].total_minutes == 83
    assert get_finished_movie_count(sessions, metadata) == 1
    assert get_abandoned_movies(sessions, metadata) == []


def test_partially_watched_movie_is_abandoned():
    sessions = [_session("m1", 1500)]
    metadata = MetadataSnapshot(runtimes={"m1": 6000})

    abandoned = get_abandoned_movies(sessions, metadata)

    assert len(abandoned) == 1
    assert abandoned[0].plays == 25
    assert get_top_movies(sessions, metadata) == []
    assert get_finished_movie_count(sessions, metadata) == 0


def test_accidental_taps_and_unknown_runtimes_are_excluded():
    sessions = [_session("tap", 30), _session("unknown", 5000), _session("zero", 5000)]
    metadata = MetadataSnapshot(runtimes={"tap": 6000, "zero": 0})

    assert get_top_movies(sessions, metadata) == []
    assert get_abandoned_movies(sessions, metadata) == []
    assert get_finished_movie_count(sessions, metadata) == 0


def test_top_movies_order_by_watches_then_seconds():
    sessions = [
        _session("once_short", 3000),
        _session("twice", 6000),
        _session("twice", 6000),
        _session("once_long", 6000),
    ]
    metadata = MetadataSnapshot(runtimes={"once_short": 3000, "twice": 6000, "once_long": 6000})

    top = get_top_movies(sessions, metadata)

    assert [m.item_id for m in top] == ["twice", "once_long", "once_short"]
    assert [m.plays for m in top] == [2.0, 1.0, 1.0]
    assert len(get_top_movies(sessions, metadata, limit=1)) == 1


def test_abandoned_movies_closest_to_finishing_first():
    sessions = [_session("a", 600), _session("b", 4200), _session("c", 2400)]
    metadata = MetadataSnapshot(runtimes={"a": 6000, "b": 6000, "c": 6000})

    abandoned = get_abandoned_movies(sessions, metadata)

    assert [(m.item_id, m.plays) for m in abandoned] == [("b", 70), ("c", 40), ("a", 10)]


def test_finished_classification_is_monotonic():
    metadata = MetadataSnapshot(runtimes={"m1": 6000})
    was_finished = False
    for watched in range(0, 12001, 250):
        sessions = [_session("m1", watched)]
        finished = get_finished_movie_count(sessions, metadata) == 1
        abandoned = bool(get_abandoned_movies(sessions, metadata))
        if was_finished:
            assert finished
            assert not abandoned
        was_finished = finished
    assert was_finished


def test_custom_finished_threshold():
    sessions = [_session("m1", 3300)]
    metadata = MetadataSnapshot(runtimes={"m1": 6000})

    assert get_finished_movie_count(sessions, metadata) == 0
    assert get_finished_movie_count(sessions, metadata, finished_threshold=0.5) == 1


def test_top_shows_grouped_by_series():
    sessions = [
        _episode("e1", "Severance - s01e01 - Good News About Hell", 3000),
        _episode("e2", "Severance - s01e02 - Half Loop", 3000),
        _episode("e3", "The Bear - S02E01 - Beef", 1800),
    ]
    metadata = MetadataSnapshot(series_runtimes={"Severance": 3000})

    shows = get_top_shows(sessions, metadata)

    assert [s.series_name for s in shows] == ["Severance", "The Bear"]
    assert shows[0].item_id == "e1"
    assert shows[0].item_type == "Series"
    assert shows[0].plays == 2.0
    assert shows[0].total_minutes == 100
    # no runtime known: falls back to the session count
    assert shows[1].plays == 1.0
    assert shows[1].total_minutes == 30


def test_top_shows_with_custom_parser():
    sessions = [
        _episode("e1", "Andor: One Way Out", 2400),
        _episode("e2", "Andor: Narkina 5", 2400),
        _episode("e3", "Loki: Glorious Purpose", 2400),
    ]

    shows = get_top_shows(sessions, MetadataSnapshot(), parser=lambda name: name.split(":")[0])

    assert [(s.series_name, s.plays) for s in shows] == [("Andor", 2.0), ("Loki", 1.0)]


def test_top_genres_combines_movies_and_shows():
    sessions = [
        _session("m1", 5000),
        _episode("e1", "Severance - s01e01 - Good News About Hell", 3000),
        _episode("e2", "Severance - s01e02 - Half Loop", 3000),
        _session("m2", 600),
    ]
    metadata = MetadataSnapshot(
        item_genres={"m1": ["Drama", "Thriller"]},
        series_genres={"Severance": ["Drama", "Sci-Fi"]},
    )

    genres = get_top_genres(sessions, metadata)

    assert [g.genre for g in genres] == ["Drama", "Sci-Fi", "Thriller"]
    drama = genres[0]
    assert drama.movie_minutes == 83
    assert drama.show_minutes == 100
    assert drama.total_minutes == 183
    assert drama.movie_count == 1
    assert drama.show_count == 1


def test_hourly_stats_in_timezone():
    sessions = [_session("m1", 3600), _session("m2", 1800)]

    riga = get_hourly_stats(sessions, "Europe/Riga")
    utc = get_hourly_stats(sessions, "UTC")

    assert len(riga) == 24
    assert [h.hour for h in riga] == list(range(24))
    assert riga[22].plays == 2
    assert riga[22].minutes == 90
    assert utc[20].plays == 2
    assert sum(h.plays for h in riga) == 2


def test_day_of_week_starts_on_sunday():
    # Saturday 23:30 UTC is Sunday 01:30 in Riga
    late_saturday = datetime(2024, 3, 2, 23, 30, tzinfo=timezone.utc)
    sessions = [_session("m1", 600, started_at=late_saturday)]

    riga = get_day_of_week_stats(sessions, "Europe/Riga")
    utc = get_day_of_week_stats(sessions, "UTC")

    assert len(riga) == 7
    assert riga[0].day_name == "Sunday"
    assert riga[0].plays == 1
    assert riga[0].minutes == 10
    assert utc[6].day_name == "Saturday"
    assert utc[6].plays == 1


def test_monthly_stats_zero_filled():
    end_of_january = datetime(2024, 1, 31, 23, 0, tzinfo=timezone.utc)
    sessions = [_session("m1", 5400, started_at=end_of_january)]

    monthly = get_monthly_stats(sessions, "Europe/Riga")

    assert len(monthly) == 12
    assert monthly[1].month == 2
    assert monthly[1].month_name == "February"
    assert monthly[1].plays == 1
    assert monthly[1].hours == 1.5
    assert monthly[0].plays == 0
    assert monthly[0].hours == 0.0


def test_device_and_client_stats():
    events = [
        _event(device="TV", client="Android TV"),
        _event(device="TV", client="Android TV"),
        _event(device="TV", client="Jellyfin Web"),
        _event(device="", client="Jellyfin Web"),
    ]

    devices = get_device_stats(events)
    clients = get_client_stats(events)

    assert [(d.device_name, d.plays, d.percentage) for d in devices] == [
        ("TV", 3, 75.0),
        ("Unknown", 1, 25.0),
    ]
    assert [(c.client_name, c.plays, c.percentage) for c in clients] == [
        ("Android TV", 2, 50.0),
        ("Jellyfin Web", 2, 50.0),
    ]
    assert get_device_stats([]) == []


def test_classify_playback_method():
    assert classify_playback_method("DirectPlay") == "direct"
    assert classify_playback_method("DirectStream") == "remux"
    assert classify_playback_method("Transcode (v:direct a:aac)") == "remux"
    assert classify_playback_method("Transcode (v:h264 a:aac)") == "transcode"
    assert classify_playback_method("") is None
    assert classify_playback_method("Unknown") is None


def test_playback_method_stats():
    events = [
        _event(method="DirectPlay"),
        _event(method="DirectStream"),
        _event(method="Transcode (v:hevc a:aac)"),
        _event(method=""),
    ]

    stats = get_playback_method_stats(events)

    assert (stats.direct, stats.remux, stats.transcode) == (1, 1, 1)
    assert stats.direct_percentage == 33.3
    assert stats.remux_percentage == 33.3
    assert stats.transcode_percentage == 33.3

    empty = get_playback_method_stats([])
    assert empty.direct_percentage == 0.0

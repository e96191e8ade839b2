"""Merge raw Playback Reporting events into viewing sessions.

Jellyfin logs several rows per viewing: a start row (often zero duration),
progress rows and a final row with the played duration. Consecutive rows
for the same item that sit close together in time are one session.
"""

from collections.abc import Iterable
from datetime import timedelta
from typing import Optional

from .formatting import round_half_up, seconds_to_hours
from .models import ItemAggregatedStats, PlaybackEvent, PlaybackSession, PlaybackStats

MIN_SESSION_GAP_SECONDS = -60
MAX_SESSION_GAP_SECONDS = 300

AUDIO_ITEM_TYPE = "Audio"


class EventOrderError(ValueError):
    """Raised when events are not sorted by start time."""


def exclude_audio(events: Iterable[PlaybackEvent]) -> list[PlaybackEvent]:
    return [event for event in events if event.item_type != AUDIO_ITEM_TYPE]


def ensure_chronological(events: list[PlaybackEvent]) -> list[PlaybackEvent]:
    """Validate the sorted-by-start precondition once, at ingestion."""
    for previous, current in zip(events, events[1:]):
        if current.started_at < previous.started_at:
            raise EventOrderError(
                f"Event for item {current.item_id} at {current.started_at.isoformat()} "
                f"precedes {previous.started_at.isoformat()}"
            )
    return events


def _event_end(event: PlaybackEvent):
    return event.started_at + timedelta(seconds=event.play_duration_seconds)


def _should_merge(
    previous: PlaybackEvent,
    current: PlaybackEvent,
    min_gap_seconds: int,
    max_gap_seconds: int,
) -> bool:
    if previous.item_id != current.item_id:
        return False
    gap = (current.started_at - _event_end(previous)).total_seconds()
    return min_gap_seconds <= gap <= max_gap_seconds


def _build_session(events: list[PlaybackEvent]) -> PlaybackSession:
    first = events[0]
    return PlaybackSession(
        item_id=first.item_id,
        item_name=first.item_name,
        item_type=first.item_type,
        started_at=first.started_at,
        ended_at=_event_end(events[-1]),
        total_watched_seconds=sum(e.play_duration_seconds for e in events),
        event_count=len(events),
        events=list(events),
    )


def reconstruct_sessions(
    events: Iterable[PlaybackEvent],
    min_gap_seconds: int = MIN_SESSION_GAP_SECONDS,
    max_gap_seconds: int = MAX_SESSION_GAP_SECONDS,
) -> list[PlaybackSession]:
    """Merge chronologically sorted events into sessions.

    Watched time is the sum of event durations, never the session's time
    span, since paused or seeked time is not watched time. Unsorted input
    gives undefined (but never failing) results.
    """
    sessions: list[PlaybackSession] = []
    current: list[PlaybackEvent] = []

    for event in events:
        if current and _should_merge(current[-1], event, min_gap_seconds, max_gap_seconds):
            current.append(event)
            continue
        if current:
            sessions.append(_build_session(current))
        current = [event]

    if current:
        sessions.append(_build_session(current))

    return sessions


def flatten_events(sessions: Iterable[PlaybackSession]) -> list[PlaybackEvent]:
    """Constituent events of the sessions, in session order."""
    return [event for session in sessions for event in session.events]


def aggregate_by_item(sessions: Iterable[PlaybackSession]) -> dict[str, ItemAggregatedStats]:
    """Group sessions by item. Keys keep first-occurrence order."""
    item_stats: dict[str, ItemAggregatedStats] = {}

    for session in sessions:
        existing = item_stats.get(session.item_id)
        if existing:
            existing.session_count += 1
            existing.total_seconds += session.total_watched_seconds
            existing.sessions.append(session)
        else:
            item_stats[session.item_id] = ItemAggregatedStats(
                item_id=session.item_id,
                item_name=session.item_name,
                item_type=session.item_type,
                session_count=1,
                total_seconds=session.total_watched_seconds,
                sessions=[session],
            )

    return item_stats


def filter_by_type(
    sessions: Iterable[PlaybackSession], item_type: Optional[str]
) -> list[PlaybackSession]:
    if item_type is None:
        return list(sessions)
    return [s for s in sessions if s.item_type == item_type]


def calculate_total_stats(sessions: Iterable[PlaybackSession]) -> PlaybackStats:
    """Overall totals where one session counts as one play."""
    total_plays = 0
    total_seconds = 0
    movie_plays = 0
    movie_seconds = 0
    episode_plays = 0
    episode_seconds = 0
    movie_ids: set[str] = set()
    episode_ids: set[str] = set()

    for session in sessions:
        total_plays += 1
        total_seconds += session.total_watched_seconds
        if session.item_type == "Movie":
            movie_plays += 1
            movie_seconds += session.total_watched_seconds
            movie_ids.add(session.item_id)
        elif session.item_type == "Episode":
            episode_plays += 1
            episode_seconds += session.total_watched_seconds
            episode_ids.add(session.item_id)

    total_hours = seconds_to_hours(total_seconds)
    return PlaybackStats(
        total_plays=total_plays,
        total_seconds=total_seconds,
        total_hours=total_hours,
        total_days=round_half_up(total_hours / 24, 1),
        movie_plays=movie_plays,
        movie_seconds=movie_seconds,
        episode_plays=episode_plays,
        episode_seconds=episode_seconds,
        unique_movies=len(movie_ids),
        unique_episodes=len(episode_ids),
    )

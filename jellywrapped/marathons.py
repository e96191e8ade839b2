"""Detect marathons: runs of sessions watched back to back.

A marathon may mix items. Its length is the wall-clock span from the first
session's start to the last session's end, breaks included.
"""

from collections.abc import Sequence
from typing import Optional
from zoneinfo import ZoneInfo

from .formatting import round_half_up, seconds_to_minutes
from .models import Marathon, MarathonItem, MarathonStats, PlaybackSession
from .timeutils import date_in_timezone, resolve_timezone

MIN_MARATHON_GAP_MINUTES = -5
MAX_MARATHON_GAP_MINUTES = 45
MIN_MARATHON_ITEMS = 2
SIGNIFICANT_BREAK_MINUTES = 5


def _is_same_marathon(
    previous: PlaybackSession,
    current: PlaybackSession,
    min_gap_minutes: float,
    max_gap_minutes: float,
) -> bool:
    gap_minutes = (current.started_at - previous.ended_at).total_seconds() / 60
    return min_gap_minutes <= gap_minutes <= max_gap_minutes


def group_into_marathons(
    sessions: Sequence[PlaybackSession],
    min_gap_minutes: float = MIN_MARATHON_GAP_MINUTES,
    max_gap_minutes: float = MAX_MARATHON_GAP_MINUTES,
) -> list[list[PlaybackSession]]:
    """Greedily group sessions sorted by start time."""
    if not sessions:
        return []

    groups: list[list[PlaybackSession]] = []
    current = [sessions[0]]
    for session in sessions[1:]:
        if _is_same_marathon(current[-1], session, min_gap_minutes, max_gap_minutes):
            current.append(session)
        else:
            groups.append(current)
            current = [session]
    groups.append(current)
    return groups


def build_marathon(
    sessions: Sequence[PlaybackSession],
    tz: ZoneInfo,
    significant_break_minutes: int = SIGNIFICANT_BREAK_MINUTES,
) -> Marathon:
    started_at = sessions[0].started_at
    ended_at = sessions[-1].ended_at
    span_minutes = (ended_at - started_at).total_seconds() / 60

    items = [
        MarathonItem(
            item_id=s.item_id,
            item_name=s.item_name,
            item_type=s.item_type,
            started_at=s.started_at,
            ended_at=s.ended_at,
            duration_minutes=seconds_to_minutes(s.total_watched_seconds),
        )
        for s in sessions
    ]

    return Marathon(
        started_at=started_at,
        ended_at=ended_at,
        total_minutes=int(round_half_up(span_minutes)),
        total_hours=round_half_up(span_minutes / 60, 1),
        items=items,
        item_count=len(items),
        local_date=date_in_timezone(started_at, tz),
        significant_break_minutes=significant_break_minutes,
    )


def detect_marathons(
    sessions: Sequence[PlaybackSession],
    timezone: Optional[str] = None,
    min_gap_minutes: float = MIN_MARATHON_GAP_MINUTES,
    max_gap_minutes: float = MAX_MARATHON_GAP_MINUTES,
    significant_break_minutes: int = SIGNIFICANT_BREAK_MINUTES,
) -> list[Marathon]:
    """All session groups as marathons, single-session groups included."""
    tz = resolve_timezone(timezone)
    return [
        build_marathon(group, tz, significant_break_minutes)
        for group in group_into_marathons(sessions, min_gap_minutes, max_gap_minutes)
    ]


def reportable_marathons(
    marathons: Sequence[Marathon], min_items: int = MIN_MARATHON_ITEMS
) -> list[Marathon]:
    return [m for m in marathons if m.item_count >= min_items]


def get_longest_marathon(
    marathons: Sequence[Marathon], min_items: int = MIN_MARATHON_ITEMS
) -> Optional[Marathon]:
    """Longest reportable marathon; the earliest one wins a tie."""
    longest: Optional[Marathon] = None
    for marathon in reportable_marathons(marathons, min_items):
        if longest is None or marathon.total_minutes > longest.total_minutes:
            longest = marathon
    return longest


def get_top_marathons(
    marathons: Sequence[Marathon], limit: int = 5, min_items: int = MIN_MARATHON_ITEMS
) -> list[Marathon]:
    candidates = reportable_marathons(marathons, min_items)
    return sorted(candidates, key=lambda m: m.total_minutes, reverse=True)[:limit]


def get_marathon_stats(
    marathons: Sequence[Marathon], min_items: int = MIN_MARATHON_ITEMS
) -> MarathonStats:
    candidates = reportable_marathons(marathons, min_items)
    if not candidates:
        return MarathonStats()

    total_minutes = sum(m.total_minutes for m in candidates)
    return MarathonStats(
        total_marathons=len(candidates),
        total_marathon_hours=round_half_up(total_minutes / 60, 1),
        average_marathon_minutes=int(round_half_up(total_minutes / len(candidates))),
        longest_marathon=get_longest_marathon(candidates, min_items),
    )

"""Rank one user against everybody who watched something in the same year."""

from collections.abc import Sequence
from typing import Optional

from .formatting import round_half_up
from .ids import normalize_id
from .models import (
    MetricComparison,
    PlaybackMethodCounts,
    Population,
    PopulationEntry,
    UserComparison,
    UserRanking,
)


def sort_population(entries: Sequence[PopulationEntry]) -> list[PopulationEntry]:
    """Highest value first; equal values are ordered by user id."""
    return sorted(entries, key=lambda e: (-e.value, e.user_id))


def rank_of(user_id: str, entries: Sequence[PopulationEntry]) -> int:
    """1-based position of the user, or one past the end when absent."""
    ranked = sort_population(entries)
    for index, entry in enumerate(ranked):
        if entry.user_id == user_id:
            return index + 1
    return len(ranked) + 1


def calculate_percentile(rank: int, total: int) -> int:
    if rank > total:
        return 0
    if total <= 1:
        return 100
    percentile = int(round_half_up((total - rank) / (total - 1) * 100))
    return max(0, min(100, percentile))


def _average(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def compare_metric(
    user_id: str,
    entries: Sequence[PopulationEntry],
    total: Optional[int] = None,
    averaged: Optional[Sequence[float]] = None,
    digits: int = 1,
) -> MetricComparison:
    """Compare a user on one metric.

    ``total`` overrides the population size used for the percentile and
    ``averaged`` the values the average is taken over.
    """
    user_id = normalize_id(user_id)
    population = len(entries)
    total = population if total is None else total
    values = [e.value for e in entries]
    if averaged is None:
        averaged = values

    user_value = next((e.value for e in entries if e.user_id == user_id), 0.0)
    rank = rank_of(user_id, entries)

    return MetricComparison(
        value=round_half_up(user_value, digits),
        rank=rank,
        percentile=calculate_percentile(rank, total),
        average=round_half_up(_average(averaged), digits),
        maximum=round_half_up(max(values, default=0.0), digits),
        population=population,
    )


def method_share(counts: PlaybackMethodCounts, *methods: str) -> float:
    """Percentage of a user's classified plays that used the given methods."""
    if counts.total <= 0:
        return 0.0
    return sum(getattr(counts, method) for method in methods) / counts.total * 100


def _method_entries(
    population: Sequence[PlaybackMethodCounts], *methods: str
) -> list[PopulationEntry]:
    return [
        PopulationEntry(user_id=counts.user_id, value=method_share(counts, *methods))
        for counts in population
    ]


def _method_average_values(
    population: Sequence[PlaybackMethodCounts], *methods: str
) -> list[float]:
    return [method_share(counts, *methods) for counts in population if counts.total > 0]


def get_user_comparison(user_id: str, population: Population) -> UserComparison:
    """Compare a user against the whole population on every tracked metric.

    A user missing from one metric's population counts as zero there.
    """
    methods = population.playback_methods
    total_users = len(population.total_hours)

    def method_metric(*names: str, total: Optional[int] = None) -> MetricComparison:
        return compare_metric(
            user_id,
            _method_entries(methods, *names),
            total=total,
            averaged=_method_average_values(methods, *names),
        )

    return UserComparison(
        total_hours=compare_metric(user_id, population.total_hours),
        movie_hours=compare_metric(user_id, population.movie_hours),
        unique_movies=compare_metric(user_id, population.unique_movies, digits=0),
        show_hours=compare_metric(user_id, population.show_hours),
        unique_shows=compare_metric(user_id, population.unique_shows, digits=0),
        direct_percentage=method_metric("direct"),
        remux_percentage=method_metric("remux"),
        transcode_percentage=method_metric("transcode"),
        server_friendliness=method_metric("direct", "remux", total=total_users),
        total_users=total_users,
    )


def get_user_ranking(user_id: str, population: Population) -> UserRanking:
    """Total watch time rank of a user."""
    total_hours = compare_metric(user_id, population.total_hours)
    return UserRanking(
        rank=total_hours.rank,
        total_users=total_hours.population,
        percentile=total_hours.percentile,
        top_viewer_hours=total_hours.maximum,
    )

"""Viewer personality from watching habits.

Each rule pairs a condition with a score. Of the rules whose condition
holds, the highest score wins and table order breaks ties.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Callable, Optional

from .models import DayOfWeekStats, HourlyStats, Marathon, PlaybackStats

CASUAL_VIEWER = "Casual Viewer"


@dataclass(frozen=True)
class HabitProfile:
    """Ratios and peaks derived from the hourly and weekday buckets."""

    total_plays: int
    peak_hour: int
    peak_day: int
    peak_day_plays: int
    weekend_plays: int
    weekday_plays: int
    working_hours_ratio: float
    late_night_ratio: float
    lunch_ratio: float
    evening_ratio: float
    early_morning_ratio: float
    movie_plays: int
    episode_plays: int
    total_hours: float
    longest_marathon_hours: float

    @property
    def content_plays(self) -> int:
        return self.movie_plays + self.episode_plays


def _peak(buckets, key):
    # First bucket with the most plays, like a strict ">" scan.
    best = buckets[0]
    for bucket in buckets[1:]:
        if bucket.plays > best.plays:
            best = bucket
    return getattr(best, key), best.plays


def build_habit_profile(
    hourly: Sequence[HourlyStats],
    day_of_week: Sequence[DayOfWeekStats],
    stats: PlaybackStats,
    longest_marathon: Optional[Marathon] = None,
) -> HabitProfile:
    total_plays = sum(h.plays for h in hourly)

    def share(first_hour: int, last_hour: int) -> float:
        if total_plays <= 0:
            return 0.0
        plays = sum(h.plays for h in hourly if first_hour <= h.hour <= last_hour)
        return plays / total_plays

    late_night_plays = sum(h.plays for h in hourly if h.hour >= 23 or h.hour <= 4)
    peak_hour, _ = _peak(hourly, "hour")
    peak_day, peak_day_plays = _peak(day_of_week, "day")

    return HabitProfile(
        total_plays=total_plays,
        peak_hour=peak_hour,
        peak_day=peak_day,
        peak_day_plays=peak_day_plays,
        weekend_plays=sum(d.plays for d in day_of_week if d.day in (0, 6)),
        weekday_plays=sum(d.plays for d in day_of_week if 1 <= d.day <= 5),
        working_hours_ratio=share(9, 17),
        late_night_ratio=late_night_plays / total_plays if total_plays > 0 else 0.0,
        lunch_ratio=share(11, 14),
        evening_ratio=share(18, 22),
        early_morning_ratio=share(5, 8),
        movie_plays=stats.movie_plays,
        episode_plays=stats.episode_plays,
        total_hours=stats.total_hours,
        longest_marathon_hours=longest_marathon.total_hours if longest_marathon else 0.0,
    )


@dataclass(frozen=True)
class PersonalityRule:
    personality: str
    condition: Callable[[HabitProfile], bool]
    score: Callable[[HabitProfile], float]


PERSONALITY_RULES: tuple[PersonalityRule, ...] = (
    PersonalityRule(
        "Night Owl",
        lambda p: p.late_night_ratio > 0.35 or p.peak_hour >= 23 or p.peak_hour <= 3,
        lambda p: p.late_night_ratio * 100 + 30,
    ),
    PersonalityRule(
        "Early Bird",
        lambda p: p.early_morning_ratio > 0.25 or 5 <= p.peak_hour <= 8,
        lambda p: p.early_morning_ratio * 100 + 20,
    ),
    PersonalityRule(
        "Workday Slacker",
        lambda p: p.working_hours_ratio > 0.4 and p.weekday_plays > p.weekend_plays,
        lambda p: p.working_hours_ratio * 100 + 25,
    ),
    PersonalityRule(
        "Weekend Warrior",
        lambda p: p.weekend_plays > p.weekday_plays * 1.5,
        lambda p: p.weekend_plays / (p.weekend_plays + p.weekday_plays) * 100 + 15,
    ),
    PersonalityRule(
        "Sunday Couch Potato",
        lambda p: p.peak_day == 0 and p.peak_day_plays > p.total_plays / 7 * 1.8,
        lambda p: p.peak_day_plays / p.total_plays * 100 + 20,
    ),
    PersonalityRule(
        "Lunch Break Legend",
        lambda p: p.lunch_ratio > 0.3 or 11 <= p.peak_hour <= 14,
        lambda p: p.lunch_ratio * 100 + 15,
    ),
    PersonalityRule(
        "After Hours Addict",
        lambda p: 17 <= p.peak_hour <= 20,
        lambda p: 35,
    ),
    PersonalityRule(
        "Prime Time Purist",
        lambda p: p.evening_ratio > 0.5,
        lambda p: p.evening_ratio * 100 + 10,
    ),
    PersonalityRule(
        "Twilight Viewer",
        lambda p: 17 <= p.peak_hour <= 19 and p.evening_ratio > 0.3,
        lambda p: 30,
    ),
    PersonalityRule(
        "Marathon Master",
        lambda p: p.longest_marathon_hours >= 8,
        lambda p: p.longest_marathon_hours * 5 + 30,
    ),
    PersonalityRule(
        "Binge Watcher",
        lambda p: p.episode_plays > p.movie_plays * 3,
        lambda p: p.episode_plays / p.content_plays * 50 + 20,
    ),
    PersonalityRule(
        "Movie Buff",
        lambda p: p.movie_plays > p.episode_plays * 1.5,
        lambda p: p.movie_plays / p.content_plays * 50 + 15,
    ),
    PersonalityRule(
        "The Dedicated One",
        lambda p: p.total_hours > 500,
        lambda p: min(p.total_hours / 10, 60),
    ),
)

DESCRIPTIONS = {
    "Marathon Master": "You've mastered the art of the extended watch session!",
    "Night Owl": "The night is your domain for peak entertainment.",
    "Early Bird": "You catch shows while others catch Z's.",
    "Binge Watcher": "Just one more episode... said nobody ever.",
    "Movie Buff": "Feature-length is your preferred format.",
    "Casual Viewer": "A balanced viewer with diverse tastes.",
    "Weekend Warrior": "Saving the binge for when it counts!",
    "Workday Slacker": "Who needs productivity when there's content?",
    "Lunch Break Legend": "Turning lunch hour into watch hour!",
    "After Hours Addict": "Work's done, time to unwind!",
    "Sunday Couch Potato": "Sunday is for shows, as intended.",
    "Twilight Viewer": "The golden hour is your viewing hour.",
    "The Dedicated One": "Your commitment to content is legendary!",
    "Prime Time Purist": "Traditional viewing hours, timeless taste.",
}

EMOJIS = {
    "Marathon Master": "🏃",
    "Night Owl": "🦉",
    "Early Bird": "🐦",
    "Binge Watcher": "📺",
    "Movie Buff": "🎬",
    "Casual Viewer": "🍿",
    "Weekend Warrior": "⚔️",
    "Workday Slacker": "🤫",
    "Lunch Break Legend": "🥪",
    "After Hours Addict": "🌆",
    "Sunday Couch Potato": "🛋️",
    "Twilight Viewer": "🌅",
    "The Dedicated One": "👑",
    "Prime Time Purist": "📡",
}


def score_personalities(
    profile: HabitProfile, rules: Sequence[PersonalityRule] = PERSONALITY_RULES
) -> list[tuple[str, float]]:
    """Scores of every rule whose condition holds, in table order."""
    return [(rule.personality, rule.score(profile)) for rule in rules if rule.condition(profile)]


def determine_personality(
    hourly: Sequence[HourlyStats],
    day_of_week: Sequence[DayOfWeekStats],
    stats: PlaybackStats,
    longest_marathon: Optional[Marathon] = None,
    rules: Sequence[PersonalityRule] = PERSONALITY_RULES,
) -> str:
    if not hourly or not day_of_week:
        return CASUAL_VIEWER

    profile = build_habit_profile(hourly, day_of_week, stats, longest_marathon)
    if profile.total_plays == 0:
        return CASUAL_VIEWER

    best: Optional[tuple[str, float]] = None
    for personality, score in score_personalities(profile, rules):
        if best is None or score > best[1]:
            best = (personality, score)
    return best[0] if best else CASUAL_VIEWER


def get_personality_description(personality: str) -> str:
    return DESCRIPTIONS.get(personality, DESCRIPTIONS[CASUAL_VIEWER])


def get_personality_emoji(personality: str) -> str:
    return EMOJIS.get(personality, EMOJIS[CASUAL_VIEWER])

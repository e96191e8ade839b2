import math


def round_half_up(value: float, digits: int = 0) -> float:
    """Round half up. The built-in `round` rounds half to even."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def seconds_to_hours(seconds: float) -> float:
    """Convert seconds to hours with one decimal place."""
    return round_half_up(seconds / 3600, 1)


def seconds_to_minutes(seconds: float) -> int:
    return int(round_half_up(seconds / 60))


def percentage(part: float, total: float) -> float:
    """Share of `part` in `total` as a percentage with one decimal place."""
    if total <= 0:
        return 0.0
    return round_half_up(part / total * 100, 1)


def format_duration(minutes: float) -> str:
    """Format minutes as human readable duration."""
    if minutes < 60:
        return f"{int(round_half_up(minutes))} min"

    hours = int(minutes // 60)
    remaining_minutes = int(round_half_up(minutes % 60))
    if hours < 24:
        if remaining_minutes == 0:
            return f"{hours}h"
        return f"{hours}h {remaining_minutes}m"

    days = hours // 24
    remaining_hours = hours % 24
    if remaining_hours == 0:
        return f"{days}d"
    return f"{days}d {remaining_hours}h"

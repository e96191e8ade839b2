"""Series attribution for episode playback rows.

Playback Reporting only records the episode's display name, e.g.
``"Severance - s02e03 - Who Is Alive?"``. Aggregation code takes a
``SeriesNameParser`` so a different naming scheme can be plugged in.
"""

import re
from typing import Callable

SeriesNameParser = Callable[[str], str]

EPISODE_NAME_PATTERN = re.compile(r"^(?P<series>.+?)\s*-\s*s\d+e\d+", re.IGNORECASE)


def series_from_episode_name(item_name: str) -> str:
    """Default parser: the series part of the name, or the whole name."""
    match = EPISODE_NAME_PATTERN.match(item_name)
    if not match:
        return item_name
    return match.group("series").strip()

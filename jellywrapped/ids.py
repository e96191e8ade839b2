"""Jellyfin identifier helpers.

The Playback Reporting plugin stores ids as lowercase hex without dashes,
while jellyfin.db uses uppercase dashed UUIDs.
"""


def normalize_id(value: str) -> str:
    """Normalize an id to lowercase without dashes."""
    return value.lower().replace("-", "")


def to_uuid_format(value: str) -> str:
    """Convert an id to the uppercase dashed form used by jellyfin.db."""
    normalized = normalize_id(value)
    parts = [
        normalized[0:8],
        normalized[8:12],
        normalized[12:16],
        normalized[16:20],
        normalized[20:32],
    ]
    return "-".join(parts).upper()

from jellywrapped.formatting import (
    format_duration,
    percentage,
    round_half_up,
    seconds_to_hours,
    seconds_to_minutes,
)


def test_round_half_up():
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(0.25, 1) == 0.3
    assert round_half_up(0.24, 1) == 0.2


def test_seconds_conversions():
    assert seconds_to_hours(5400) == 1.5
    assert seconds_to_hours(14000) == 3.9
    assert seconds_to_minutes(5000) == 83
    assert seconds_to_minutes(90) == 2


def test_percentage():
    assert percentage(1, 3) == 33.3
    assert percentage(2, 3) == 66.7
    assert percentage(5, 0) == 0.0


def test_format_duration():
    assert format_duration(45) == "45 min"
    assert format_duration(60) == "1h"
    assert format_duration(135) == "2h 15m"
    assert format_duration(24 * 60) == "1d"
    assert format_duration(26 * 60 + 30) == "1d 2h"

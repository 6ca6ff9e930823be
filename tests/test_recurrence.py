from datetime import datetime, timedelta, timezone

import pytest

from webhook_scheduler.constants.execution_outcomes import TerminationReason
from webhook_scheduler.services.recurrence import (
    CronValidationError,
    compute_next,
    first_fire_at_or_after,
    normalize_recurrence,
    upcoming_fire_times,
    validate_cron_expression,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def cron(expression: str, tz: str = "UTC") -> dict:
    return {"cronExpression": expression, "timezone": tz}


def test_daily_cron_next_day():
    result = compute_next("cron", cron("0 9 * * *"), utc(2024, 1, 1, 10, 0))
    assert not result.is_terminal
    assert result.next_at == utc(2024, 1, 2, 9, 0)


def test_next_fire_is_strictly_after_matching_instant():
    result = compute_next("cron", cron("0 9 * * *"), utc(2024, 1, 1, 9, 0))
    assert result.next_at == utc(2024, 1, 2, 9, 0)


def test_next_fire_skips_current_minute_with_seconds():
    result = compute_next("cron", cron("* * * * *"), utc(2024, 1, 1, 9, 0, 30))
    assert result.next_at == utc(2024, 1, 1, 9, 1)


@pytest.mark.parametrize("expression", [
    "* * * * *",
    "*/15 * * * *",
    "0 9 * * 1-5",
    "0,30 8-18/2 * * *",
    "5 4 1 1 *",
    "59 23 31 12 *",
    "0 0 29 2 *",
])
@pytest.mark.parametrize("start", [
    utc(2024, 1, 1, 0, 0),
    utc(2024, 2, 29, 23, 59, 59),
    utc(2024, 12, 31, 23, 59),
    utc(2025, 6, 15, 12, 30, 15),
])
def test_next_fire_never_at_or_before_start(expression, start):
    result = compute_next("cron", cron(expression), start)
    assert result.is_terminal or result.next_at > start


def test_timezone_is_applied_before_converting_to_utc():
    # 09:00 in New York during EST is 14:00 UTC
    result = compute_next("cron", cron("0 9 * * *", "America/New_York"), utc(2024, 1, 1, 0, 0))
    assert result.next_at == utc(2024, 1, 1, 14, 0)
    assert result.next_at.tzinfo == timezone.utc


def test_missing_timezone_defaults_to_utc():
    result = compute_next("cron", {"cronExpression": "30 6 * * *"}, utc(2024, 1, 1, 0, 0))
    assert result.next_at == utc(2024, 1, 1, 6, 30)


def test_naive_from_instant_is_treated_as_utc():
    result = compute_next("cron", cron("0 9 * * *"), datetime(2024, 1, 1, 10, 0))
    assert result.next_at == utc(2024, 1, 2, 9, 0)


def test_once_is_always_terminal():
    result = compute_next("once", {}, utc(2024, 1, 1))
    assert result.is_terminal
    assert result.reason == TerminationReason.ONE_TIME


def test_impossible_date_is_terminal_not_a_hang():
    result = compute_next("cron", cron("0 0 30 2 *"), utc(2024, 1, 1))
    assert result.is_terminal
    assert result.reason == TerminationReason.NO_NEXT_OCCURRENCE


def test_invalid_stored_expression_raises():
    with pytest.raises(CronValidationError):
        compute_next("cron", cron("61 * * * *"), utc(2024, 1, 1))


def test_cron_without_expression_raises():
    with pytest.raises(CronValidationError):
        compute_next("cron", {"timezone": "UTC"}, utc(2024, 1, 1))


@pytest.mark.parametrize("expression", [
    "* * * * *",
    "0 9 * * *",
    "*/5 * * * *",
    "0 9 * * 1-5",
    "0 8-18/2 * * *",
    "15,45 * * * *",
    "0 0 1 1,4,7,10 *",
])
def test_valid_expressions(expression):
    assert validate_cron_expression(expression) == expression


@pytest.mark.parametrize("expression", [
    "61 * * * *",
    "* 24 * * *",
    "* * 0 * *",
    "* * * 13 *",
    "* * * * 7",
    "5-1 * * * *",
    "1-5/0 * * * *",
    "*/0 * * * *",
    "1,,2 * * * *",
    "a b c d e",
    "* * * *",
    "* * * * * *",
    "",
    None,
])
def test_invalid_expressions(expression):
    with pytest.raises(CronValidationError):
        validate_cron_expression(expression)


def test_expression_whitespace_is_normalized():
    assert validate_cron_expression("  0   9 * *  * ") == "0 9 * * *"


def test_normalize_once_drops_config():
    assert normalize_recurrence("once", {"cronExpression": "0 9 * * *"}) == ("once", {})
    assert normalize_recurrence(None, None) == ("once", {})


def test_normalize_daily():
    assert normalize_recurrence("daily", {"time": "09:30"}) == ("cron", cron("30 9 * * *"))


def test_normalize_weekly_sorts_and_dedupes_days():
    pattern, config = normalize_recurrence("weekly", {"days": [5, 1, 5], "time": "08:00", "timezone": "Europe/Brussels"})
    assert pattern == "cron"
    assert config == cron("0 8 * * 1,5", "Europe/Brussels")


def test_normalize_monthly():
    assert normalize_recurrence("monthly", {"day": 15, "time": "23:05"}) == ("cron", cron("5 23 15 * *"))


def test_normalize_custom_is_cron():
    assert normalize_recurrence("custom", {"cronExpression": "*/10 * * * *"}) == ("cron", cron("*/10 * * * *"))


@pytest.mark.parametrize("pattern,config", [
    ("daily", {"time": "25:00"}),
    ("daily", {}),
    ("weekly", {"days": [], "time": "08:00"}),
    ("weekly", {"days": [7], "time": "08:00"}),
    ("monthly", {"day": 32, "time": "08:00"}),
    ("cron", {"cronExpression": "0 9 * * *", "timezone": "Mars/Olympus"}),
    ("hourly", {}),
])
def test_normalize_rejects_bad_config(pattern, config):
    with pytest.raises(CronValidationError):
        normalize_recurrence(pattern, config)


def test_first_fire_includes_matching_start():
    result = first_fire_at_or_after("cron", cron("0 9 * * *"), utc(2024, 1, 1, 9, 0))
    assert result.next_at == utc(2024, 1, 1, 9, 0)


def test_upcoming_fire_times():
    fires = upcoming_fire_times("cron", cron("0 * * * *"), utc(2024, 1, 1, 9, 30), count=3)
    assert fires == [utc(2024, 1, 1, 10), utc(2024, 1, 1, 11), utc(2024, 1, 1, 12)]


def test_upcoming_fire_times_empty_for_once_and_invalid():
    assert upcoming_fire_times("once", {}, utc(2024, 1, 1)) == []
    assert upcoming_fire_times("cron", cron("bad"), utc(2024, 1, 1)) == []


def test_leap_day_schedule_waits_for_next_leap_year():
    result = compute_next("cron", cron("0 0 29 2 *"), utc(2024, 3, 1))
    assert result.next_at == utc(2028, 2, 29)
    assert result.next_at - utc(2024, 3, 1) < timedelta(days=366 * 4)


def test_day_of_month_and_weekday_must_both_match():
    # Friday the 13th, not every Friday plus every 13th
    result = compute_next("cron", cron("0 9 13 * 5"), utc(2024, 1, 1))
    assert result.next_at == utc(2024, 9, 13, 9, 0)


def test_restricted_weekday_does_not_rescue_impossible_day():
    result = compute_next("cron", cron("0 0 30 2 1"), utc(2024, 1, 1))
    assert result.is_terminal
    assert result.reason == TerminationReason.NO_NEXT_OCCURRENCE

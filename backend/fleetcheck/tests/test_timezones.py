from datetime import datetime, timezone

import pytest

from fleetcheck.errors import InvalidTimeZone
from fleetcheck.timezones import (
    as_utc,
    calendar_day_key,
    evaluate_trigger,
    local_day_start,
    parse_day_key,
    resolve_zone,
)


def utc(*parts):
    return datetime(*parts, tzinfo=timezone.utc)


def test_los_angeles_trigger_flips_at_local_eight():
    before = evaluate_trigger("America/Los_Angeles", 8, 0, utc(2024, 6, 1, 14, 59))
    after = evaluate_trigger("America/Los_Angeles", 8, 0, utc(2024, 6, 1, 15, 1))

    assert before.due is False
    assert after.due is True
    assert before.day_key == after.day_key == "2024-06-01"
    assert after.trigger_at == utc(2024, 6, 1, 15, 0)


def test_trigger_is_due_exactly_at_the_local_instant():
    result = evaluate_trigger("America/Los_Angeles", 8, 0, utc(2024, 6, 1, 15, 0))
    assert result.due is True


def test_half_hour_zones_compute_their_own_day():
    kolkata = evaluate_trigger("Asia/Kolkata", 8, 0, utc(2024, 6, 1, 2, 31))
    assert kolkata.due is True
    assert kolkata.trigger_at == utc(2024, 6, 1, 2, 30)

    # 22:31 UTC is already 08:01 the next morning in Adelaide (UTC+09:30 in June)
    adelaide = evaluate_trigger("Australia/Adelaide", 8, 0, utc(2024, 6, 1, 22, 31))
    assert adelaide.day_key == "2024-06-02"
    assert adelaide.due is True
    assert adelaide.trigger_at == utc(2024, 6, 1, 22, 30)


def test_day_key_follows_the_unit_zone_not_utc():
    instant = utc(2024, 6, 2, 3, 0)
    assert calendar_day_key("UTC", instant) == "2024-06-02"
    assert calendar_day_key("America/Los_Angeles", instant) == "2024-06-01"
    assert calendar_day_key("Asia/Tokyo", instant) == "2024-06-02"


def test_spring_forward_gap_shifts_trigger_forward():
    # 02:30 does not exist on 2024-03-10 in Los Angeles; it lands at 03:30 PDT
    result = evaluate_trigger("America/Los_Angeles", 2, 30, utc(2024, 3, 10, 12, 0))
    assert result.trigger_at == utc(2024, 3, 10, 10, 30)
    assert result.day_key == "2024-03-10"


def test_fall_back_fold_uses_first_occurrence():
    result = evaluate_trigger("America/Los_Angeles", 1, 30, utc(2024, 11, 3, 8, 29))
    assert result.trigger_at == utc(2024, 11, 3, 8, 30)
    assert result.due is False


def test_invalid_zone_raises_domain_error():
    with pytest.raises(InvalidTimeZone) as excinfo:
        evaluate_trigger("Mars/Olympus_Mons", 8, 0, utc(2024, 6, 1, 12, 0))
    assert excinfo.value.zone_name == "Mars/Olympus_Mons"

    with pytest.raises(InvalidTimeZone):
        resolve_zone("")
    with pytest.raises(InvalidTimeZone):
        calendar_day_key("Not/AZone", utc(2024, 6, 1))


def test_trigger_time_out_of_range():
    with pytest.raises(ValueError):
        evaluate_trigger("UTC", 24, 0, utc(2024, 6, 1))
    with pytest.raises(ValueError):
        evaluate_trigger("UTC", 8, 60, utc(2024, 6, 1))


def test_naive_instants_are_treated_as_utc():
    assert as_utc(datetime(2024, 6, 1, 12, 0)) == utc(2024, 6, 1, 12, 0)
    assert calendar_day_key("UTC", datetime(2024, 6, 1, 23, 59)) == "2024-06-01"


def test_local_day_start_and_parse():
    start = local_day_start("America/Los_Angeles", utc(2024, 6, 1, 20, 0))
    assert start == utc(2024, 6, 1, 7, 0)
    assert parse_day_key("2024-06-01").isoformat() == "2024-06-01"

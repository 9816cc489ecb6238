"""Time zone helpers turning unit-local wall clocks into instants and day keys."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidTimeZone

# purpose: resolve calendar-day partition keys and trigger instants for reminder evaluation
# inputs: IANA zone identifier, local trigger hour/minute, reference instant
# outputs: day keys, UTC trigger instants, due flags
# status: active

DAY_KEY_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True, slots=True)
class TriggerEvaluation:
    """Result of checking a local trigger time against a reference instant."""

    day_key: str
    trigger_at: datetime
    due: bool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive values as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_zone(zone_name: str | None) -> ZoneInfo:
    """Return the ZoneInfo for an IANA identifier or raise InvalidTimeZone."""

    if not zone_name or not zone_name.strip():
        raise InvalidTimeZone(zone_name)
    try:
        return ZoneInfo(zone_name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimeZone(zone_name) from exc


def local_date(zone_name: str, now: datetime) -> date:
    return as_utc(now).astimezone(resolve_zone(zone_name)).date()


def calendar_day_key(zone_name: str, now: datetime) -> str:
    """Return the zone-local date of ``now`` formatted as ``YYYY-MM-DD``."""

    return local_date(zone_name, now).strftime(DAY_KEY_FORMAT)


def parse_day_key(day_key: str) -> date:
    return datetime.strptime(day_key, DAY_KEY_FORMAT).date()


def local_day_start(zone_name: str, now: datetime) -> datetime:
    """Return the UTC instant of local midnight for the day containing ``now``."""

    zone = resolve_zone(zone_name)
    today = as_utc(now).astimezone(zone).date()
    return datetime.combine(today, time(0, 0), tzinfo=zone).astimezone(timezone.utc)


def evaluate_trigger(zone_name: str, hour: int, minute: int, now: datetime) -> TriggerEvaluation:
    """Decide whether today's local trigger time has passed in ``zone_name``.

    The result depends only on the arguments. A trigger falling inside a
    spring-forward gap is shifted forward by the gap length; a trigger inside
    a fall-back fold resolves to its first occurrence.
    """

    if not 0 <= hour <= 23:
        raise ValueError(f"trigger hour out of range: {hour}")
    if not 0 <= minute <= 59:
        raise ValueError(f"trigger minute out of range: {minute}")
    zone = resolve_zone(zone_name)
    reference = as_utc(now)
    today = reference.astimezone(zone).date()
    local_trigger = datetime.combine(today, time(hour, minute), tzinfo=zone)
    trigger_at = local_trigger.astimezone(timezone.utc)
    return TriggerEvaluation(
        day_key=today.strftime(DAY_KEY_FORMAT),
        trigger_at=trigger_at,
        due=reference >= trigger_at,
    )

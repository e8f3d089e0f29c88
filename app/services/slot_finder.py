from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

MAX_SLOTS = 12
SLOT_STEP_MINUTES = 30


class InvalidSlotConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class CandidateSlot:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class WorkingHoursConfig:
    """Local working band ``[start_hour, end_hour)``.

    ``timezone_offset_minutes`` follows the browser convention: minutes the
    local zone is behind UTC, so ``local = utc - offset``.
    """

    start_hour: int
    end_hour: int
    timezone_offset_minutes: int = 0


def find_available_slots(
    busy: Iterable[BusyInterval],
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int,
    config: WorkingHoursConfig,
) -> list[CandidateSlot]:
    """Scan the window in 30 minute steps and return free in-band slots.

    A slot is kept when it starts inside the local working band, ends no later
    than the band's closing hour on the same local day and no later than the
    window end, and does not overlap any busy interval. At most
    ``MAX_SLOTS`` slots are returned, ascending by start.
    """
    _validate_config(duration_minutes, config)
    start = _as_utc(window_start, "window_start")
    end = _as_utc(window_end, "window_end")
    busy_intervals = [
        (_as_utc(interval.start, "busy.start"), _as_utc(interval.end, "busy.end"))
        for interval in busy
    ]
    if start >= end:
        return []

    offset = timedelta(minutes=config.timezone_offset_minutes)
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=SLOT_STEP_MINUTES)

    slots: list[CandidateSlot] = []
    cursor = _floor_to_step(start)
    while cursor < end and len(slots) < MAX_SLOTS:
        local_cursor = cursor - offset
        if config.start_hour <= local_cursor.hour < config.end_hour:
            slot_end = cursor + duration
            local_closing = local_cursor.replace(
                hour=config.end_hour,
                minute=0,
                second=0,
                microsecond=0,
            )
            fits_band = slot_end - offset <= local_closing
            if fits_band and slot_end <= end and not _overlaps_any(cursor, slot_end, busy_intervals):
                slots.append(CandidateSlot(start=cursor, end=slot_end))
        cursor += step

    return slots


def _overlaps_any(
    slot_start: datetime,
    slot_end: datetime,
    busy_intervals: list[tuple[datetime, datetime]],
) -> bool:
    # Half-open: touching intervals do not conflict.
    return any(
        slot_start < busy_end and slot_end > busy_start
        for busy_start, busy_end in busy_intervals
    )


def _floor_to_step(value: datetime) -> datetime:
    floored = value.replace(second=0, microsecond=0)
    return floored - timedelta(minutes=floored.minute % SLOT_STEP_MINUTES)


def _as_utc(value: datetime, field_name: str) -> datetime:
    if not isinstance(value, datetime):
        raise InvalidSlotConfigurationError(f"{field_name} must be a datetime.")
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _validate_config(duration_minutes: int, config: WorkingHoursConfig) -> None:
    if not _is_finite_number(duration_minutes) or duration_minutes <= 0:
        raise InvalidSlotConfigurationError("duration_minutes must be a positive number.")
    if not _is_finite_number(config.timezone_offset_minutes):
        raise InvalidSlotConfigurationError("timezone_offset_minutes must be a finite number.")
    for field_name in ("start_hour", "end_hour"):
        hour = getattr(config, field_name)
        if not isinstance(hour, int) or isinstance(hour, bool) or not 0 <= hour <= 23:
            raise InvalidSlotConfigurationError(f"{field_name} must be an integer between 0 and 23.")
    if config.start_hour >= config.end_hour:
        raise InvalidSlotConfigurationError("start_hour must be lower than end_hour.")


def _is_finite_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)

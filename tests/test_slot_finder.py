from datetime import UTC, datetime, timedelta

import pytest

from app.services.slot_finder import (
    MAX_SLOTS,
    BusyInterval,
    CandidateSlot,
    InvalidSlotConfigurationError,
    WorkingHoursConfig,
    find_available_slots,
)

_NINE_TO_FIVE = WorkingHoursConfig(start_hour=9, end_hour=17, timezone_offset_minutes=0)


def _at(hour: int, minute: int = 0, day: int = 1) -> datetime:
    return datetime(2024, 1, day, hour, minute, tzinfo=UTC)


def _slot(start: datetime, minutes: int = 60) -> CandidateSlot:
    return CandidateSlot(start=start, end=start + timedelta(minutes=minutes))


def test_empty_calendar_returns_every_stepped_slot_in_window() -> None:
    slots = find_available_slots([], _at(9), _at(11), 60, _NINE_TO_FIVE)

    assert slots == [_slot(_at(9)), _slot(_at(9, 30)), _slot(_at(10))]


def test_busy_interval_removes_overlapping_slots() -> None:
    busy = [BusyInterval(start=_at(9), end=_at(10))]

    slots = find_available_slots(busy, _at(9), _at(11), 60, _NINE_TO_FIVE)

    assert slots == [_slot(_at(10))]


def test_touching_busy_interval_does_not_conflict() -> None:
    busy = [BusyInterval(start=_at(10), end=_at(11))]

    slots = find_available_slots(busy, _at(9), _at(10), 60, _NINE_TO_FIVE)

    assert slots == [_slot(_at(9))]


def test_window_covering_one_slot_returns_exactly_that_slot() -> None:
    slots = find_available_slots([], _at(14), _at(15), 60, _NINE_TO_FIVE)

    assert slots == [_slot(_at(14))]


def test_fully_busy_band_returns_empty_list() -> None:
    busy = [BusyInterval(start=_at(9), end=_at(17))]

    slots = find_available_slots(busy, _at(9), _at(17), 30, _NINE_TO_FIVE)

    assert slots == []


def test_slot_must_not_run_past_closing_hour() -> None:
    slots = find_available_slots([], _at(15), _at(18), 60, _NINE_TO_FIVE)

    assert [slot.start for slot in slots] == [_at(15), _at(15, 30), _at(16)]
    assert all(slot.end <= _at(17) for slot in slots)


def test_duration_longer_than_band_yields_nothing() -> None:
    slots = find_available_slots([], _at(0), _at(0, day=4), 9 * 60, _NINE_TO_FIVE)

    assert slots == []


def test_result_is_capped_and_ascending() -> None:
    config = WorkingHoursConfig(start_hour=0, end_hour=23)

    slots = find_available_slots([], _at(0), _at(0, day=8), 30, config)

    assert len(slots) == MAX_SLOTS
    starts = [slot.start for slot in slots]
    assert starts == sorted(starts)
    assert len(set(starts)) == len(starts)


def test_window_start_is_truncated_to_half_hour_boundary() -> None:
    window_start = datetime(2024, 1, 1, 9, 47, 12, 500, tzinfo=UTC)

    slots = find_available_slots([], window_start, _at(11), 30, _NINE_TO_FIVE)

    assert slots[0].start == _at(9, 30)


def test_timezone_offset_shifts_working_band() -> None:
    # UTC-5 (browser offset 300): local 09:00 is 14:00 UTC.
    config = WorkingHoursConfig(start_hour=9, end_hour=17, timezone_offset_minutes=300)

    slots = find_available_slots([], _at(12), _at(16), 60, config)

    assert [slot.start for slot in slots] == [_at(14), _at(14, 30), _at(15)]


def test_negative_offset_for_zones_east_of_utc() -> None:
    # UTC+2 (browser offset -120): local 17:00 closing is 15:00 UTC.
    config = WorkingHoursConfig(start_hour=9, end_hour=17, timezone_offset_minutes=-120)

    slots = find_available_slots([], _at(13), _at(16), 60, config)

    assert [slot.start for slot in slots] == [_at(13), _at(13, 30), _at(14)]


def test_unsorted_and_overlapping_busy_intervals_are_accepted() -> None:
    busy = [
        BusyInterval(start=_at(13), end=_at(14)),
        BusyInterval(start=_at(9), end=_at(10, 30)),
        BusyInterval(start=_at(10), end=_at(11)),
    ]

    slots = find_available_slots(busy, _at(9), _at(14), 60, _NINE_TO_FIVE)

    assert slots == [_slot(_at(11)), _slot(_at(11, 30)), _slot(_at(12))]
    for slot in slots:
        for interval in busy:
            assert not (slot.start < interval.end and slot.end > interval.start)


def test_reversed_window_returns_empty_list() -> None:
    assert find_available_slots([], _at(11), _at(9), 60, _NINE_TO_FIVE) == []


def test_naive_datetimes_are_read_as_utc() -> None:
    slots = find_available_slots(
        [],
        datetime(2024, 1, 1, 9),
        datetime(2024, 1, 1, 10),
        60,
        _NINE_TO_FIVE,
    )

    assert slots == [_slot(_at(9))]


@pytest.mark.parametrize(
    ("duration", "config"),
    [
        (0, _NINE_TO_FIVE),
        (-30, _NINE_TO_FIVE),
        (float("nan"), _NINE_TO_FIVE),
        (float("inf"), _NINE_TO_FIVE),
        (60, WorkingHoursConfig(start_hour=17, end_hour=9)),
        (60, WorkingHoursConfig(start_hour=9, end_hour=9)),
        (60, WorkingHoursConfig(start_hour=9, end_hour=24)),
        (60, WorkingHoursConfig(start_hour=9, end_hour=17, timezone_offset_minutes=float("nan"))),
    ],
)
def test_invalid_configuration_is_rejected(duration: float, config: WorkingHoursConfig) -> None:
    with pytest.raises(InvalidSlotConfigurationError):
        find_available_slots([], _at(9), _at(11), duration, config)  # type: ignore[arg-type]

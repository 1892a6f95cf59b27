"""Tests for the 48-window slot catalog."""

from datetime import date, datetime, timedelta, timezone

import pytest

from vigil.errors import SlotNotFoundError
from vigil.slots import (
    all_windows,
    get_window,
    local_date,
    occurrence_at,
    occurrences_between,
    parse_label,
)


class TestLabels:
    def test_index_12_is_six_am(self):
        assert get_window(12).label == "06:00–06:30"

    def test_first_and_last_windows(self):
        assert get_window(0).label == "00:00–00:30"
        assert get_window(47).label == "23:30–00:00"

    def test_catalog_has_48_distinct_labels(self):
        labels = [w.label for w in all_windows()]
        assert len(labels) == 48
        assert len(set(labels)) == 48

    @pytest.mark.parametrize("index", [-1, 48, 100])
    def test_rejects_out_of_range_index(self, index):
        with pytest.raises(SlotNotFoundError):
            get_window(index)


class TestParseLabel:
    def test_parses_en_dash(self):
        assert parse_label("06:00–06:30").index == 12

    def test_parses_hyphen(self):
        assert parse_label(" 13:30-14:00 ").index == 27

    def test_parses_overnight_window(self):
        assert parse_label("23:30–00:00").index == 47

    @pytest.mark.parametrize("label", ["06:15–06:45", "06:00–07:00", "six to half six", ""])
    def test_rejects_non_catalog_labels(self, label):
        with pytest.raises(SlotNotFoundError):
            parse_label(label)


class TestOccurrences:
    def test_occurrence_in_utc(self):
        occ = get_window(12).occurrence(date(2025, 1, 10))
        assert occ.start == datetime(2025, 1, 10, 6, 0, tzinfo=timezone.utc)
        assert occ.end == datetime(2025, 1, 10, 6, 30, tzinfo=timezone.utc)
        assert occ.slot_index == 12

    def test_occurrence_in_coverage_timezone(self):
        """06:00 in Nairobi (UTC+3) is 03:00 UTC."""
        occ = get_window(12).occurrence(date(2025, 1, 10), "Africa/Nairobi")
        assert occ.start == datetime(2025, 1, 10, 3, 0, tzinfo=timezone.utc)

    def test_last_window_ends_next_day(self):
        occ = get_window(47).occurrence(date(2025, 1, 10))
        assert occ.end == datetime(2025, 1, 11, 0, 0, tzinfo=timezone.utc)

    def test_overlap_is_clipped_to_window(self):
        occ = get_window(12).occurrence(date(2025, 1, 10))
        joined = datetime(2025, 1, 10, 5, 59, 30, tzinfo=timezone.utc)
        left = datetime(2025, 1, 10, 6, 31, tzinfo=timezone.utc)
        assert occ.overlap(joined, left) == timedelta(minutes=30)

    def test_overlap_is_zero_when_disjoint(self):
        occ = get_window(12).occurrence(date(2025, 1, 10))
        joined = datetime(2025, 1, 10, 7, 0, tzinfo=timezone.utc)
        left = datetime(2025, 1, 10, 7, 30, tzinfo=timezone.utc)
        assert occ.overlap(joined, left) == timedelta(0)

    def test_occurrence_at_finds_containing_window(self):
        occ = occurrence_at(datetime(2025, 1, 10, 6, 17, tzinfo=timezone.utc))
        assert occ.slot_index == 12
        assert occ.on == date(2025, 1, 10)

    def test_local_date_uses_coverage_timezone(self):
        instant = datetime(2025, 1, 10, 23, 0, tzinfo=timezone.utc)
        assert local_date(instant) == date(2025, 1, 10)
        assert local_date(instant, "Asia/Tokyo") == date(2025, 1, 11)


class TestOccurrencesBetween:
    def test_lists_windows_overlapping_range_in_order(self):
        start = datetime(2025, 1, 10, 5, 45, tzinfo=timezone.utc)
        end = datetime(2025, 1, 10, 7, 0, tzinfo=timezone.utc)

        found = occurrences_between(start, end)

        assert [o.slot_index for o in found] == [11, 12, 13]

    def test_restricts_to_given_slots(self):
        start = datetime(2025, 1, 10, 0, 0, tzinfo=timezone.utc)
        end = datetime(2025, 1, 12, 0, 0, tzinfo=timezone.utc)

        found = occurrences_between(start, end, slot_indexes={12})

        assert [(o.slot_index, o.on) for o in found] == [
            (12, date(2025, 1, 10)),
            (12, date(2025, 1, 11)),
        ]

    def test_crosses_midnight(self):
        start = datetime(2025, 1, 10, 23, 40, tzinfo=timezone.utc)
        end = datetime(2025, 1, 11, 0, 10, tzinfo=timezone.utc)

        found = occurrences_between(start, end)

        assert [(o.slot_index, o.on) for o in found] == [
            (47, date(2025, 1, 10)),
            (0, date(2025, 1, 11)),
        ]

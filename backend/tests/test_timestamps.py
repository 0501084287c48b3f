"""Tests for tolerant last-message timestamp parsing."""

from datetime import datetime, timezone, timedelta

import pytest

from chatshelf.services.timestamps import date_key, parse_timestamp


class TestParseTimestamp:
    def test_epoch_seconds(self):
        assert parse_timestamp(1715524212) == datetime(2024, 5, 12, 14, 30, 12, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self):
        assert parse_timestamp(1715524212000) == datetime(2024, 5, 12, 14, 30, 12, tzinfo=timezone.utc)

    def test_numeric_string(self):
        assert parse_timestamp("1715524212000") == parse_timestamp(1715524212)

    def test_iso_with_offset_is_converted_to_utc(self):
        parsed = parse_timestamp("2024-05-12T16:30:12+02:00")
        assert parsed == datetime(2024, 5, 12, 14, 30, 12, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    def test_naive_iso_taken_as_utc(self):
        assert parse_timestamp("2024-05-12T14:30:12") == datetime(2024, 5, 12, 14, 30, 12, tzinfo=timezone.utc)

    def test_humanized_form(self):
        parsed = parse_timestamp("2024-5-12 @14h 30m 12s 345ms")
        assert parsed == datetime(2024, 5, 12, 14, 30, 12, 345000, tzinfo=timezone.utc)

    def test_humanized_without_seconds(self):
        assert parse_timestamp("2024-5-12 @14h 30m") == datetime(2024, 5, 12, 14, 30, tzinfo=timezone.utc)

    def test_free_form_date(self):
        assert parse_timestamp("May 12, 2024 2:30pm") == datetime(2024, 5, 12, 14, 30, tzinfo=timezone.utc)

    def test_datetime_passthrough(self):
        value = datetime(2024, 5, 12, 14, 30)
        assert parse_timestamp(value) == value.replace(tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", "not a date", True, [], {}])
    def test_unparseable_yields_none(self, value):
        assert parse_timestamp(value) is None


class TestDateKey:
    def test_calendar_day(self):
        assert date_key(datetime(2024, 5, 2, 23, 59, tzinfo=timezone.utc)) == "2024-05-02"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

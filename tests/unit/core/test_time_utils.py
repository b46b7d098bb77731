"""
Unit tests for the UTC datetime helpers.
"""
from datetime import datetime, timezone

import pytest

from app.core.time_utils import FrozenClock, add_seconds, ensure_utc, parse_datetime

EXPECTED = datetime(2024, 1, 5, 10, 0, 0, tzinfo=timezone.utc)


class TestParseDatetime:
    @pytest.mark.parametrize(
        "value",
        [
            "2024-01-05T10:00:00Z",
            "2024-01-05 10:00:00 GMT",
            "2024-01-05T11:00:00+01:00",
            "Fri, 05 Jan 2024 10:00:00 +0000",
            "January 5, 2024 10:00",
        ],
    )
    def test_strings(self, value):
        assert parse_datetime(value) == EXPECTED

    def test_unix_timestamps(self):
        ts = EXPECTED.timestamp()

        assert parse_datetime(ts) == EXPECTED
        assert parse_datetime(int(ts)) == EXPECTED
        assert parse_datetime(str(int(ts))) == EXPECTED

    def test_naive_datetime_assumed_utc(self):
        assert parse_datetime(datetime(2024, 1, 5, 10, 0, 0)).tzinfo == timezone.utc

    @pytest.mark.parametrize("value", ["sometime soon", "", None, True, [], 10**20])
    def test_rejects_unparseable(self, value):
        with pytest.raises(ValueError):
            parse_datetime(value)


class TestHelpers:
    def test_ensure_utc_converts_offsets(self):
        value = datetime.fromisoformat("2024-01-05T11:00:00+01:00")

        assert ensure_utc(value) == EXPECTED
        assert ensure_utc(value).tzinfo == timezone.utc

    def test_add_seconds(self):
        assert add_seconds(EXPECTED, 300) == datetime(2024, 1, 5, 10, 5, 0, tzinfo=timezone.utc)

    def test_frozen_clock_advances(self):
        clock = FrozenClock(EXPECTED)

        clock.advance(60)

        assert clock() == datetime(2024, 1, 5, 10, 1, 0, tzinfo=timezone.utc)

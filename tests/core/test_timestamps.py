"""Tests for UTC helpers, ULIDs and clocks."""

from datetime import UTC, datetime, timedelta, timezone

from jobspine.core.timestamps import (
    Clock,
    SystemClock,
    ensure_utc,
    generate_ulid,
    to_iso8601,
    truncate_to_second,
    utc_now,
)


class TestUtcHelpers:
    def test_utc_now_is_aware(self):
        assert utc_now().tzinfo is UTC

    def test_ensure_utc_naive_assumed_utc(self):
        naive = datetime(2025, 1, 6, 12, 0)
        assert ensure_utc(naive) == datetime(2025, 1, 6, 12, 0, tzinfo=UTC)

    def test_ensure_utc_converts_offset(self):
        """Aware instants in another zone are converted, not relabelled."""
        eastern = timezone(timedelta(hours=-5))
        value = ensure_utc(datetime(2025, 1, 6, 7, 0, tzinfo=eastern))
        assert value == datetime(2025, 1, 6, 12, 0, tzinfo=UTC)
        assert value.utcoffset() == timedelta(0)

    def test_truncate_to_second(self):
        value = truncate_to_second(datetime(2025, 1, 6, 12, 0, 5, 999_999, tzinfo=UTC))
        assert value == datetime(2025, 1, 6, 12, 0, 5, tzinfo=UTC)

    def test_to_iso8601(self):
        assert to_iso8601(None) is None
        assert to_iso8601(datetime(2025, 1, 6, tzinfo=UTC)) == "2025-01-06T00:00:00+00:00"


class TestUlid:
    def test_format(self):
        ulid = generate_ulid()
        assert len(ulid) == 26
        assert set(ulid) <= set("0123456789ABCDEFGHJKMNPQRSTVWXYZ")

    def test_unique(self):
        assert len({generate_ulid() for _ in range(500)}) == 500


class TestClock:
    def test_system_clock_satisfies_protocol(self):
        clock = SystemClock()
        assert isinstance(clock, Clock)
        before = utc_now()
        assert before <= clock.now() <= utc_now()

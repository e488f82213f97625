"""Calendar day boundaries for streaks and weekly goals."""

from datetime import date, datetime, timedelta, timezone

from studytrack.sessions.streak_service import get_monday, session_day


class TestSessionDay:
    """A session counts towards the canonical-zone day of its start."""

    def test_utc_day_of_start(self):
        started = datetime(2026, 3, 4, 23, 59, 59, tzinfo=timezone.utc)
        assert session_day(started) == date(2026, 3, 4)

    def test_midnight_belongs_to_new_day(self):
        started = datetime(2026, 3, 5, 0, 0, 0, tzinfo=timezone.utc)
        assert session_day(started) == date(2026, 3, 5)

    def test_session_spanning_midnight_counts_on_start_day(self):
        started = datetime(2026, 3, 4, 23, 30, tzinfo=timezone.utc)
        ended = started + timedelta(hours=1)
        assert session_day(started) == date(2026, 3, 4)
        assert ended.date() == date(2026, 3, 5)

    def test_naive_datetime_read_as_utc(self):
        assert session_day(datetime(2026, 3, 4, 23, 0)) == date(2026, 3, 4)

    def test_offset_converted_to_utc(self):
        """01:00 at UTC+02:00 is still the previous UTC day."""
        plus_two = timezone(timedelta(hours=2))
        started = datetime(2026, 3, 5, 1, 0, tzinfo=plus_two)
        assert session_day(started) == date(2026, 3, 4)

    def test_configured_zone(self):
        started = datetime(2026, 3, 4, 23, 30, tzinfo=timezone.utc)
        assert session_day(started, "Europe/Berlin") == date(2026, 3, 5)


class TestGetMonday:

    def test_monday_returns_itself(self):
        assert get_monday(date(2026, 2, 23)) == date(2026, 2, 23)

    def test_sunday_returns_previous_monday(self):
        assert get_monday(date(2026, 3, 1)) == date(2026, 2, 23)

    def test_wednesday_returns_monday(self):
        assert get_monday(date(2026, 2, 25)) == date(2026, 2, 23)

"""Inbound session validation: duration is derived and bounded."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from studytrack.config import Settings
from studytrack.errors import SessionValidationError
from studytrack.sessions.completion_service import validate_session
from studytrack.sessions.schemas import CompletedSession

START = datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc)


def _session(**overrides) -> CompletedSession:
    fields = {
        "user_id": uuid.uuid4(),
        "subject_id": uuid.uuid4(),
        "started_at": START,
        "ended_at": START + timedelta(minutes=25),
    }
    fields.update(overrides)
    return CompletedSession(**fields)


class TestCompletedSession:

    def test_duration_is_floored(self):
        session = _session(ended_at=START + timedelta(seconds=90, milliseconds=999))
        assert session.duration_seconds == 90

    def test_naive_times_become_utc(self):
        session = _session(started_at=datetime(2026, 3, 4, 9, 0), ended_at=datetime(2026, 3, 4, 9, 30))
        assert session.started_at.tzinfo is timezone.utc
        assert session.duration_seconds == 1800

    def test_id_generated_when_missing(self):
        assert isinstance(_session().id, uuid.UUID)

    def test_duration_in_serialized_form(self):
        assert _session().model_dump()["duration_seconds"] == 1500


class TestValidateSession:

    def test_valid_session_returns_duration(self):
        assert validate_session(_session(), max_seconds=86_400) == 1500

    def test_zero_duration_rejected(self):
        with pytest.raises(SessionValidationError, match="non-positive"):
            validate_session(_session(ended_at=START), max_seconds=86_400)

    def test_sub_second_duration_rejected(self):
        with pytest.raises(SessionValidationError):
            validate_session(_session(ended_at=START + timedelta(milliseconds=400)), max_seconds=86_400)

    def test_end_before_start_rejected(self):
        with pytest.raises(SessionValidationError):
            validate_session(_session(ended_at=START - timedelta(minutes=5)), max_seconds=86_400)

    def test_exactly_one_day_allowed(self):
        session = _session(ended_at=START + timedelta(seconds=86_400))
        assert validate_session(session, max_seconds=86_400) == 86_400

    def test_over_one_day_rejected(self):
        with pytest.raises(SessionValidationError, match="cap"):
            validate_session(_session(ended_at=START + timedelta(seconds=86_401)), max_seconds=86_400)

    def test_is_a_value_error(self):
        """Callers that only know ValueError still catch it."""
        with pytest.raises(ValueError):
            validate_session(_session(ended_at=START), max_seconds=86_400)


class TestSessionCapSetting:

    def test_cap_can_be_lowered(self, monkeypatch):
        monkeypatch.setenv("STUDYTRACK_MAX_SESSION_SECONDS", "7200")
        assert Settings().max_session_seconds == 7200

    @pytest.mark.parametrize("value", ["86401", "0"])
    def test_cap_outside_stored_range_is_refused(self, monkeypatch, value):
        monkeypatch.setenv("STUDYTRACK_MAX_SESSION_SECONDS", value)
        with pytest.raises(ValidationError):
            Settings()

import pytest
from pydantic import ValidationError

from timetable_sync.core.config import Settings


class TestSettings:
    """Test cases for environment-driven settings"""

    def test_default_days(self, monkeypatch):
        monkeypatch.delenv("SCHOOL_DAYS", raising=False)

        assert Settings(_env_file=None).SCHOOL_DAYS == ["Sat", "Sun", "Mon", "Tue", "Wed", "Thu", "Fri"]

    def test_days_from_comma_separated_env(self, monkeypatch):
        monkeypatch.setenv("SCHOOL_DAYS", "Mon, Tue,Wed")

        assert Settings(_env_file=None).SCHOOL_DAYS == ["Mon", "Tue", "Wed"]

    def test_days_from_json_env(self, monkeypatch):
        monkeypatch.setenv("SCHOOL_DAYS", '["Sun", "Mon"]')

        assert Settings(_env_file=None).SCHOOL_DAYS == ["Sun", "Mon"]

    def test_unknown_remote_backend_rejected(self, monkeypatch):
        monkeypatch.setenv("REMOTE_BACKEND", "carrier-pigeon")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

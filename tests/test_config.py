"""
Settings and CSRF Token Store Tests
"""
import pytest

from app.core.config import Settings, parse_duration
from app.core.security import CsrfTokenStore


class TestParseDuration:

    @pytest.mark.parametrize("value, seconds", [
        ("1h30m", 5400.0),
        ("100ms", 0.1),
        ("2s", 2.0),
        ("1.5m", 90.0),
        ("30", 30.0),
        (45, 45.0),
        (0.25, 0.25),
    ])
    def test_valid(self, value, seconds):
        assert parse_duration(value) == pytest.approx(seconds)

    @pytest.mark.parametrize("value", ["", "abc", "10x", "5m garbage", "m5"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestSettings:

    def test_duration_fields_accept_strings(self):
        settings = Settings(_env_file=None, TX_TIMEOUT="1m", CACHE_TTL="5m", READ_TIMEOUT="500ms")
        assert settings.TX_TIMEOUT == 60.0
        assert settings.CACHE_TTL == 300.0
        assert settings.READ_TIMEOUT == pytest.approx(0.5)

    def test_database_url_from_parts(self):
        settings = Settings(
            _env_file=None, DATABASE_URL=None,
            DB_USER="exam", DB_PASSWORD="secret", DB_HOST="db", DB_PORT=3307, DB_NAME="exams",
        )
        assert settings.database_url == "mysql+pymysql://exam:secret@db:3307/exams?charset=utf8mb4"
        assert settings.is_sqlite is False

    def test_explicit_database_url_wins(self):
        settings = Settings(_env_file=None, DATABASE_URL="sqlite:///./exam.db")
        assert settings.database_url == "sqlite:///./exam.db"
        assert settings.is_sqlite is True


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCsrfTokenStore:

    def test_issued_token_is_valid_until_expiry(self):
        clock = FakeClock()
        store = CsrfTokenStore(expiration=60, clock=clock)
        token = store.issue()
        assert store.validate(token)
        assert store.validate(token)
        clock.now += 60
        assert not store.validate(token)
        assert len(store) == 0

    def test_unknown_and_empty_tokens(self):
        store = CsrfTokenStore()
        assert not store.validate(None)
        assert not store.validate("")
        assert not store.validate("forged")

    def test_revoke(self):
        store = CsrfTokenStore()
        token = store.issue()
        store.revoke(token)
        assert not store.validate(token)

    def test_issue_purges_expired_tokens(self):
        clock = FakeClock()
        store = CsrfTokenStore(expiration=10, clock=clock)
        store.issue()
        store.issue()
        clock.now += 11
        store.issue()
        assert len(store) == 1

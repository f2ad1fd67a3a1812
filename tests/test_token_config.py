"""Tests for src/tokens/config.py: token list and expiry parsing."""

from datetime import datetime, timedelta, timezone

import pytest

from src.tokens.config import TokenRole, parse_expiry, parse_token_config, parse_token_entries


class TestParseExpiry:

    def test_date_is_utc_midnight(self):
        assert parse_expiry("2025-12-31") == datetime(2025, 12, 31, tzinfo=timezone.utc)

    def test_datetime_with_offset(self):
        parsed = parse_expiry("2025-12-31T18:00:00+02:00")
        assert parsed == datetime(2025, 12, 31, 16, 0, tzinfo=timezone.utc)

    def test_naive_datetime_is_utc(self):
        parsed = parse_expiry("2025-12-31T18:00:00")
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timedelta(0)

    @pytest.mark.parametrize("value", ["never", "NEVER", "infinite", "∞", "none", "None", "-", "", "  "])
    def test_never_sentinels(self, value):
        assert parse_expiry(value) is None

    def test_absent(self):
        assert parse_expiry(None) is None

    def test_lowercase_separator(self):
        parsed = parse_expiry("2025-12-31t10:00:00")
        assert parsed == datetime(2025, 12, 31, 10, 0, tzinfo=timezone.utc)

    def test_space_separator(self):
        assert parse_expiry("2025-12-31 10:00:00Z") == datetime(2025, 12, 31, 10, 0, tzinfo=timezone.utc)

    def test_garbage_is_never_with_warning(self, gateway_caplog):
        assert parse_expiry("not-a-date") is None
        assert any("Invalid token expiry" in r.getMessage() for r in gateway_caplog.records)


class TestParseTokenEntries:

    def test_full_entries(self):
        specs = parse_token_entries("a:alice:2099-01-01,b:bob:never")
        assert [s.token for s in specs] == ["a", "b"]
        assert specs[0].owner_id == "alice"
        assert specs[0].expires_at == datetime(2099, 1, 1, tzinfo=timezone.utc)
        assert specs[1].owner_id == "bob"
        assert specs[1].expires_at is None
        assert all(s.role == TokenRole.USER for s in specs)

    def test_token_only(self):
        specs = parse_token_entries("simple_token")
        assert specs[0].owner_id is None
        assert specs[0].expires_at is None

    def test_empty_owner_with_expiry(self):
        specs = parse_token_entries("tok::2030-06-01")
        assert specs[0].owner_id is None
        assert specs[0].expires_at == datetime(2030, 6, 1, tzinfo=timezone.utc)

    def test_expiry_keeps_time_colons(self):
        specs = parse_token_entries("tok:carol:2030-06-01T12:30:00Z")
        assert specs[0].expires_at == datetime(2030, 6, 1, 12, 30, tzinfo=timezone.utc)

    def test_lowercase_time_separator_still_expires(self):
        specs = parse_token_entries("tok:carol:2030-06-01t12:30:00")
        assert specs[0].expires_at == datetime(2030, 6, 1, 12, 30, tzinfo=timezone.utc)

    def test_skips_blank_entries(self):
        specs = parse_token_entries(" , a , ,:nobody,")
        assert [s.token for s in specs] == ["a"]


class TestParseTokenConfig:

    def test_admin_fallback_when_no_user_tokens(self):
        specs = parse_token_config("", "master-token")
        assert len(specs) == 1
        assert specs[0].role == TokenRole.ADMIN
        assert specs[0].expires_at is None

    def test_user_tokens_suppress_admin(self):
        specs = parse_token_config("a:alice", "master-token")
        assert [s.token for s in specs] == ["a"]
        assert all(s.role == TokenRole.USER for s in specs)

    def test_nothing_configured(self):
        assert parse_token_config("", "") == []

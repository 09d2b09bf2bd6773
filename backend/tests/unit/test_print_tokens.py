"""Tests for release.print_tokens: single-use tokens and per-IP rate limiting."""

import pytest

from release.errors import (
    PrintTokenExpired,
    PrintTokenInvalid,
    PrintTokenMissing,
    PrintTokenUsed,
    RateLimited,
)
from release.print_tokens import PrintTokenRegistry


@pytest.fixture
def registry(clock):
    return PrintTokenRegistry(clock=clock)


class TestMint:
    def test_token_is_64_hex_chars(self, registry):
        entry = registry.mint("job-1", "10.0.0.1")
        assert len(entry.token) == 64
        int(entry.token, 16)
        assert (entry.expires_at - entry.created_at).total_seconds() == 60
        assert not entry.used

    def test_mint_replaces_previous_token(self, registry):
        first = registry.mint("job-1", "10.0.0.1")
        second = registry.mint("job-1", "10.0.0.1")
        assert first.token != second.token
        assert registry.get("job-1") is second
        with pytest.raises(PrintTokenInvalid):
            registry.consume("job-1", first.token)


class TestConsume:
    def test_valid_token_is_marked_used(self, registry):
        entry = registry.mint("job-1", "10.0.0.1")
        consumed = registry.consume("job-1", entry.token)
        assert consumed.used

    def test_second_consume_while_entry_held(self, registry):
        entry = registry.mint("job-1", "10.0.0.1")
        registry.consume("job-1", entry.token)
        with pytest.raises(PrintTokenUsed):
            registry.consume("job-1", entry.token)

    def test_replay_after_discard_reports_used(self, registry):
        entry = registry.mint("job-1", "10.0.0.1")
        registry.consume("job-1", entry.token)
        registry.discard("job-1")
        assert "job-1" not in registry
        with pytest.raises(PrintTokenUsed):
            registry.consume("job-1", entry.token)

    def test_discard_by_token_keeps_newer_entry(self, registry):
        first = registry.mint("job-1", "10.0.0.1")
        registry.consume("job-1", first.token)
        second = registry.mint("job-1", "10.0.0.1")
        registry.discard("job-1", first.token)
        assert registry.get("job-1") is second
        assert registry.consume("job-1", second.token).used

    def test_missing_token(self, registry):
        registry.mint("job-1", "10.0.0.1")
        with pytest.raises(PrintTokenMissing):
            registry.consume("job-1", None)
        assert "job-1" not in registry

    def test_wrong_token_discards_entry(self, registry):
        entry = registry.mint("job-1", "10.0.0.1")
        with pytest.raises(PrintTokenInvalid):
            registry.consume("job-1", "0" * 64)
        with pytest.raises(PrintTokenInvalid):
            registry.consume("job-1", entry.token)

    def test_unknown_job(self, registry):
        with pytest.raises(PrintTokenInvalid):
            registry.consume("nope", "a" * 64)

    def test_expired_token(self, registry, clock):
        entry = registry.mint("job-1", "10.0.0.1")
        clock.advance(seconds=61)
        with pytest.raises(PrintTokenExpired):
            registry.consume("job-1", entry.token)
        assert "job-1" not in registry

    def test_token_valid_up_to_ttl(self, registry, clock):
        entry = registry.mint("job-1", "10.0.0.1")
        clock.advance(seconds=60)
        assert registry.consume("job-1", entry.token).used


class TestRateLimit:
    def test_eleventh_mint_in_window_rejected(self, registry, clock):
        for i in range(10):
            registry.check_rate("10.0.0.1")
            registry.mint(f"job-{i}", "10.0.0.1")
            clock.advance(seconds=1)
        with pytest.raises(RateLimited):
            registry.check_rate("10.0.0.1")

    def test_other_ip_unaffected(self, registry):
        for _ in range(10):
            registry.check_rate("10.0.0.1")
        registry.check_rate("10.0.0.2")

    def test_window_rolls_over(self, registry, clock):
        for _ in range(10):
            registry.check_rate("10.0.0.1")
        clock.advance(seconds=61)
        registry.check_rate("10.0.0.1")

    def test_rejected_attempts_are_not_counted(self, registry, clock):
        for _ in range(10):
            registry.check_rate("10.0.0.1")
        for _ in range(5):
            with pytest.raises(RateLimited):
                registry.check_rate("10.0.0.1")
        clock.advance(seconds=60)
        for _ in range(10):
            registry.check_rate("10.0.0.1")


class TestPurge:
    def test_drops_expired_tokens_and_history(self, registry, clock):
        registry.check_rate("10.0.0.1")
        registry.mint("job-1", "10.0.0.1")
        used = registry.mint("job-2", "10.0.0.1")
        registry.consume("job-2", used.token)
        registry.discard("job-2")

        clock.advance(seconds=61)
        assert registry.purge() == 1
        assert "job-1" not in registry

        # Spent marker is gone once the token would have expired anyway.
        with pytest.raises(PrintTokenInvalid):
            registry.consume("job-2", used.token)

    def test_keeps_live_tokens(self, registry, clock):
        registry.mint("job-1", "10.0.0.1")
        clock.advance(seconds=30)
        assert registry.purge() == 0
        assert "job-1" in registry

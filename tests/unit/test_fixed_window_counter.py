"""
Tests for the Fixed Window Counter
==================================

Per-key hit counting used by rate limiting.
"""

import pytest

from collabhub.api.ratelimit import FixedWindowCounter, route_class


@pytest.fixture
def counter(fake_clock):
    return FixedWindowCounter(window_seconds=60, max_hits=3, time_source=fake_clock)


class TestFixedWindowCounter:
    """Tests for window counting."""

    @pytest.mark.asyncio
    async def test_allows_up_to_max(self, counter):
        results = [await counter.hit("ip:1.2.3.4") for _ in range(3)]

        assert [allowed for allowed, _, _ in results] == [True, True, True]
        assert [remaining for _, remaining, _ in results] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_rejects_over_max(self, counter):
        for _ in range(3):
            await counter.hit("ip:1.2.3.4")

        allowed, remaining, _ = await counter.hit("ip:1.2.3.4")

        assert not allowed
        assert remaining == 0

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, counter):
        for _ in range(3):
            await counter.hit("ip:1.2.3.4")

        allowed, _, _ = await counter.hit("ip:5.6.7.8")
        assert allowed

    @pytest.mark.asyncio
    async def test_window_resets(self, counter, fake_clock):
        for _ in range(4):
            await counter.hit("user:a")

        fake_clock.advance(60)
        allowed, remaining, reset_at = await counter.hit("user:a")

        assert allowed
        assert remaining == 2
        assert reset_at == fake_clock.now + 60

    @pytest.mark.asyncio
    async def test_reset_at_fixed_within_window(self, counter, fake_clock):
        _, _, first_reset = await counter.hit("user:a")
        fake_clock.advance(30)
        _, _, second_reset = await counter.hit("user:a")

        assert first_reset == second_reset

    @pytest.mark.asyncio
    async def test_reset_by_prefix(self, counter):
        for _ in range(3):
            await counter.hit("ratelimit:/login:user:a")
        await counter.hit("ratelimit:/login:user:b")

        cleared = await counter.reset("ratelimit:/login:user:a")

        assert cleared == 1
        allowed, _, _ = await counter.hit("ratelimit:/login:user:a")
        assert allowed

    @pytest.mark.asyncio
    async def test_sweep_drops_expired_keys(self, fake_clock):
        counter = FixedWindowCounter(
            window_seconds=10, max_hits=5, time_source=fake_clock, sweep_every=3
        )
        await counter.hit("a")
        await counter.hit("b")
        fake_clock.advance(10)

        await counter.hit("c")

        assert len(counter) == 1


class TestRouteClass:
    """Tests for route classification."""

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/api/v1/auth/login", "auth"),
            ("/api/v1/auth/federated", "auth"),
            ("/api/v1/ai/analyze", "ai"),
            ("/api/v1/documents/1/export", "export"),
            ("/api/v1/admin/roles", "api"),
            ("/metrics", "default"),
        ],
    )
    def test_route_class(self, path, expected):
        assert route_class(path) == expected

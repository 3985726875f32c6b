# tests/test_rate_limiter.py
import pytest

from conftest import make_settings
from core.exceptions import RateLimited
from services.ratelimit.rate_limiter import DAY_SECONDS, HOUR_SECONDS, RateLimiter, client_key

DAY0 = 19675 * DAY_SECONDS


class FakeClock:
    def __init__(self, now: float = DAY0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _limiter(clock, **overrides):
    values = dict(
        RATE_LIMIT_READ_HOURLY=3,
        RATE_LIMIT_READ_DAILY=5,
        RATE_LIMIT_REVALIDATE_HOURLY=1,
        RATE_LIMIT_REVALIDATE_DAILY=2,
    )
    values.update(overrides)
    return RateLimiter(make_settings(**values), clock=clock)


def test_hourly_window_rejects_and_reports_retry_after():
    clock = FakeClock(DAY0 + 600)
    limiter = _limiter(clock)

    decisions = [limiter.check("client-a") for _ in range(3)]
    assert [d.remaining for d in decisions] == [2, 1, 0]
    assert all(d.allowed for d in decisions)
    assert decisions[0].reset_at == DAY0 + HOUR_SECONDS

    rejected = limiter.check("client-a")
    assert not rejected.allowed
    assert rejected.retry_after == HOUR_SECONDS - 600


def test_hour_rollover_restores_capacity_until_daily_quota():
    clock = FakeClock()
    limiter = _limiter(clock)

    for _ in range(3):
        assert limiter.check("client-a").allowed
    clock.now += HOUR_SECONDS
    assert limiter.check("client-a").allowed
    last = limiter.check("client-a")
    assert last.allowed
    assert last.remaining == 0
    assert last.reset_at == DAY0 + DAY_SECONDS

    rejected = limiter.check("client-a")
    assert not rejected.allowed
    assert rejected.reset_at == DAY0 + DAY_SECONDS

    clock.now = DAY0 + DAY_SECONDS
    assert limiter.check("client-a").allowed


def test_rejected_requests_do_not_consume_quota():
    clock = FakeClock()
    limiter = _limiter(clock, RATE_LIMIT_READ_HOURLY=1, RATE_LIMIT_READ_DAILY=2)

    assert limiter.check("client-a").allowed
    for _ in range(10):
        assert not limiter.check("client-a").allowed

    clock.now += HOUR_SECONDS
    assert limiter.check("client-a").allowed


def test_operations_and_clients_are_independent():
    limiter = _limiter(FakeClock())

    assert limiter.check("client-a", "revalidate").allowed
    assert not limiter.check("client-a", "revalidate").allowed
    assert limiter.check("client-a", "read").allowed
    assert limiter.check("client-b", "revalidate").allowed


def test_unknown_operation():
    with pytest.raises(ValueError):
        _limiter(FakeClock()).check("client-a", "delete")


def test_enforce_raises_rate_limited():
    limiter = _limiter(FakeClock(), RATE_LIMIT_REVALIDATE_HOURLY=1)
    limiter.enforce("client-a", "revalidate")

    with pytest.raises(RateLimited) as excinfo:
        limiter.enforce("client-a", "revalidate")

    assert excinfo.value.retry_after == HOUR_SECONDS
    assert excinfo.value.to_dict()["error"]["code"] == "RATE_LIMITED"


def test_client_key_is_stable_and_opaque():
    key = client_key("203.0.113.7", "curl/8.0", salt="pepper")

    assert key == client_key("203.0.113.7", "curl/8.0", salt="pepper")
    assert len(key) == 24
    assert "203.0.113.7" not in key
    assert key != client_key("203.0.113.8", "curl/8.0", salt="pepper")
    assert key != client_key("203.0.113.7", "curl/8.0", salt="other")
    # user agents are truncated before hashing
    assert client_key("1.1.1.1", "a" * 100 + "x") == client_key("1.1.1.1", "a" * 100 + "y")

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
import pytest
from starlette.requests import Request

from inkflow.core.config import settings
from inkflow.errors import register_error_handlers
from inkflow.ratelimit import FixedWindowRateLimiter, rate_limit
from inkflow.ratelimit.headers import build_rate_headers
from inkflow.ratelimit.identity import resolve_identity
from inkflow.ratelimit.window import PRUNE_EVERY


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return FixedWindowRateLimiter({"booking_submit": (3, 60), "public": (100, 60)}, clock=clock)


def test_allows_up_to_limit_then_blocks(limiter, clock):
    decisions = [limiter.hit("booking_submit", "ip:1.2.3.4") for _ in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0]
    assert decisions[-1].retry_after_s == 60
    assert decisions[-1].reset_epoch_s == clock.now + 60


def test_window_resets_after_expiry(limiter, clock):
    for _ in range(3):
        limiter.hit("booking_submit", "ip:1.2.3.4")
    clock.now += 30
    blocked = limiter.hit("booking_submit", "ip:1.2.3.4")
    assert blocked.allowed is False
    assert blocked.retry_after_s == 30

    clock.now += 30
    assert limiter.hit("booking_submit", "ip:1.2.3.4").allowed is True


def test_identities_and_buckets_are_independent(limiter):
    for _ in range(3):
        limiter.hit("booking_submit", "ip:1.1.1.1")

    assert limiter.hit("booking_submit", "ip:2.2.2.2").allowed is True
    assert limiter.hit("public", "ip:1.1.1.1").allowed is True


def test_expired_windows_are_pruned(limiter, clock):
    limiter.hit("booking_submit", "ip:old")
    clock.now += 120
    for i in range(PRUNE_EVERY - 1):
        limiter.hit("public", f"ip:{i % 5}")

    assert ("booking_submit", "ip:old") not in limiter._windows
    assert len(limiter) == 5


def test_reset_clears_all_windows(limiter):
    limiter.hit("public", "ip:1")
    limiter.reset()

    assert len(limiter) == 0


def _request(headers=None, client=("10.0.0.9", 5000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


@pytest.mark.parametrize(
    "headers,expected",
    [
        (
            {"X-Forwarded-For": "203.0.113.5, 10.0.0.1", "X-Real-IP": "198.51.100.1"},
            "ip:203.0.113.5",
        ),
        ({"X-Real-IP": "198.51.100.1", "CF-Connecting-IP": "192.0.2.7"}, "ip:198.51.100.1"),
        ({"CF-Connecting-IP": "192.0.2.7"}, "ip:192.0.2.7"),
        ({}, "ip:10.0.0.9"),
    ],
)
def test_identity_precedence(headers, expected):
    assert resolve_identity(_request(headers)) == expected


def test_identity_without_peer():
    assert resolve_identity(_request(client=None)) == "ip:unknown"


def test_headers_include_retry_after_only_when_blocked():
    allowed = build_rate_headers(2, 3, 1_060.4, None)
    blocked = build_rate_headers(0, 3, 1_060.4, 12.2)

    assert allowed == {
        "X-RateLimit-Remaining": "2",
        "X-RateLimit-Limit": "3",
        "X-RateLimit-Reset": "1060",
    }
    assert blocked["Retry-After"] == "13"


class TestDependency:
    @pytest.fixture
    def client(self, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_enabled", True)
        app = FastAPI()
        register_error_handlers(app)
        app.state.rate_limiter = FixedWindowRateLimiter({"booking_submit": (2, 60)})

        @app.post("/submit", dependencies=[Depends(rate_limit("booking_submit"))])
        async def submit():
            return {"ok": True}

        @app.get("/unconfigured", dependencies=[Depends(rate_limit("missing"))])
        async def unconfigured():
            return {"ok": True}

        return TestClient(app)

    def test_blocks_with_problem_and_retry_after(self, client):
        headers = {"X-Forwarded-For": "203.0.113.5"}
        first = client.post("/submit", headers=headers)
        client.post("/submit", headers=headers)
        blocked = client.post("/submit", headers=headers)

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert blocked.status_code == 429
        assert blocked.json()["code"] == "RATE_LIMITED"
        assert int(blocked.headers["Retry-After"]) >= 1

    def test_other_clients_are_unaffected(self, client):
        for _ in range(3):
            client.post("/submit", headers={"X-Forwarded-For": "203.0.113.5"})

        other = client.post("/submit", headers={"X-Forwarded-For": "198.51.100.9"})
        assert other.status_code == 200

    def test_unknown_bucket_fails_open(self, client):
        assert client.get("/unconfigured").status_code == 200

    def test_disabled_limiter_never_blocks(self, client, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_enabled", False)

        responses = [client.post("/submit") for _ in range(5)]
        assert all(r.status_code == 200 for r in responses)

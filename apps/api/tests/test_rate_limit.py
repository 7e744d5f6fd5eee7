"""Tests for the rate limiting middleware."""

import time
from unittest.mock import MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from ledgerflow_api.middleware.rate_limit import RateLimitMiddleware
from ledgerflow_api.settings import Settings


def _app(redis_state):
    redis_client = MagicMock()
    pipeline = redis_client.pipeline.return_value
    pipeline.execute.return_value = redis_state

    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, redis_client=redis_client)

    @app.get("/v1/ping")
    async def ping():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app, pipeline


def _enabled():
    return Settings(rate_limit_enabled=True, rate_limit_requests=10, rate_limit_window_seconds=60)


def test_request_within_budget():
    app, pipeline = _app([None, None])
    with patch("ledgerflow_api.middleware.rate_limit.get_settings", _enabled):
        response = TestClient(app).get("/v1/ping")

    assert response.status_code == 200
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    pipeline.set.assert_any_call("rate_limit:testclient", 9.0, ex=1800)


def test_exhausted_bucket_rejected():
    app, _ = _app(["0", str(time.time())])
    with patch("ledgerflow_api.middleware.rate_limit.get_settings", _enabled):
        response = TestClient(app).get("/v1/ping")

    assert response.status_code == 429
    assert response.json()["error_code"] == "RATE_LIMITED"
    assert int(response.headers["Retry-After"]) >= 1


def test_non_api_paths_not_limited():
    app, pipeline = _app(["0", str(time.time())])
    with patch("ledgerflow_api.middleware.rate_limit.get_settings", _enabled):
        response = TestClient(app).get("/health")

    assert response.status_code == 200
    pipeline.execute.assert_not_called()

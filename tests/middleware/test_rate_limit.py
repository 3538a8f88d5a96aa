import logging
from unittest.mock import AsyncMock

import pytest
from fastapi import Request, Response
from redis.exceptions import NoScriptError, RedisError

import src.middleware.rate_limit as rate_limit
from src.middleware.rate_limit import WINDOW_SIZE_SECONDS, RateLimitingMiddleware, client_identifier

logger = logging.getLogger(__name__)


# --- Fixtures ---

@pytest.fixture(autouse=True)
def reset_lua_sha(monkeypatch):
    """Each test loads the script afresh."""
    monkeypatch.setattr(rate_limit, "_lua_sha", None)


@pytest.fixture
def redis_conn():
    conn = AsyncMock()
    conn.script_load.return_value = "sha123"
    return conn


# --- Helper Function ---

def make_request(path="/api/v1/adaptive/start", client_host="10.0.0.1", forwarded=None) -> Request:
    headers = []
    if forwarded:
        headers.append((b"x-forwarded-for", forwarded.encode()))
    return Request({
        "type": "http",
        "method": "POST",
        "path": path,
        "headers": headers,
        "query_string": b"",
        "client": (client_host, 51000),
    })


async def call_next(request: Request):
    # Simulates the endpoint behind the middleware
    return Response(status_code=200, content=b'{"message":"Success"}', media_type="application/json")


def middleware_for(redis_conn, limit=2) -> RateLimitingMiddleware:
    return RateLimitingMiddleware(app=None, limit_per_minute=limit, redis_factory=AsyncMock(return_value=redis_conn))


# --- Test Cases ---

@pytest.mark.asyncio
async def test_requests_within_limit_get_headers(redis_conn):
    redis_conn.evalsha.side_effect = [1, 2]
    middleware = middleware_for(redis_conn)

    first = await middleware.dispatch(make_request(), call_next)
    second = await middleware.dispatch(make_request(), call_next)

    assert first.status_code == 200
    assert first.headers["x-ratelimit-limit"] == "2"
    assert first.headers["x-ratelimit-remaining"] == "1"
    assert second.headers["x-ratelimit-remaining"] == "0"
    redis_conn.script_load.assert_awaited_once()


@pytest.mark.asyncio
async def test_request_over_limit_gets_429(redis_conn):
    redis_conn.evalsha.return_value = 3
    response = await middleware_for(redis_conn).dispatch(make_request(), call_next)

    assert response.status_code == 429
    assert response.headers["retry-after"] == str(WINDOW_SIZE_SECONDS)
    assert response.headers["x-ratelimit-remaining"] == "0"


@pytest.mark.asyncio
async def test_key_is_per_client(redis_conn):
    redis_conn.evalsha.return_value = 1
    await middleware_for(redis_conn).dispatch(make_request(client_host="10.0.0.7"), call_next)

    args = redis_conn.evalsha.call_args.args
    assert args[0] == "sha123"
    assert args[2].startswith("neurlyn:rl:10.0.0.7:")
    assert args[3] == str(WINDOW_SIZE_SECONDS * 2)


@pytest.mark.asyncio
async def test_falls_back_to_eval_when_script_load_fails(redis_conn):
    redis_conn.script_load.side_effect = RedisError("NOSCRIPT")
    redis_conn.eval.return_value = 1

    response = await middleware_for(redis_conn).dispatch(make_request(), call_next)

    assert response.status_code == 200
    redis_conn.eval.assert_awaited_once()


@pytest.mark.asyncio
async def test_flushed_script_is_reloaded_and_limit_still_enforced(redis_conn):
    redis_conn.evalsha.return_value = 1
    middleware = middleware_for(redis_conn, limit=1)
    first = await middleware.dispatch(make_request(), call_next)
    assert first.status_code == 200

    # Redis restarted: the cached SHA is gone
    redis_conn.evalsha.side_effect = NoScriptError("NOSCRIPT No matching script.")
    redis_conn.eval.return_value = 5
    redis_conn.script_load.return_value = "sha456"

    blocked = await middleware.dispatch(make_request(), call_next)
    assert blocked.status_code == 429
    redis_conn.eval.assert_awaited_once()
    assert rate_limit._lua_sha is None

    redis_conn.evalsha.side_effect = None
    redis_conn.evalsha.return_value = 6
    again = await middleware.dispatch(make_request(), call_next)
    assert again.status_code == 429
    assert redis_conn.evalsha.call_args.args[0] == "sha456"


@pytest.mark.asyncio
async def test_fails_open_on_redis_error(redis_conn):
    redis_conn.evalsha.side_effect = RedisError("down")
    response = await middleware_for(redis_conn).dispatch(make_request(), call_next)

    assert response.status_code == 200
    assert "x-ratelimit-limit" not in response.headers


@pytest.mark.asyncio
async def test_fails_open_without_redis():
    middleware = RateLimitingMiddleware(app=None, limit_per_minute=1, redis_factory=AsyncMock(return_value=None))
    response = await middleware.dispatch(make_request(), call_next)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_checks_are_exempt(redis_conn):
    response = await middleware_for(redis_conn, limit=0).dispatch(make_request(path="/health/store"), call_next)
    assert response.status_code == 200
    redis_conn.evalsha.assert_not_awaited()


def test_client_identifier_prefers_forwarded_header():
    assert client_identifier(make_request(forwarded="203.0.113.9, 10.0.0.1")) == "203.0.113.9"
    assert client_identifier(make_request(client_host="10.0.0.2")) == "10.0.0.2"

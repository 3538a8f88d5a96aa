import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from redis.exceptions import NoScriptError, RedisError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from src.cache.connection import NAMESPACE, get_redis

logger = logging.getLogger(__name__)

DEFAULT_LIMIT_PER_MINUTE = 120
WINDOW_SIZE_SECONDS = 60
EXEMPT_PATHS = ("/health",)

# Fixed-window counter: INCR and set the expiry on the first hit
LUA_SCRIPT = """
local key = KEYS[1]
local expiry = tonumber(ARGV[1])
local count = redis.call("INCR", key)
if count == 1 then
    redis.call("EXPIRE", key, expiry)
end
return count
"""
_lua_sha: Optional[str] = None
_lua_sha_lock = asyncio.Lock()


async def get_lua_sha(redis_conn: redis.Redis) -> Optional[str]:
    """Loads the Lua script into Redis and returns its SHA."""
    global _lua_sha
    async with _lua_sha_lock:
        if _lua_sha is None:
            try:
                _lua_sha = await redis_conn.script_load(LUA_SCRIPT)
                logger.info(f"Loaded rate limiting Lua script with SHA: {_lua_sha}")
            except RedisError as e:
                logger.error(f"Failed to load Lua script into Redis: {e}")
                _lua_sha = None
        return _lua_sha


async def reset_lua_sha() -> None:
    """Forgets the cached SHA so the script is loaded again on next use."""
    global _lua_sha
    async with _lua_sha_lock:
        _lua_sha = None


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """
    Per-client fixed-window limit on the assessment API. Fails open: when
    Redis is missing or errors, the request goes through unlimited.
    """

    def __init__(
        self,
        app: ASGIApp,
        limit_per_minute: int = DEFAULT_LIMIT_PER_MINUTE,
        redis_factory: Callable[[], Awaitable[Optional[redis.Redis]]] = get_redis,
    ):
        super().__init__(app)
        self.limit = limit_per_minute
        self._redis_factory = redis_factory

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith(EXEMPT_PATHS):
            return await call_next(request)

        client_id = client_identifier(request)

        redis_conn = await self._redis_factory()
        if not redis_conn:
            logger.warning("Redis unavailable, skipping rate limiting.")
            return await call_next(request)

        current_minute_epoch = int(time.time() // WINDOW_SIZE_SECONDS)
        key = f"{NAMESPACE}rl:{client_id}:{current_minute_epoch}"
        expiry_seconds = WINDOW_SIZE_SECONDS * 2

        try:
            sha = await get_lua_sha(redis_conn)
            if sha:
                try:
                    current_count = await redis_conn.evalsha(sha, 1, key, str(expiry_seconds))
                except NoScriptError:
                    # Script cache was flushed, e.g. by a Redis restart
                    logger.warning("Rate limiting Lua script missing from Redis, reloading.")
                    await reset_lua_sha()
                    current_count = await redis_conn.eval(LUA_SCRIPT, 1, key, str(expiry_seconds))
            else:
                logger.warning("Lua script SHA not available, using EVAL.")
                current_count = await redis_conn.eval(LUA_SCRIPT, 1, key, str(expiry_seconds))
            current_count = int(current_count)
        except RedisError as e:
            logger.error(f"Redis error during rate limiting for client {client_id}: {e}. Allowing request.")
            return await call_next(request)

        remaining = max(0, self.limit - current_count)

        if current_count > self.limit:
            logger.warning(f"Rate limit exceeded for client {client_id}. Count: {current_count}, Limit: {self.limit}")
            return JSONResponse(
                status_code=429,
                content={"detail": f"Rate limit exceeded. Limit: {self.limit} requests per minute."},
                headers={
                    "x-ratelimit-limit": str(self.limit),
                    "x-ratelimit-remaining": "0",
                    "retry-after": str(WINDOW_SIZE_SECONDS),
                },
            )

        response = await call_next(request)
        response.headers["x-ratelimit-limit"] = str(self.limit)
        response.headers["x-ratelimit-remaining"] = str(remaining)
        return response

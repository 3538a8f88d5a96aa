import asyncio
import logging
from functools import wraps
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError, ConnectionError, TimeoutError

from config.settings import get_settings

_log = logging.getLogger(__name__)

# Prefix for every key this service writes
NAMESPACE = "neurlyn:"


# --- Lock-free _once decorator ---
def _once(fn):
    in_flight = None
    result = None

    @wraps(fn)
    async def wrapper():
        nonlocal in_flight, result
        if result is not None:
            # Assume a cached client is usable; operations fail loudly if it is not
            return result
        if in_flight is None:
            _log.debug(f"Creating task for {fn.__name__}")
            in_flight = asyncio.create_task(fn())

        try:
            result = await in_flight
            return result
        except Exception as e:
            _log.error(f"Task for {fn.__name__} failed: {e}", exc_info=True)
            result = None
            return None
        finally:
            # Cleared so a failed attempt can be retried by the next caller
            in_flight = None

    async def reset():
        nonlocal result, in_flight
        if in_flight and not in_flight.done():
            in_flight.cancel()
            try:
                await in_flight
            except asyncio.CancelledError:
                _log.debug(f"Cancelled in-flight task for {fn.__name__}")
            except Exception as e:
                _log.warning(f"Error awaiting cancelled task for {fn.__name__}: {e}")
        in_flight = None
        result_to_close = result
        result = None
        return result_to_close

    wrapper.reset = reset  # type: ignore
    return wrapper


@_once
async def _create_redis_connection() -> Optional[aioredis.Redis]:
    url = get_settings().redis_url
    _log.info(f"Attempting to create Redis connection to: {url}")
    try:
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=1,   # 1-second TCP connect cap
            socket_timeout=2,           # 2-second op cap
        )
        _log.info(f"Successfully created Redis client for {url}")
        return client
    except (RedisError, ConnectionError, TimeoutError, asyncio.TimeoutError) as exc:
        _log.error(f"Failed to connect to Redis at {url} ({exc})")
        return None


async def get_redis() -> Optional[aioredis.Redis]:
    """
    Return a live Redis client using the lock-free _once pattern.
    Returns None if the client cannot be created.
    """
    return await _create_redis_connection()  # type: ignore


async def close_redis() -> None:
    """Close and discard the cached client."""
    client_to_close = await _create_redis_connection.reset()  # type: ignore

    if client_to_close:
        _log.info("Closing Redis connection pool...")
        try:
            await client_to_close.aclose()
            _log.info("Redis connection pool closed.")
        except RedisError as e:
            _log.warning(f"Error closing Redis connection: {e}")

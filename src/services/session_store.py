import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import AssessmentSettings
from services.assessment_engine.models import Session, TransientStoreError
from services.assessment_engine.store import InMemorySessionStore, SessionStore
from src.cache.connection import NAMESPACE, get_redis

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = f"{NAMESPACE}session:"


class RedisSessionStore(SessionStore):
    """
    Sessions as JSON documents in Redis, one key per session with a TTL.
    Redis errors are retried with exponential backoff and then surface as
    TransientStoreError so the HTTP layer can answer 503.
    """

    def __init__(
        self,
        ttl_seconds: int = 86400,
        completed_retention_seconds: int = 3600,
        client_factory: Callable[[], Awaitable[Optional[aioredis.Redis]]] = get_redis,
        attempts: int = 3,
        wait=None,
    ):
        self.ttl_seconds = ttl_seconds
        self.completed_retention_seconds = completed_retention_seconds
        self._client_factory = client_factory
        self._attempts = attempts
        self._wait = wait if wait is not None else wait_exponential(multiplier=0.2, min=0.2, max=2)

    @staticmethod
    def key_for(session_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{session_id}"

    async def _client(self) -> aioredis.Redis:
        client = await self._client_factory()
        if client is None:
            raise TransientStoreError("Session store unavailable: no Redis connection")
        return client

    async def _execute(self, operation: str, session_id: str, call):
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._attempts),
                wait=self._wait,
                retry=retry_if_exception_type(RedisError),
                reraise=True,
            ):
                with attempt:
                    client = await self._client()
                    return await call(client)
        except RedisError as e:
            logger.error(
                f"Redis {operation} failed after {self._attempts} attempts: {e}",
                extra={"session_id": session_id},
            )
            raise TransientStoreError(f"Session store unavailable during {operation}") from e

    async def create(self, session: Session) -> None:
        payload = session.model_dump_json()
        key = self.key_for(session.session_id)
        await self._execute("create", session.session_id, lambda c: c.set(key, payload, ex=self.ttl_seconds))

    async def get(self, session_id: str) -> Optional[Session]:
        raw = await self._execute("get", session_id, lambda c: c.get(self.key_for(session_id)))
        if raw is None:
            return None
        return Session.model_validate_json(raw)

    async def update(self, session: Session) -> None:
        ttl = self.completed_retention_seconds if session.is_closed else self.ttl_seconds
        payload = session.model_dump_json()
        key = self.key_for(session.session_id)
        await self._execute("update", session.session_id, lambda c: c.set(key, payload, ex=ttl))

    async def mark_complete(self, session: Session) -> None:
        payload = session.model_dump_json()
        key = self.key_for(session.session_id)
        await self._execute(
            "mark_complete", session.session_id,
            lambda c: c.set(key, payload, ex=self.completed_retention_seconds),
        )

    async def ping(self) -> bool:
        try:
            client = await self._client()
            return bool(await client.ping())
        except (RedisError, TransientStoreError) as e:
            logger.warning(f"Session store ping failed: {e}")
            return False


def build_session_store(settings: AssessmentSettings) -> SessionStore:
    backend = settings.session_store_backend.lower()
    if backend == "redis":
        logger.info("Using Redis session store")
        return RedisSessionStore(
            ttl_seconds=settings.session_ttl_seconds,
            completed_retention_seconds=settings.completed_retention_seconds,
        )
    if backend != "memory":
        logger.warning(f"Unknown session store backend '{settings.session_store_backend}', using memory")
    return InMemorySessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        completed_retention_seconds=settings.completed_retention_seconds,
    )

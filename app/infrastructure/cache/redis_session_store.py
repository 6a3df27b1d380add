"""
Redis-backed processing session store.

Sessions are JSON blobs under ``<prefix><id>`` with Redis key expiry; a
per-user set tracks the ids of sessions still running. Cancellation is a
separate ``<prefix><id>:cancelled`` flag merged in on read, so a progress
write racing a cancel cannot clear it.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

import redis.asyncio as redis

from app.config import settings
from app.domain.errors import SessionNotFoundError
from app.domain.services.session_store import (
    ProcessingSession,
    SessionStatus,
    apply_cancel,
    apply_completion,
    apply_progress,
    new_session,
)
from app.utils.time import now_local_naive

logger = logging.getLogger(__name__)


class RedisSessionStore:
    def __init__(
        self,
        client: Any,
        ttl_seconds: Optional[int] = None,
        prefix: str = "processing:session:",
        clock: Callable[[], datetime] = now_local_naive,
    ):
        self._client = client
        self._prefix = prefix
        self.ttl = timedelta(seconds=ttl_seconds or settings.SESSION_TTL_SECONDS)
        self.clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisSessionStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{self._prefix}user:{user_id}"

    def _cancel_key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}:cancelled"

    async def _save(self, session: ProcessingSession) -> ProcessingSession:
        await self._client.set(
            self._key(session.id),
            json.dumps(session.to_dict()),
            ex=int(self.ttl.total_seconds()),
        )
        await self._client.expire(self._cancel_key(session.id), int(self.ttl.total_seconds()))
        if session.is_active:
            await self._client.sadd(self._user_key(session.user_id), session.id)
        else:
            await self._client.srem(self._user_key(session.user_id), session.id)
        return session

    async def create(self, user_id: str, invoice_ids: Sequence[int]) -> ProcessingSession:
        session = new_session(user_id, invoice_ids, self.clock(), self.ttl)
        logger.info("🆕 Session %s created for user %s", session.id, user_id)
        return await self._save(session)

    async def update(self, session_id: str, progress: int, message: str) -> ProcessingSession:
        session = await self._require(session_id)
        return await self._save(apply_progress(session, progress, message, self.clock(), self.ttl))

    async def complete(
        self,
        session_id: str,
        status: SessionStatus,
        message: str,
        summary: Optional[dict[str, Any]] = None,
    ) -> ProcessingSession:
        session = await self._require(session_id)
        session = apply_completion(session, status, message, summary, self.clock(), self.ttl)
        logger.info("🏁 Session %s finished with %s", session_id, session.status.value)
        return await self._save(session)

    async def cancel(self, session_id: str) -> ProcessingSession:
        session = await self._require(session_id)
        if not session.is_active:
            return session
        await self._client.set(self._cancel_key(session_id), "1", ex=int(self.ttl.total_seconds()))
        logger.info("⏹️ Session %s flagged as cancelled", session_id)
        return await self._save(apply_cancel(session, self.clock(), self.ttl))

    async def get(self, session_id: str) -> Optional[ProcessingSession]:
        raw = await self._client.get(self._key(session_id))
        if raw is None:
            return None
        session = ProcessingSession.from_dict(json.loads(raw))
        if session.is_active and await self._client.get(self._cancel_key(session_id)) is not None:
            # keep the stored timestamps
            session = apply_cancel(session, session.updated_at, session.expires_at - session.updated_at)
        return session

    async def expire(self) -> int:
        """Key expiry is handled by Redis; nothing to purge here"""
        return 0

    async def count_active(self, user_id: str) -> int:
        active = 0
        for session_id in await self._client.smembers(self._user_key(user_id)):
            session = await self.get(session_id)
            if session is None or not session.is_active:
                # Expired or finished without cleanup
                await self._client.srem(self._user_key(user_id), session_id)
                continue
            active += 1
        return active

    async def close(self) -> None:
        await self._client.aclose()

    async def _require(self, session_id: str) -> ProcessingSession:
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Processing session {session_id} not found", session_id=session_id)
        return session

"""
PROCESSING SESSION STORE - ASYNC
Progress tracking for batch runs, with an explicit TTL

Sessions are external state: every store expires them after the TTL
instead of keeping an unbounded process-wide map.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence

from app.config import settings
from app.domain.errors import SessionNotFoundError
from app.utils.time import now_local_naive

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class ProcessingSession:
    """Snapshot of one batch run"""
    id: str
    user_id: str
    invoice_ids: tuple[int, ...]
    started_at: datetime
    updated_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.PROCESSING
    progress: int = 0
    message: str = "Starting..."
    cancelled: bool = False
    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.PROCESSING

    @property
    def elapsed_seconds(self) -> float:
        return (self.updated_at - self.started_at).total_seconds()

    @property
    def estimated_remaining_seconds(self) -> Optional[float]:
        """Linear extrapolation from progress so far"""
        if self.progress <= 0 or not self.is_active:
            return None
        elapsed = self.elapsed_seconds
        return max(elapsed * 100 / self.progress - elapsed, 0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "invoice_ids": list(self.invoice_ids),
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "cancelled": self.cancelled,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcessingSession":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            invoice_ids=tuple(data["invoice_ids"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            status=SessionStatus(data["status"]),
            progress=data["progress"],
            message=data["message"],
            cancelled=data["cancelled"],
            summary=data.get("summary") or {},
        )


class SessionStore(Protocol):
    """Session store interface - ASYNC"""

    async def create(self, user_id: str, invoice_ids: Sequence[int]) -> ProcessingSession:
        ...

    async def update(self, session_id: str, progress: int, message: str) -> ProcessingSession:
        ...

    async def complete(
        self,
        session_id: str,
        status: SessionStatus,
        message: str,
        summary: Optional[dict[str, Any]] = None,
    ) -> ProcessingSession:
        ...

    async def cancel(self, session_id: str) -> ProcessingSession:
        ...

    async def get(self, session_id: str) -> Optional[ProcessingSession]:
        ...

    async def expire(self) -> int:
        """Drop expired sessions, returning how many were removed"""
        ...

    async def count_active(self, user_id: str) -> int:
        ...


def new_session(
    user_id: str, invoice_ids: Sequence[int], now: datetime, ttl: timedelta
) -> ProcessingSession:
    return ProcessingSession(
        id=uuid.uuid4().hex,
        user_id=user_id,
        invoice_ids=tuple(invoice_ids),
        started_at=now,
        updated_at=now,
        expires_at=now + ttl,
    )


def apply_progress(
    session: ProcessingSession, progress: int, message: str, now: datetime, ttl: timedelta
) -> ProcessingSession:
    """Progress never goes backwards; a finished session keeps its status"""
    return replace(
        session,
        progress=max(session.progress, min(progress, 100)),
        message=message,
        updated_at=now,
        expires_at=now + ttl,
    )


def apply_completion(
    session: ProcessingSession,
    status: SessionStatus,
    message: str,
    summary: Optional[dict[str, Any]],
    now: datetime,
    ttl: timedelta,
) -> ProcessingSession:
    if session.status == SessionStatus.CANCELLED:
        status = SessionStatus.CANCELLED
    return replace(
        session,
        status=status,
        progress=100 if status == SessionStatus.SUCCESS else session.progress,
        message=message,
        summary=dict(summary or {}),
        updated_at=now,
        expires_at=now + ttl,
    )


def apply_cancel(session: ProcessingSession, now: datetime, ttl: timedelta) -> ProcessingSession:
    if not session.is_active:
        return session
    return replace(
        session,
        status=SessionStatus.CANCELLED,
        cancelled=True,
        message="Processing cancelled by user",
        updated_at=now,
        expires_at=now + ttl,
    )


class InMemorySessionStore:
    """Process-local store; expired sessions are purged on every access"""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = now_local_naive,
    ):
        self.ttl = timedelta(seconds=ttl_seconds or settings.SESSION_TTL_SECONDS)
        self.clock = clock
        self._sessions: dict[str, ProcessingSession] = {}

    async def create(self, user_id: str, invoice_ids: Sequence[int]) -> ProcessingSession:
        await self.expire()
        session = new_session(user_id, invoice_ids, self.clock(), self.ttl)
        self._sessions[session.id] = session
        logger.info("🆕 Session %s created for user %s (%d invoices)", session.id, user_id, len(invoice_ids))
        return session

    async def update(self, session_id: str, progress: int, message: str) -> ProcessingSession:
        session = await self._require(session_id)
        session = apply_progress(session, progress, message, self.clock(), self.ttl)
        self._sessions[session_id] = session
        return session

    async def complete(
        self,
        session_id: str,
        status: SessionStatus,
        message: str,
        summary: Optional[dict[str, Any]] = None,
    ) -> ProcessingSession:
        session = await self._require(session_id)
        session = apply_completion(session, status, message, summary, self.clock(), self.ttl)
        self._sessions[session_id] = session
        logger.info("🏁 Session %s finished with %s", session_id, session.status.value)
        return session

    async def cancel(self, session_id: str) -> ProcessingSession:
        session = await self._require(session_id)
        session = apply_cancel(session, self.clock(), self.ttl)
        self._sessions[session_id] = session
        return session

    async def get(self, session_id: str) -> Optional[ProcessingSession]:
        await self.expire()
        return self._sessions.get(session_id)

    async def expire(self) -> int:
        now = self.clock()
        expired = [sid for sid, session in self._sessions.items() if session.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Expired %d processing sessions", len(expired))
        return len(expired)

    async def count_active(self, user_id: str) -> int:
        await self.expire()
        return sum(
            1 for session in self._sessions.values()
            if session.user_id == user_id and session.is_active
        )

    async def _require(self, session_id: str) -> ProcessingSession:
        session = await self.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Processing session {session_id} not found", session_id=session_id)
        return session


def create_session_store(backend: Optional[str] = None) -> SessionStore:
    """Build the store selected by SESSION_STORE ("memory" or "redis")"""
    backend = (backend or settings.SESSION_STORE).lower()
    if backend == "memory":
        return InMemorySessionStore()
    if backend == "redis":
        from app.infrastructure.cache.redis_session_store import RedisSessionStore

        return RedisSessionStore.from_url(settings.REDIS_URL)
    raise ValueError(f"Unknown session store backend: {backend}")

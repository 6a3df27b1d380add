"""
TRANSACTION MANAGER - ASYNC VERSION
One transactional boundary per batch, with an optional retry wrapper

A result with success=False rolls back every write of the invocation.
Retries wrap whole single-pass invocations and only for DATABASE/NETWORK
failures; delay = base delay x attempt number.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from app.config import settings
from app.domain.services.error_handler import ErrorHandler
from app.domain.services.protocols import UnitOfWork

logger = logging.getLogger(__name__)


class _Outcome(Protocol):
    success: bool


R = TypeVar("R", bound=_Outcome)


class TransactionManager:
    """Commit-or-rollback around a unit of batch work"""

    def __init__(
        self,
        uow: UnitOfWork,
        error_handler: Optional[ErrorHandler] = None,
        max_attempts: Optional[int] = None,
        base_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.uow = uow
        self.error_handler = error_handler or ErrorHandler()
        self.max_attempts = max_attempts or settings.RETRY_MAX_ATTEMPTS
        self.base_delay_seconds = (
            settings.RETRY_BASE_DELAY_SECONDS if base_delay_seconds is None else base_delay_seconds
        )
        self.sleep = sleep

    async def execute(self, work: Callable[[], Awaitable[R]]) -> R:
        """
        Run work once inside the transaction

        Commits when the returned result reports success, rolls back otherwise.
        Exceptions roll back and propagate.
        """
        try:
            result = await work()
        except Exception:
            await self.uow.rollback()
            logger.warning("↩️ Transaction rolled back after exception")
            raise

        if result.success:
            try:
                await self.uow.commit()
            except Exception:
                await self.uow.rollback()
                logger.warning("↩️ Commit failed, transaction rolled back")
                raise
            logger.info("💾 Transaction committed")
        else:
            await self.uow.rollback()
            logger.info("↩️ Transaction rolled back (unsuccessful result)")
        return result

    async def execute_with_retry(self, work: Callable[[], Awaitable[R]]) -> R:
        """
        Run work, retrying the whole invocation on retryable failures

        Raises:
            The last exception when attempts are exhausted or the failure is not retryable
        """
        attempt = 1
        while True:
            try:
                return await self.execute(work)
            except Exception as exc:
                error = self.error_handler.handle(exc, context=f"attempt {attempt}")
                if not error.retryable or attempt >= self.max_attempts:
                    raise
                delay = self.base_delay_seconds * attempt
                logger.warning(
                    "🔁 Retryable %s failure on attempt %d/%d, retrying in %.1fs",
                    error.category.value, attempt, self.max_attempts, delay,
                )
                await self.sleep(delay)
                attempt += 1

"""
Transaction runner for ledger mutations.

Every business operation runs inside run_atomic: one commit per
operation, bounded retry on row contention, and domain events handed to
the dispatcher only after the commit succeeded.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from stockflow.config import settings
from stockflow.core.events import DomainEvent, EventDispatcher
from stockflow.core.exceptions import StockflowError, ConcurrencyConflict


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Driver messages that mean "another transaction holds this row"
CONTENTION_MARKERS = ("locked", "serialize", "deadlock")


def is_contention_error(exc: Exception) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, OperationalError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        return any(marker in message for marker in CONTENTION_MARKERS)
    return False


async def run_atomic(
    db: AsyncSession,
    operation: Callable[[List[DomainEvent]], Awaitable[T]],
    *,
    events: Optional[EventDispatcher] = None,
    max_attempts: Optional[int] = None,
    label: str = "ledger operation",
) -> T:
    """
    Run operation(pending_events) and commit it.

    Domain errors roll back and propagate unchanged. Contention rolls
    back, waits and re-runs the operation against fresh rows; once
    max_attempts is exhausted ConcurrencyConflict is raised.
    """
    attempts = max_attempts or settings.LEDGER_MAX_RETRIES
    attempt = 0

    while True:
        attempt += 1
        pending: List[DomainEvent] = []
        try:
            result = await operation(pending)
            await db.commit()
        except StockflowError:
            await db.rollback()
            raise
        except (StaleDataError, OperationalError) as e:
            await db.rollback()
            if not is_contention_error(e):
                raise
            if attempt >= attempts:
                logger.warning(f"{label} gave up after {attempt} attempts: {e}")
                raise ConcurrencyConflict(
                    f"{label} could not complete because of concurrent updates",
                    details={"attempts": attempt},
                ) from e
            logger.warning(f"{label} hit row contention (attempt {attempt}/{attempts}), retrying")
            await asyncio.sleep(settings.LEDGER_RETRY_BACKOFF_SECONDS * attempt)
            continue
        except Exception:
            await db.rollback()
            raise

        if pending and events is not None:
            await events.publish(pending)
        return result

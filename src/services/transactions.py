"""Unit-of-work boundary shared by the lifecycle services."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.errors import LifecycleError, TransactionAborted

logger = logging.getLogger(__name__)


@asynccontextmanager
async def atomic(session: AsyncSession, operation: str) -> AsyncIterator[None]:
    """
    Commit everything done inside the block, or nothing.

    Domain errors roll back and propagate unchanged.  Driver-level failures
    (serialization conflicts, deadlocks, lost connections) roll back and
    surface as ``TransactionAborted`` so callers can retry from scratch.
    """
    try:
        yield
        await session.commit()
    except LifecycleError:
        await session.rollback()
        raise
    except DBAPIError as exc:
        await session.rollback()
        logger.warning("Transaction aborted during %s: %s", operation, exc.orig)
        raise TransactionAborted(operation) from exc
    except Exception:
        await session.rollback()
        raise

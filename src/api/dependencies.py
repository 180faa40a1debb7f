"""FastAPI dependency injection helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.schemas import OBJECT_ID_PATTERN
from src.domain.enums import ActorRole
from src.infrastructure.database import async_session_factory
from src.infrastructure.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)

_OBJECT_ID = re.compile(OBJECT_ID_PATTERN)
_dispatcher = LoggingNotificationDispatcher()


@dataclass(frozen=True)
class Actor:
    id: str
    role: ActorRole


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; roll back anything left open on error."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Identity is asserted by the gateway in ``X-User-Id`` / ``X-User-Role``."""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing actor headers")
    if not _OBJECT_ID.match(x_user_id):
        raise HTTPException(status_code=401, detail="Malformed X-User-Id")
    try:
        role = ActorRole(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown X-User-Role")
    return Actor(id=x_user_id, role=role)


def require_role(*roles: ActorRole):
    async def _check(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"Requires role: {', '.join(r.value for r in roles)}",
            )
        return actor

    return _check


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher

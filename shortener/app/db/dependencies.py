"""Database dependencies for FastAPI dependency injection.

Usage:
    from shortener.app.db.dependencies import SessionDep

    @router.get("/items")
    async def get_items(session: SessionDep):
        result = await session.execute(select(Item))
        return result.scalars().all()
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.app.db.async_session import get_db

SessionDep = Annotated[AsyncSession, Depends(get_db)]

__all__ = ["SessionDep"]

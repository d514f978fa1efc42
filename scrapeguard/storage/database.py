"""
ScrapeGuard — Security Event Log (async SQLAlchemy via aiosqlite).

Stores bans, challenges and verification outcomes for later review.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import Column, DateTime, Float, Integer, String, Text, func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from scrapeguard.config import settings

logger = logging.getLogger("scrapeguard.storage.database")


# ── ORM Base ─────────────────────────────────────────────


class Base(DeclarativeBase):
    pass


# ── Models ───────────────────────────────────────────────


class SecurityEvent(Base):
    """Persisted anti-scraping decision or challenge outcome."""
    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, default=func.now(), nullable=False)
    identity = Column(String(64), nullable=False, index=True)
    action = Column(String(32), nullable=False)  # banned / challenged / challenge_passed / challenge_failed
    score = Column(Float, nullable=True)
    path = Column(String(2048), nullable=True)
    user_agent = Column(Text, nullable=True)
    detail = Column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "identity": self.identity,
            "action": self.action,
            "score": self.score,
            "path": self.path,
            "user_agent": self.user_agent,
            "detail": self.detail,
        }


# ── Recorder ─────────────────────────────────────────────


class EventRecorder:
    """Owns the async engine and writes events best-effort."""

    def __init__(self, database_url: str) -> None:
        self.engine = create_async_engine(database_url, echo=False)
        self.session = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False,
        )

    async def init(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created / verified")

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def record(
        self,
        identity: str,
        action: str,
        score: Optional[float] = None,
        path: str = "",
        user_agent: str = "",
        detail: Optional[str] = None,
    ) -> bool:
        """Persist one event. Never raises."""
        try:
            async with self.session() as session:
                session.add(SecurityEvent(
                    identity=identity,
                    action=action,
                    score=score,
                    path=path,
                    user_agent=user_agent,
                    detail=detail,
                ))
                await session.commit()
            return True
        except Exception:
            logger.debug("Failed to write security event", exc_info=True)
            return False

    async def recent(self, limit: int = 50) -> list[dict]:
        """Return the newest events first."""
        async with self.session() as session:
            result = await session.execute(
                select(SecurityEvent)
                .order_by(SecurityEvent.id.desc())
                .limit(limit)
            )
            return [event.to_dict() for event in result.scalars()]


event_recorder = EventRecorder(settings.database_url)

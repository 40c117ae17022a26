# database/session.py

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Optional

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from sqlalchemy.orm import declarative_base, relationship

from config import settings


logger = logging.getLogger(settings.LOGGER_NAME)

# Setup SQLAlchemy async engine and session maker
async_engine = create_async_engine(settings.DATABASE_URL, echo=False)
AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False)
Base = declarative_base()

# ============= Models =============

class DocumentEntity(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    filename = Column(String, nullable=False)  # The original filename
    text = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow)

    chunks = relationship(
        "ChunkEntity", back_populates="document", cascade="all, delete-orphan", passive_deletes=True
    )

class ChunkEntity(Base):
    __tablename__ = "chunks"
    # Autoincrement sequence gives a stable storage order for ranking ties
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    doc_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    embedding = Column(Text, nullable=True)  # JSON array of floats
    created_at = Column(DateTime, default=datetime.utcnow)

    document = relationship("DocumentEntity", back_populates="chunks")

class ChatMessageEntity(Base):
    __tablename__ = "chat_messages"
    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, nullable=False)
    role = Column(String, nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("ix_chat_messages_session_created", "session_id", "created_at"),)


# ============= Session Factory =============

def create_session_factory(database_url: Optional[str] = None):
    """Build an engine and session maker for a specific database URL."""
    engine = create_async_engine(database_url or settings.DATABASE_URL, echo=False)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a new database session with proper cleanup.

    Ensures rollback on errors and explicit closure. Closing a session also
    discards any uncommitted transaction, so a cancelled caller leaves no rows.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables if they do not exist."""
    engine = engine or async_engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables are ready")

# main.py
"""Application bootstrap: logging, database tables and the wired service"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from config import settings
from services.logger_config import setup_logging
from database.session import async_engine, init_db
from services.factory import get_rag_service
from services.rag_service import RAGService

logger = logging.getLogger(settings.LOGGER_NAME)

@asynccontextmanager
async def lifespan() -> AsyncIterator[RAGService]:
    """Application lifespan manager; yields a ready RAGService."""
    setup_logging()
    logger.info(f"Starting {settings.APP_TITLE} {settings.APP_VERSION}...")

    await init_db()
    logger.info("Database initialized")

    service = get_rag_service()
    logger.info("Services initialized")
    try:
        yield service
    finally:
        await async_engine.dispose()
        logger.info("Application shutdown complete")

# infrastructure/repositories.py
"""Database repository implementations"""
import json
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain import (
    ConversationTurn, Document, DocumentChunk, DocumentStats, Role, StoredChunk,
)
from core.interfaces import IKnowledgeRepository, IMessageRepository
from database.session import ChatMessageEntity, ChunkEntity, DocumentEntity
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

class SQLKnowledgeRepository(IKnowledgeRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, db_doc: Optional[DocumentEntity]) -> Optional[Document]:
        """Converts an SQLAlchemy entity to a domain model."""
        if db_doc is None:
            return None
        return Document(
            id=db_doc.id,  # type: ignore
            filename=db_doc.filename,  # type: ignore
            full_text=db_doc.text or "",  # type: ignore
            created_at=db_doc.created_at,  # type: ignore
        )

    # ----- ingestion (staged, committed by the caller) -----

    async def insert_document(self, document_id: str, filename: str, text: str) -> None:
        self.session.add(DocumentEntity(id=document_id, filename=filename, text=text or ""))

    async def insert_chunk(self, chunk: DocumentChunk) -> None:
        self.session.add(ChunkEntity(
            id=chunk.id,
            doc_id=chunk.doc_id,
            content=chunk.content,
            embedding=json.dumps(chunk.embedding),
        ))

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    # ----- query path -----

    async def list_all_chunks(self) -> List[StoredChunk]:
        result = await self.session.execute(
            select(ChunkEntity.id, ChunkEntity.doc_id, ChunkEntity.content,
                   ChunkEntity.embedding, DocumentEntity.filename)
            .outerjoin(DocumentEntity, DocumentEntity.id == ChunkEntity.doc_id)
            .order_by(ChunkEntity.seq)
        )
        return [
            StoredChunk(id=row[0], doc_id=row[1], content=row[2] or "",
                        embedding=row[3], filename=row[4])
            for row in result.all()
        ]

    # ----- administration -----

    async def list_documents_with_stats(self) -> List[DocumentStats]:
        chunk_counts = (
            select(ChunkEntity.doc_id, func.count(ChunkEntity.seq).label("n"))
            .group_by(ChunkEntity.doc_id)
            .subquery()
        )
        result = await self.session.execute(
            select(DocumentEntity.id, DocumentEntity.filename, DocumentEntity.created_at,
                   func.coalesce(chunk_counts.c.n, 0),
                   func.length(DocumentEntity.text))
            .outerjoin(chunk_counts, chunk_counts.c.doc_id == DocumentEntity.id)
            .order_by(DocumentEntity.created_at.desc())
        )
        return [
            DocumentStats(id=row[0], filename=row[1], created_at=row[2],
                          chunk_count=int(row[3] or 0), text_length=int(row[4] or 0))
            for row in result.all()
        ]

    async def get_document(self, document_id: str) -> Optional[Document]:
        db_doc = await self.session.get(DocumentEntity, document_id)
        return self._to_domain(db_doc)

    async def count_chunks(self, document_id: str) -> int:
        result = await self.session.execute(
            select(func.count(ChunkEntity.seq)).where(ChunkEntity.doc_id == document_id)
        )
        return int(result.scalar_one())

    async def get_chunks_by_document(self, document_id: str) -> List[DocumentChunk]:
        result = await self.session.execute(
            select(ChunkEntity).where(ChunkEntity.doc_id == document_id).order_by(ChunkEntity.seq)
        )
        return [
            DocumentChunk(id=c.id, doc_id=c.doc_id, content=c.content, created_at=c.created_at)
            for c in result.scalars().all()
        ]

    async def delete_chunk(self, chunk_id: str) -> bool:
        result = await self.session.execute(delete(ChunkEntity).where(ChunkEntity.id == chunk_id))
        await self.session.commit()
        return (result.rowcount or 0) > 0

    async def delete_document_cascade(self, document_id: str) -> bool:
        await self.session.execute(delete(ChunkEntity).where(ChunkEntity.doc_id == document_id))
        result = await self.session.execute(
            delete(DocumentEntity).where(DocumentEntity.id == document_id)
        )
        await self.session.commit()
        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info(f"Deleted document {document_id} and its chunks")
        return deleted

class SQLMessageRepository(IMessageRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert_turn(self, session_id: str, role: str, content: str) -> None:
        self.session.add(ChatMessageEntity(session_id=session_id, role=role, content=content))
        await self.session.commit()

    async def get_recent_turns(self, session_id: str,
                               limit: int = settings.HISTORY_LIMIT) -> List[ConversationTurn]:
        """Newest `limit` turns, returned oldest first."""
        if limit <= 0:
            return []
        result = await self.session.execute(
            select(ChatMessageEntity)
            .where(ChatMessageEntity.session_id == session_id)
            .order_by(ChatMessageEntity.id.desc())
            .limit(limit)
        )
        rows = list(result.scalars().all())
        rows.reverse()
        return [
            ConversationTurn(session_id=m.session_id, role=Role(m.role),
                             content=m.content, created_at=m.created_at)
            for m in rows
        ]

    async def clear(self, session_id: str) -> int:
        result = await self.session.execute(
            delete(ChatMessageEntity).where(ChatMessageEntity.session_id == session_id)
        )
        await self.session.commit()
        removed = result.rowcount or 0
        logger.info(f"Cleared {removed} chat turn(s) for session '{session_id}'")
        return removed


def make_chunk_source(session_factory):
    """Coroutine function reading every chunk through a fresh session."""
    async def load_chunks():
        async with session_factory() as session:
            return await SQLKnowledgeRepository(session).list_all_chunks()
    return load_chunks

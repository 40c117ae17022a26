# core/interfaces.py
"""Core interfaces for the retrieval and synthesis pipeline"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from core.domain import (
    ChatCompletion, ConversationTurn, Document, DocumentChunk, DocumentStats,
    RetrievalResult, StoredChunk, Tier,
)

# ============= Text Extraction Interface =============
class ITextExtractor(ABC):
    """Turns a stored file into sanitized plain text."""

    @abstractmethod
    async def extract(self, file_path: str, filename: Optional[str] = None) -> str:
        """
        Extract and sanitize text. Returns "" when the file cannot be read;
        a failure for one document never aborts ingestion.
        """
        pass

# ============= Embedding Service Interface =============
class IEmbeddingService(ABC):
    """Interface for embedding generation"""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed one text. Empty text yields []. Raises EmbeddingError."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed texts in order. Raises EmbeddingError on the first failure."""
        pass

# ============= Repository Interfaces =============
class IKnowledgeRepository(ABC):
    """
    Persistence for documents and their chunks.

    insert_* stage rows in the current transaction; nothing is visible to
    readers until commit().
    """

    @abstractmethod
    async def insert_document(self, document_id: str, filename: str, text: str) -> None:
        pass

    @abstractmethod
    async def insert_chunk(self, chunk: DocumentChunk) -> None:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass

    @abstractmethod
    async def list_all_chunks(self) -> List[StoredChunk]:
        """All chunks in storage order, joined with their document filename."""
        pass

    @abstractmethod
    async def list_documents_with_stats(self) -> List[DocumentStats]:
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    async def count_chunks(self, document_id: str) -> int:
        pass

    @abstractmethod
    async def get_chunks_by_document(self, document_id: str) -> List[DocumentChunk]:
        """Chunks of one document, oldest first, without embeddings."""
        pass

    @abstractmethod
    async def delete_chunk(self, chunk_id: str) -> bool:
        pass

    @abstractmethod
    async def delete_document_cascade(self, document_id: str) -> bool:
        """Delete a document and all of its chunks."""
        pass

class IMessageRepository(ABC):
    """Interface for the per-session chat log"""

    @abstractmethod
    async def insert_turn(self, session_id: str, role: str, content: str) -> None:
        pass

    @abstractmethod
    async def get_recent_turns(self, session_id: str, limit: int = 10) -> List[ConversationTurn]:
        """The most recent `limit` turns, in chronological order."""
        pass

    @abstractmethod
    async def clear(self, session_id: str) -> int:
        """Delete a session's turns; returns the number removed."""
        pass

# ============= Language Model Interface =============
class IChatModel(ABC):
    """Chat-completion provider"""

    @abstractmethod
    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
    ) -> ChatCompletion:
        """Raises LLMServiceError on transport or provider failure."""
        pass

    @abstractmethod
    async def describe_image(self, image_path: str, prompt: str) -> str:
        """Describe an image with a vision-capable model."""
        pass

# ============= Search Tier Interface =============
class ISearchTier(ABC):
    """One source of retrieval results in the fallback chain."""

    tier: Tier
    display_name: str

    @abstractmethod
    def is_configured(self) -> bool:
        """Unconfigured tiers are skipped, not failed."""
        pass

    @abstractmethod
    async def search(self, query: str) -> List[RetrievalResult]:
        """Raises SearchTierError on failure."""
        pass

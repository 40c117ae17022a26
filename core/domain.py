# core/domain.py
"""Shared enumerations and domain models used across the application."""
from enum import Enum

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional

# ============= Enums =============

class ErrorCode(str, Enum):
    """Error codes for user-facing error messages."""
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    NO_TEXT_FOUND = "NO_TEXT_FOUND"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    SEARCH_FAILED = "SEARCH_FAILED"
    RELEVANCE_CHECK_FAILED = "RELEVANCE_CHECK_FAILED"
    SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"
    PROCESSING_FAILED = "PROCESSING_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"


class ProcessingStatus(str, Enum):
    """Document ingestion pipeline stages."""
    PENDING = "pending"
    EXTRACTING_TEXT = "extracting_text"
    CHUNKING = "chunking"
    GENERATING_EMBEDDINGS = "generating_embeddings"
    STORING = "storing"
    COMPLETED = "completed"
    FAILED = "failed"


class Tier(str, Enum):
    """Search tiers, in the order they are consulted."""
    LOCAL = "local"
    SPECIALIZED = "specialized"
    WEB = "web"
    DIRECT = "direct"


class Role(str, Enum):
    """Conversation turn author."""
    USER = "user"
    ASSISTANT = "assistant"


# ============= Domain Models =============

@dataclass
class Document:
    """An ingested source file."""
    id: str
    filename: str
    full_text: str
    created_at: Optional[datetime] = None

@dataclass
class DocumentChunk:
    """A contiguous slice of a document's text with its embedding."""
    id: str
    doc_id: str
    content: str
    embedding: List[float] = field(default_factory=list)
    created_at: Optional[datetime] = None

@dataclass
class StoredChunk:
    """Chunk row as read back for ranking; embedding is still serialized."""
    id: str
    doc_id: str
    content: str
    embedding: Optional[str]
    filename: Optional[str] = None

@dataclass
class DocumentStats:
    """Document summary for administrative listings."""
    id: str
    filename: str
    created_at: Optional[datetime]
    chunk_count: int
    text_length: int = 0

@dataclass
class ConversationTurn:
    """One message in a session's chat log."""
    session_id: str
    role: Role
    content: str
    created_at: Optional[datetime] = None

@dataclass
class RetrievalResult:
    """A scored snippet returned by any search tier."""
    snippet: str
    source_label: str
    score: float

@dataclass
class SearchDecision:
    """Outcome of the planning call: search with a query, or answer directly."""
    invoke_search: bool
    query: Optional[str] = None
    direct_answer: str = ""

@dataclass
class TierOutcome:
    """Terminal state of the tier fallback."""
    tier: Tier
    results: List[RetrievalResult]
    answer: str
    search_skipped: bool = False

@dataclass
class SourceEntry:
    """One entry of the final, renumbered source list."""
    number: int
    original_index: int
    title: str
    preview: str
    score: float = 0.0

@dataclass
class CitationResult:
    """Answer text with renumbered markers plus its source list."""
    final_text: str
    sources: List[SourceEntry] = field(default_factory=list)

@dataclass
class SolveRequest:
    """A user question with optional auxiliary attachments."""
    question: str
    session_id: str = "default"
    image_path: Optional[str] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None

@dataclass
class SolveResponse:
    """Successful answer to a SolveRequest."""
    answer: str
    sources: List[SourceEntry]
    tier: Tier
    search_skipped: bool = False
    query: Optional[str] = None
    error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [s.__dict__.copy() for s in self.sources],
            "tier": self.tier.value,
            "search_skipped": self.search_skipped,
            "query": self.query,
            "error": self.error,
        }

@dataclass
class ErrorResponse:
    """Structured failure of a SolveRequest; never carries a partial answer."""
    message: str
    error_code: ErrorCode
    sources: List[SourceEntry] = field(default_factory=list)
    error: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "message": self.message,
            "error_code": self.error_code.value,
            "sources": [],
        }

@dataclass
class IngestionResult:
    """Summary of one ingested file."""
    document_id: str
    filename: str
    chunk_count: int
    text_length: int

@dataclass
class ChatCompletion:
    """First choice of a chat-completion response."""
    content: str
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    function_call: Optional[Dict[str, Any]] = None

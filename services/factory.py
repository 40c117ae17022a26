# services/factory.py
from typing import Callable, List, Optional

from config import settings
from core.interfaces import IChatModel, IEmbeddingService, ISearchTier
from database.session import get_session
from infrastructure.document_processors import TextExtractor
from infrastructure.embedding_services import RateLimiter, YoudaoEmbeddingService
from infrastructure.repositories import make_chunk_source
from infrastructure.search_tiers import LocalKnowledgeTier, SpecializedDatabaseTier, WebSearchTier
from infrastructure.vector_stores import SimilarityRanker
from services.answer_synthesizer import AnswerSynthesizer
from services.citation_manager import CitationManager
from services.llm_service import LLMService
from services.query_planner import QueryPlanner
from services.rag_service import RAGService
from services.relevance_gate import RelevanceGate
from services.tier_orchestrator import TierOrchestrator

# One gate per process: every embedding call shares the provider's QPS ceiling
_rate_limiter: Optional[RateLimiter] = None

# Provider functions for each component
def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(settings.EMBED_MIN_INTERVAL)
    return _rate_limiter

def get_embedding_service() -> IEmbeddingService:
    """Create embedding service based on configuration."""
    return YoudaoEmbeddingService(rate_limiter=get_rate_limiter())

def get_chat_model() -> IChatModel:
    return LLMService()

def get_local_tier(embedding_service: IEmbeddingService,
                   session_factory: Callable = get_session) -> LocalKnowledgeTier:
    return LocalKnowledgeTier(
        embedding_service=embedding_service,
        chunk_source=make_chunk_source(session_factory),
        ranker=SimilarityRanker(settings.SNIPPET_MAX_CHARS),
        top_k=settings.TOP_K,
    )

def get_search_tiers(local_tier: LocalKnowledgeTier) -> List[ISearchTier]:
    """Tiers in the order they are consulted."""
    return [local_tier, SpecializedDatabaseTier(), WebSearchTier()]

def get_rag_service(session_factory: Callable = get_session) -> RAGService:
    """
    Wire the full pipeline from settings.

    Pass a different session factory to point the service at another database.
    """
    embedding_service = get_embedding_service()
    chat_model = get_chat_model()
    synthesizer = AnswerSynthesizer(chat_model)
    local_tier = get_local_tier(embedding_service, session_factory)
    orchestrator = TierOrchestrator(
        tiers=get_search_tiers(local_tier),
        relevance_gate=RelevanceGate(chat_model),
        synthesizer=synthesizer,
    )
    return RAGService(
        extractor=TextExtractor(),
        embedding_service=embedding_service,
        chat_model=chat_model,
        planner=QueryPlanner(chat_model),
        synthesizer=synthesizer,
        orchestrator=orchestrator,
        local_tier=local_tier,
        citation_manager=CitationManager(settings.SOURCE_PREVIEW_CHARS),
        session_factory=session_factory,
    )

# services/rag_service.py
import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from core.domain import (
    ConversationTurn, DocumentChunk, ErrorCode, ErrorResponse, IngestionResult,
    ProcessingStatus, RetrievalResult, Role, SolveRequest, SolveResponse,
)
from core.exceptions import LLMServiceError, RAGError, SearchTierError, SynthesisError
from core.interfaces import IChatModel, IEmbeddingService, ITextExtractor
from config import settings
from database.session import get_session
from infrastructure.document_processors import build_file_description, chunk_text
from infrastructure.progress_store import ProgressStore, progress_store
from infrastructure.repositories import SQLKnowledgeRepository, SQLMessageRepository
from infrastructure.search_tiers import LocalKnowledgeTier
from services.answer_synthesizer import AnswerSynthesizer, build_messages
from services.citation_manager import CitationManager
from services.llm_service import image_to_url
from services.query_planner import QueryPlanner
from services.tier_orchestrator import TierOrchestrator

logger = logging.getLogger(settings.LOGGER_NAME)

IMAGE_DESCRIPTION_PROMPT = (
    "Describe this image in detail. Transcribe any text, and describe chemical "
    "structures, reactions, conditions and questions it shows."
)

ProgressCallback = Callable[[int, int, str], Any]


class RAGService:
    """
    Entry point for ingestion, question answering and corpus administration.

    Ingestion embeds every chunk before anything is written, then stores the
    document and its chunks in one transaction: a failed or cancelled
    ingestion leaves no rows behind.
    """

    def __init__(
        self,
        extractor: ITextExtractor,
        embedding_service: IEmbeddingService,
        chat_model: IChatModel,
        planner: QueryPlanner,
        synthesizer: AnswerSynthesizer,
        orchestrator: TierOrchestrator,
        local_tier: LocalKnowledgeTier,
        citation_manager: Optional[CitationManager] = None,
        session_factory: Callable = get_session,
        progress: Optional[ProgressStore] = None,
        history_limit: int = settings.HISTORY_LIMIT,
    ):
        self.extractor = extractor
        self.embedding_service = embedding_service
        self.chat_model = chat_model
        self.planner = planner
        self.synthesizer = synthesizer
        self.orchestrator = orchestrator
        self.local_tier = local_tier
        self.citation_manager = citation_manager or CitationManager()
        self.session_factory = session_factory
        self.progress = progress or progress_store
        self.history_limit = history_limit

    # ============= Ingestion =============

    async def ingest_file(
        self,
        file_path: str,
        filename: str,
        on_progress: Optional[ProgressCallback] = None,
        chunk_size: int = settings.CHUNK_SIZE,
        overlap: int = settings.CHUNK_OVERLAP,
    ) -> IngestionResult:
        """
        Extract, chunk, embed and store one file.

        Raises EmbeddingError when any chunk cannot be embedded; nothing is
        persisted in that case.
        """
        document_id = str(uuid.uuid4())
        self.progress.start(document_id, filename)
        try:
            self.progress.update(document_id, ProcessingStatus.EXTRACTING_TEXT, 5, "Extracting text")
            text = await self.extractor.extract(file_path, filename)
            if not text:
                logger.warning(f"[{ErrorCode.NO_TEXT_FOUND.value}] No text extracted from '{filename}'")

            self.progress.update(document_id, ProcessingStatus.CHUNKING, 10, "Splitting text")
            pieces = chunk_text(text, chunk_size, overlap)
            total = len(pieces)

            chunks: List[DocumentChunk] = []
            for done, piece in enumerate(pieces, start=1):
                chunk = DocumentChunk(id=str(uuid.uuid4()), doc_id=document_id, content=piece,
                                      embedding=await self.embedding_service.embed(piece))
                chunks.append(chunk)
                self.progress.update(
                    document_id, ProcessingStatus.GENERATING_EMBEDDINGS,
                    10 + int(80 * done / total), f"Embedded {done}/{total} chunks",
                )
                if on_progress:
                    on_progress(total, done, chunk.id)

            self.progress.update(document_id, ProcessingStatus.STORING, 95, "Saving")
            async with self.session_factory() as session:
                repo = SQLKnowledgeRepository(session)
                await repo.insert_document(document_id, filename, text)
                for chunk in chunks:
                    await repo.insert_chunk(chunk)
                await repo.commit()
        except RAGError as e:
            logger.error(f"Ingestion of '{filename}' failed: {e}")
            self.progress.fail(document_id, str(e), e.error_code)
            raise
        except asyncio.CancelledError:
            logger.warning(f"Ingestion of '{filename}' was cancelled; nothing was stored")
            self.progress.fail(document_id, "Cancelled", ErrorCode.PROCESSING_FAILED)
            raise
        except Exception as e:
            logger.error(f"Ingestion of '{filename}' failed unexpectedly: {e}", exc_info=True)
            self.progress.fail(document_id, str(e), ErrorCode.PROCESSING_FAILED)
            raise

        self.progress.complete(document_id)
        logger.info(f"Ingested '{filename}' as {document_id} with {len(chunks)} chunk(s)")
        return IngestionResult(document_id=document_id, filename=filename,
                               chunk_count=len(chunks), text_length=len(text))

    def get_ingestion_progress(self, document_id: str) -> Optional[Dict]:
        return self.progress.get(document_id)

    # ============= Query =============

    async def search(self, query: str, top_k: Any = settings.TOP_K) -> List[RetrievalResult]:
        """Rank the local corpus for a query, without relevance checks or synthesis."""
        if not query or not query.strip():
            return []
        try:
            return await self.local_tier.search(query.strip(), top_k=top_k)
        except SearchTierError as e:
            logger.error(f"Search failed: {e}")
            return []

    async def _describe_image(self, image_path: str) -> str:
        try:
            return await self.chat_model.describe_image(image_path, IMAGE_DESCRIPTION_PROMPT)
        except (LLMServiceError, OSError) as e:
            logger.warning(f"Image recognition failed, continuing without it: {e}")
            return ""

    async def _image_url(self, image_path: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(image_to_url, image_path)
        except OSError as e:
            logger.warning(f"Could not read image '{image_path}': {e}")
            return None

    async def solve(self, request: SolveRequest) -> Union[SolveResponse, ErrorResponse]:
        """
        Answer a question through the planning call and the tier fallback.

        Returns an ErrorResponse, with no partial answer and nothing stored,
        when the answer cannot be generated.
        """
        question = (request.question or "").strip()
        if not question and not request.image_path and not request.file_path:
            return ErrorResponse(message="Missing question, image or file",
                                 error_code=ErrorCode.INVALID_REQUEST)

        session_id = request.session_id or settings.DEFAULT_SESSION_ID
        history = await self.get_history(session_id)

        image_description = ""
        image_url = None
        if request.image_path:
            image_description = await self._describe_image(request.image_path)
            image_url = await self._image_url(request.image_path)

        file_content = ""
        file_description = ""
        if request.file_path:
            file_name = request.file_name or request.file_path
            file_content = await self.extractor.extract(request.file_path, file_name)
            file_description = build_file_description(file_name, file_content)

        full_question = "\n".join(p for p in (question, image_description, file_description) if p)

        try:
            messages = build_messages(self.synthesizer.system_prompt, history, None,
                                      question, file_content, image_url)
            try:
                decision = await self.planner.plan(messages)
            except LLMServiceError as e:
                raise SynthesisError(f"Planning call failed: {e.message}") from e

            outcome = await self.orchestrator.run(
                decision,
                question=question,
                history=history,
                auxiliary=file_content or None,
                image_url=image_url,
                image_description=image_description or None,
                file_description=file_description or None,
            )
        except SynthesisError as e:
            logger.error(f"Solve failed: {e}")
            return ErrorResponse(message=e.message, error_code=e.error_code)

        citations = self.citation_manager.extract_and_renumber(outcome.answer, outcome.results)

        async with self.session_factory() as session:
            messages_repo = SQLMessageRepository(session)
            await messages_repo.insert_turn(session_id, Role.USER.value, full_question)
            await messages_repo.insert_turn(session_id, Role.ASSISTANT.value, citations.final_text)

        logger.info(
            f"Answered via {outcome.tier.value} tier with {len(citations.sources)} cited source(s)"
        )
        return SolveResponse(
            answer=citations.final_text,
            sources=citations.sources,
            tier=outcome.tier,
            search_skipped=outcome.search_skipped,
            query=question,
        )

    # ============= Chat history =============

    async def get_history(self, session_id: str = settings.DEFAULT_SESSION_ID) -> List[ConversationTurn]:
        async with self.session_factory() as session:
            return await SQLMessageRepository(session).get_recent_turns(session_id, self.history_limit)

    async def clear_history(self, session_id: str = settings.DEFAULT_SESSION_ID) -> int:
        async with self.session_factory() as session:
            return await SQLMessageRepository(session).clear(session_id)

    # ============= Administration =============

    async def list_documents(self) -> List[Dict[str, Any]]:
        async with self.session_factory() as session:
            stats = await SQLKnowledgeRepository(session).list_documents_with_stats()
        return [s.__dict__.copy() for s in stats]

    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as session:
            repo = SQLKnowledgeRepository(session)
            document = await repo.get_document(document_id)
            if document is None:
                return None
            chunk_count = await repo.count_chunks(document_id)
        return {
            "id": document.id,
            "filename": document.filename,
            "created_at": document.created_at,
            "text_length": len(document.full_text),
            "chunk_count": chunk_count,
        }

    async def get_document_chunks(self, document_id: str) -> List[DocumentChunk]:
        async with self.session_factory() as session:
            return await SQLKnowledgeRepository(session).get_chunks_by_document(document_id)

    async def delete_chunk(self, chunk_id: str) -> bool:
        async with self.session_factory() as session:
            return await SQLKnowledgeRepository(session).delete_chunk(chunk_id)

    async def delete_document(self, document_id: str) -> bool:
        async with self.session_factory() as session:
            return await SQLKnowledgeRepository(session).delete_document_cascade(document_id)

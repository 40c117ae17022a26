# infrastructure/search_tiers.py
"""Search tiers consulted by the fallback orchestrator.

Every tier normalizes its hits to RetrievalResult and reports failure with
SearchTierError; the orchestrator treats that as an empty result set.
"""
import asyncio
import json
import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional

import requests

from core.domain import RetrievalResult, StoredChunk, Tier
from core.exceptions import EmbeddingError, SearchTierError
from core.interfaces import IEmbeddingService, ISearchTier
from config import settings
from infrastructure.vector_stores import SimilarityRanker

logger = logging.getLogger(settings.LOGGER_NAME)


def _first_text(item: Dict[str, Any], keys: List[str]) -> Optional[str]:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _as_score(value: Any, default: float) -> float:
    """Provider score clamped into [-1, 1]; unusable values give `default`."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(score):
        return default
    return max(-1.0, min(1.0, score))


def _result(snippet: str, label: str, score: float, max_chars: int) -> RetrievalResult:
    return RetrievalResult(snippet=(snippet or "")[:max_chars], source_label=label, score=score)


# ============= Local knowledge base =============

class LocalKnowledgeTier(ISearchTier):
    """Embeds the query and ranks every stored chunk."""

    tier = Tier.LOCAL
    display_name = "local knowledge base"

    def __init__(
        self,
        embedding_service: IEmbeddingService,
        chunk_source: Callable[[], Awaitable[List[StoredChunk]]],
        ranker: Optional[SimilarityRanker] = None,
        top_k: int = settings.TOP_K,
    ):
        self.embedding_service = embedding_service
        self.chunk_source = chunk_source
        self.ranker = ranker or SimilarityRanker()
        self.top_k = top_k

    def is_configured(self) -> bool:
        return True

    async def search(self, query: str, top_k: Optional[int] = None) -> List[RetrievalResult]:
        try:
            query_vector = await self.embedding_service.embed(query)
        except EmbeddingError as e:
            raise SearchTierError(f"Query embedding failed: {e}", tier=self.tier.value) from e
        if not query_vector:
            return []
        rows = await self.chunk_source()
        results = self.ranker.rank(query_vector, rows, top_k if top_k is not None else self.top_k)
        logger.info(f"Local search ranked {len(rows)} chunk(s), kept {len(results)}")
        return results


# ============= Specialized database =============

class SpecializedDatabaseTier(ISearchTier):
    """Domain database reached with a bearer key (Reaxys-style JSON API)."""

    tier = Tier.SPECIALIZED
    display_name = "specialized database"

    def __init__(
        self,
        api_key: str = settings.SPECIALIZED_API_KEY,
        url: str = settings.SPECIALIZED_API_URL,
        timeout: int = settings.SEARCH_TIMEOUT,
        max_results: int = settings.SEARCH_MAX_RESULTS,
        session: Optional[requests.Session] = None,
        snippet_max_chars: int = settings.SNIPPET_MAX_CHARS,
    ):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self.max_results = max_results
        self.session = session or requests.Session()
        self.snippet_max_chars = snippet_max_chars

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _request(self, query: str) -> Any:
        try:
            response = self.session.post(
                self.url,
                json={"query": query},
                headers={"Authorization": f"Bearer {self.api_key}",
                         "Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise SearchTierError(f"Specialized search failed: {e}", tier=self.tier.value) from e

    def normalize(self, data: Any) -> List[RetrievalResult]:
        items: List[Any] = []
        if isinstance(data, dict):
            for key in ("results", "data", "hits"):
                if isinstance(data.get(key), list):
                    items = data[key]
                    break
        elif isinstance(data, list):
            items = data

        results = []
        for i, item in enumerate(items[:self.max_results], start=1):
            if isinstance(item, dict):
                snippet = _first_text(item, ["text", "content", "abstract"]) or json.dumps(item, ensure_ascii=False)
                label = _first_text(item, ["source", "title"]) or f"Specialized result {i}"
                score = _as_score(item.get("score", item.get("relevance")), 1.0)
            else:
                snippet, label, score = str(item), f"Specialized result {i}", 1.0
            results.append(_result(snippet, label, score, self.snippet_max_chars))
        return results

    async def search(self, query: str) -> List[RetrievalResult]:
        data = await asyncio.to_thread(self._request, query)
        results = self.normalize(data)
        logger.info(f"Specialized search returned {len(results)} result(s)")
        return results


# ============= Web search =============

class WebSearchTier(ISearchTier):
    """Tavily search with a Serper fallback."""

    tier = Tier.WEB
    display_name = "web search"

    def __init__(
        self,
        tavily_api_key: str = settings.TAVILY_API_KEY,
        serper_api_key: str = settings.SERPER_API_KEY,
        tavily_url: str = settings.TAVILY_API_URL,
        serper_url: str = settings.SERPER_API_URL,
        timeout: int = settings.SEARCH_TIMEOUT,
        max_results: int = settings.SEARCH_MAX_RESULTS,
        session: Optional[requests.Session] = None,
        snippet_max_chars: int = settings.SNIPPET_MAX_CHARS,
    ):
        self.tavily_api_key = tavily_api_key
        self.serper_api_key = serper_api_key
        self.tavily_url = tavily_url
        self.serper_url = serper_url
        self.timeout = timeout
        self.max_results = max_results
        self.session = session or requests.Session()
        self.snippet_max_chars = snippet_max_chars

    def is_configured(self) -> bool:
        return bool(self.tavily_api_key or self.serper_api_key)

    def _post(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        response = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _tavily(self, query: str) -> List[RetrievalResult]:
        data = self._post(self.tavily_url, {
            "api_key": self.tavily_api_key,
            "query": query,
            "search_depth": "basic",
            "max_results": self.max_results,
            "include_answer": True,
        }) or {}
        results: List[RetrievalResult] = []
        if isinstance(data.get("answer"), str) and data["answer"].strip():
            results.append(_result(data["answer"], "Web search summary", 1.0, self.snippet_max_chars))
        for item in data.get("results") or []:
            if not isinstance(item, dict):
                continue
            results.append(_result(
                item.get("content") or item.get("snippet") or "",
                item.get("title") or item.get("url") or "Web result",
                _as_score(item.get("score"), 0.8),
                self.snippet_max_chars,
            ))
        return results[:self.max_results]

    def _serper(self, query: str) -> List[RetrievalResult]:
        data = self._post(
            self.serper_url,
            {"q": query, "num": self.max_results},
            headers={"X-API-KEY": self.serper_api_key, "Content-Type": "application/json"},
        ) or {}
        results = []
        for i, item in enumerate(data.get("organic") or []):
            if not isinstance(item, dict):
                continue
            position = item.get("position")
            if not isinstance(position, (int, float)) or position < 1:
                position = i + 1
            results.append(_result(
                item.get("snippet") or "",
                item.get("title") or item.get("link") or "Web result",
                _as_score(1.0 / (position + 1), 0.5),
                self.snippet_max_chars,
            ))
        return results[:self.max_results]

    def _search_sync(self, query: str) -> List[RetrievalResult]:
        if self.tavily_api_key:
            try:
                return self._tavily(query)
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning(f"Tavily search failed, trying Serper: {e}")
        if self.serper_api_key:
            try:
                return self._serper(query)
            except (requests.exceptions.RequestException, ValueError) as e:
                raise SearchTierError(f"Serper search failed: {e}", tier=self.tier.value) from e
        raise SearchTierError("All web search providers failed", tier=self.tier.value)

    async def search(self, query: str) -> List[RetrievalResult]:
        results = await asyncio.to_thread(self._search_sync, query)
        logger.info(f"Web search returned {len(results)} result(s)")
        return results

# infrastructure/vector_stores.py
"""Brute-force cosine ranking over the stored chunk embeddings"""
import json
import logging
import math
from typing import Any, List, Optional, Sequence

import numpy as np

from core.domain import RetrievalResult, StoredChunk
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

COSINE_EPSILON = 1e-8


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b| + eps), clipped to [-1, 1]."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb)) + COSINE_EPSILON
    score = float(np.dot(va, vb)) / denom
    return max(-1.0, min(1.0, score))


def clamp_top_k(value: Any, fallback: int = settings.TOP_K,
                minimum: int = 1, maximum: int = settings.TOP_K_MAX) -> int:
    """Floor numeric input into [minimum, maximum]; anything else gives fallback."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(number):
        return fallback
    if math.isinf(number):
        return maximum if number > 0 else minimum
    return max(minimum, min(maximum, math.floor(number)))


def parse_embedding(raw: Any, expected_dim: Optional[int] = None) -> Optional[List[float]]:
    """
    Decode a stored embedding. Returns None for missing, unparseable,
    non-numeric, empty or wrong-dimension vectors.
    """
    if raw is None:
        return None
    value = raw
    if isinstance(raw, (str, bytes)):
        try:
            value = json.loads(raw)
        except (ValueError, TypeError):
            return None
    if not isinstance(value, list) or not value:
        return None
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value):
        return None
    if expected_dim is not None and len(value) != expected_dim:
        return None
    return [float(v) for v in value]


class SimilarityRanker:
    """Linear scan over all chunks, ranked by cosine similarity."""

    def __init__(self, snippet_max_chars: int = settings.SNIPPET_MAX_CHARS):
        self.snippet_max_chars = snippet_max_chars

    def _label(self, row: StoredChunk) -> str:
        return row.filename or f"Document {row.doc_id}"

    def rank(self, query_vector: Sequence[float], rows: Sequence[StoredChunk],
             top_k: Any = settings.TOP_K) -> List[RetrievalResult]:
        """
        Score every row against the query and keep the best `top_k`.

        Sorting is stable, so equal scores keep storage order. Rows whose
        embedding cannot be decoded are skipped, never scored as zero.
        """
        k = clamp_top_k(top_k)
        if not query_vector:
            return []
        dim = len(query_vector)
        query = np.asarray(query_vector, dtype=np.float64)

        scored = []
        skipped = 0
        for row in rows:
            vector = parse_embedding(row.embedding, expected_dim=dim)
            if vector is None:
                skipped += 1
                continue
            scored.append((cosine_similarity(query, vector), row))

        if skipped:
            logger.debug(f"Skipped {skipped} chunk(s) with unusable embeddings")

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            RetrievalResult(
                snippet=row.content[:self.snippet_max_chars],
                source_label=self._label(row),
                score=score,
            )
            for score, row in scored[:k]
        ]

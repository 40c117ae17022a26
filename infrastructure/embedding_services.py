# infrastructure/embedding_services.py
"""Remote text embedding with a shared rate-limit gate and retry/backoff.

All outbound embedding calls in the process pass through one RateLimiter: a
call may start only after MIN_INTERVAL has elapsed since the previous call
returned, and calls are serialized while they hold the gate. Retries back off
exponentially with jitter outside the gate so other callers are not blocked
by one request's wait.

Cancellation is plain asyncio task cancellation. The blocking HTTP request
runs in a worker thread; if the awaiting task is cancelled the thread finishes
on its own and its result is discarded.
"""
import asyncio
import hashlib
import logging
import random
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional

import requests

from core.exceptions import EmbeddingError
from core.interfaces import IEmbeddingService
from config import settings
from infrastructure.document_processors import sanitize_text

logger = logging.getLogger(settings.LOGGER_NAME)

# Provider error codes worth retrying (rate limit, balance, transient server error)
RETRYABLE_PROVIDER_CODES = frozenset({"411", "412", "500"})
QUOTA_PROVIDER_CODE = "411"


class RateLimiter:
    """
    Minimum-interval gate shared by every caller.

    The last-call timestamp is private; the only way in is `slot()`, which
    holds the lock for the whole read-wait-call-stamp sequence.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call: Optional[float] = None

    @asynccontextmanager
    async def slot(self):
        async with self._lock:
            if self._last_call is not None:
                wait = self._min_interval - (self._clock() - self._last_call)
                if wait > 0:
                    logger.debug(f"Rate limiter waiting {wait:.3f}s")
                    await self._sleep(wait)
            try:
                yield
            finally:
                self._last_call = self._clock()


def compute_backoff(
    attempt: int,
    base: float = settings.EMBED_BACKOFF_BASE,
    max_backoff: float = settings.EMBED_MAX_BACKOFF,
    jitter_max: float = settings.EMBED_JITTER_MAX,
    quota_penalty: float = settings.EMBED_QUOTA_PENALTY,
    quota: bool = False,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Delay in seconds before retrying after failed attempt number `attempt` (1-based):
    min(max_backoff, base * 2^(attempt-1)) + uniform(0, jitter_max), plus
    quota_penalty for quota/balance errors.
    """
    rng = rng or random
    exponent = max(0, attempt - 1)
    # Cap the exponent so large attempt numbers cannot overflow
    delay = min(max_backoff, base * (2 ** min(exponent, 32)))
    if jitter_max > 0:
        delay += rng.uniform(0, jitter_max)
    if quota:
        delay += quota_penalty
    return delay


def pick_embedding_vector(item: Any) -> Optional[List[float]]:
    """
    Accept the shapes providers return: a bare list, or a dict holding the
    list under 'embedding', 'vector' or 'values'.
    """
    if item is None:
        return None
    if isinstance(item, list):
        return item
    if isinstance(item, dict):
        for key in ("embedding", "vector", "values"):
            if isinstance(item.get(key), list):
                return item[key]
    return None


def _is_numeric_vector(vec: Any) -> bool:
    return (
        isinstance(vec, list)
        and len(vec) > 0
        and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in vec)
    )


def build_sign_input(text: str) -> str:
    """Long texts are signed by head + length + tail."""
    if len(text) > 20:
        return f"{text[:10]}{len(text)}{text[-10:]}"
    return text


class _TransientEmbeddingFailure(Exception):
    """Retryable failure of a single attempt."""

    def __init__(self, message: str, data: Any = None, quota: bool = False):
        super().__init__(message)
        self.data = data
        self.quota = quota


class YoudaoEmbeddingService(IEmbeddingService):
    """
    Embedding client for a signed form-post provider (Youdao text embedding).

    Every attempt goes through the shared RateLimiter. HTTP 429, 5xx,
    timeouts, provider codes 411/412/500 and malformed vectors are retried up
    to `max_retries` attempts; anything else fails immediately.
    """

    def __init__(
        self,
        app_key: str = settings.EMBED_APP_KEY,
        app_secret: str = settings.EMBED_APP_SECRET,
        url: str = settings.EMBED_URL,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[requests.Session] = None,
        timeout: float = settings.EMBED_TIMEOUT,
        max_retries: int = settings.EMBED_MAX_RETRIES,
        backoff_base: float = settings.EMBED_BACKOFF_BASE,
        max_backoff: float = settings.EMBED_MAX_BACKOFF,
        jitter_max: float = settings.EMBED_JITTER_MAX,
        quota_penalty: float = settings.EMBED_QUOTA_PENALTY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.app_key = app_key
        self.app_secret = app_secret
        self.url = url
        self.rate_limiter = rate_limiter or RateLimiter(settings.EMBED_MIN_INTERVAL)
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.max_backoff = max_backoff
        self.jitter_max = jitter_max
        self.quota_penalty = quota_penalty
        self._sleep = sleep
        self._rng = rng or random.Random()

    def _signed_params(self, text: str) -> Dict[str, str]:
        curtime = str(int(time.time()))
        salt = uuid.uuid4().hex
        sign_str = self.app_key + build_sign_input(text) + salt + curtime + self.app_secret
        sign = hashlib.sha256(sign_str.encode("utf-8")).hexdigest()
        return {
            "appKey": self.app_key,
            "curtime": curtime,
            "q": text,
            "salt": salt,
            "sign": sign,
            "signType": "v3",
        }

    def _post(self, text: str) -> List[float]:
        """One blocking attempt. Raises _TransientEmbeddingFailure or EmbeddingError."""
        try:
            response = self.session.post(
                self.url,
                data=self._signed_params(text),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise _TransientEmbeddingFailure(f"request timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise EmbeddingError(f"Embedding request failed: {e}", attempts=1) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        status = response.status_code
        if status == 429 or status >= 500:
            raise _TransientEmbeddingFailure(f"HTTP {status}", data=data)
        if status >= 400:
            raise EmbeddingError(f"Embedding provider returned HTTP {status}", attempts=1,
                                 last_response=data)

        if not isinstance(data, dict):
            raise _TransientEmbeddingFailure("response body is not a JSON object", data=data)

        code = str(data.get("errorCode", "0"))
        if code != "0":
            if code in RETRYABLE_PROVIDER_CODES:
                raise _TransientEmbeddingFailure(
                    f"provider error code {code}", data=data, quota=(code == QUOTA_PROVIDER_CODE)
                )
            raise EmbeddingError(f"Embedding provider error code {code}", attempts=1,
                                 last_response=data)

        embedding_list = (data.get("result") or {}).get("embeddingList") or []
        vector = pick_embedding_vector(embedding_list[0]) if embedding_list else None
        if not _is_numeric_vector(vector):
            raise _TransientEmbeddingFailure("response carried no numeric embedding", data=data)
        return [float(v) for v in vector]

    async def embed(self, text: str) -> List[float]:
        clean = sanitize_text(text)
        if not clean:
            return []
        if not self.app_key or not self.app_secret:
            raise EmbeddingError("Embedding credentials are not configured")

        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.rate_limiter.slot():
                    return await asyncio.to_thread(self._post, clean)
            except EmbeddingError as e:
                e.attempts = attempt
                logger.error(f"Embedding failed on attempt {attempt}: {e}")
                raise
            except _TransientEmbeddingFailure as e:
                if attempt >= self.max_retries:
                    logger.error(f"Embedding failed after {attempt} attempts: {e}")
                    raise EmbeddingError(
                        f"Embedding failed after {attempt} attempts: {e}",
                        attempts=attempt,
                        last_response=e.data,
                    ) from e
                delay = compute_backoff(
                    attempt,
                    base=self.backoff_base,
                    max_backoff=self.max_backoff,
                    jitter_max=self.jitter_max,
                    quota_penalty=self.quota_penalty,
                    quota=e.quota,
                    rng=self._rng,
                )
                logger.warning(f"Embedding attempt {attempt} failed ({e}); retrying in {delay:.2f}s")
                await self._sleep(delay)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for text in texts:
            vectors.append(await self.embed(text))
        return vectors

"""
Embedding Service

Wraps an injected embedding provider with retries, deadline handling and
an in-process cache. Callers treat ``EmbeddingError`` as a signal to fall
back to lexical matching.
"""

import hashlib
from collections import OrderedDict
from typing import Protocol, Sequence

import numpy as np
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mlo.config import Settings, get_settings
from mlo.context import TenantContext
from mlo.errors import EmbeddingError, OperationTimeoutError

logger = structlog.get_logger(__name__)


class EmbeddingProvider(Protocol):
    """External text -> vector capability."""

    async def embed(self, text: str) -> list[float]:
        ...


def cosine_similarity(embedding1: Sequence[float], embedding2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two embeddings.

    Returns 0.0 for zero vectors or mismatched dimensions.
    """
    vec1 = np.asarray(embedding1, dtype=float)
    vec2 = np.asarray(embedding2, dtype=float)
    if vec1.shape != vec2.shape or vec1.size == 0:
        return 0.0

    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(vec1, vec2) / (norm1 * norm2))


class EmbeddingService:
    """
    Service for generating text embeddings through an injected provider.

    Features:
    - Automatic retry with exponential backoff
    - Deadline/cancellation via TenantContext
    - Bounded in-process cache keyed by text hash
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        settings: Settings | None = None,
        cache_size: int = 1024,
    ):
        self.settings = settings or get_settings()
        self._provider = provider
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._cache_size = cache_size

    async def embed(self, ctx: TenantContext, text: str) -> list[float]:
        """
        Generate embedding for a single text.

        Raises:
            EmbeddingError: provider failed on every attempt or returned garbage
            OperationTimeoutError: deadline expired or context cancelled
        """
        text_hash = self._hash_text(text)
        cached = self._cache.get(text_hash)
        if cached is not None:
            self._cache.move_to_end(text_hash)
            logger.debug("Embedding cache hit", text_hash=text_hash[:8])
            return cached

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.retry_attempts),
                wait=wait_exponential(
                    multiplier=self.settings.retry_wait_multiplier,
                    min=self.settings.retry_wait_min,
                    max=self.settings.retry_wait_max,
                ),
                retry=retry_if_not_exception_type(OperationTimeoutError),
                reraise=True,
            ):
                with attempt:
                    embedding = await ctx.guard(self._provider.embed(text))
        except OperationTimeoutError:
            raise
        except Exception as e:
            logger.warning(
                "Embedding generation failed",
                tenant_id=ctx.tenant_id,
                text_hash=text_hash[:8],
                error=str(e),
            )
            raise EmbeddingError(f"Embedding provider failed: {e}") from e

        vector = [float(x) for x in embedding]
        if not vector or not np.all(np.isfinite(vector)):
            raise EmbeddingError("Embedding provider returned an empty or non-finite vector")

        self._remember(text_hash, vector)
        logger.debug("Embedding generated", dimensions=len(vector))
        return vector

    async def embed_batch(self, ctx: TenantContext, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts sequentially, reusing cached vectors."""
        return [await self.embed(ctx, text) for text in texts]

    def similarity(self, embedding1: Sequence[float], embedding2: Sequence[float]) -> float:
        return cosine_similarity(embedding1, embedding2)

    def _remember(self, text_hash: str, vector: list[float]) -> None:
        self._cache[text_hash] = vector
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    def _hash_text(self, text: str) -> str:
        """Generate hash for text (for caching/logging)."""
        return hashlib.sha256(text.encode()).hexdigest()

"""
Retrieval stage: indexing on the way in, top-K matching for recall.
"""

import structlog
from pydantic import Field

from mlo.context import TenantContext
from mlo.engine.fields import text_of
from mlo.engine.stages.base import ProcessorOptions, ProcessResult, StageProcessor
from mlo.errors import EmbeddingError
from mlo.models.memory import MemoryItem
from mlo.models.profile import StageName
from mlo.services.embedding import cosine_similarity

logger = structlog.get_logger(__name__)


class IndexerOptions(ProcessorOptions):
    max_terms: int = Field(default=32, ge=1)
    embed: bool = True


class DirectMemoryIndexer(StageProcessor):
    """
    Writes ``metadata.index``: the item's core terms and, when an embedding
    service is available, its vector. An embedding failure leaves the index
    lexical-only.
    """

    stage = StageName.RETRIEVAL
    component = "indexing"
    variant = "DirectMemoryIndexer"
    options_model = IndexerOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        text = text_of(item.data)
        index: dict = {"terms": sorted(self.scorer.core_terms(text))[: self.options.max_terms]}

        service = self.deps.embedding_service
        if self.options.embed and service is not None and text.strip():
            try:
                index["embedding"] = await service.embed(ctx, text)
            except EmbeddingError as e:
                logger.warning("Indexing without embedding", item_id=item.id, error=str(e))

        return item.with_metadata(index=index)


class MatcherOptions(ProcessorOptions):
    top_k: int = Field(default=5, ge=1)
    similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    use_embeddings: bool = True


class TopKMatcher(StageProcessor):
    """
    Scores candidates against a query.

    score = (w_lex * lexical + w_emb * cosine) / (w_lex + w_emb) when
    embeddings are usable, otherwise the lexical overlap alone.
    """

    stage = StageName.RETRIEVAL
    component = "matching"
    variant = "TopKMatcher"
    options_model = MatcherOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        return item

    async def find_matches(
        self,
        ctx: TenantContext,
        query: str,
        pool: list[MemoryItem],
        top_k: int | None = None,
        similarity_threshold: float | None = None,
    ) -> list[tuple[MemoryItem, float]]:
        """
        Rank ``pool`` against ``query``.

        Returns:
            (item, score) pairs, best first, ties broken by creation order
        """
        top_k = top_k or self.options.top_k
        threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else self.options.similarity_threshold
        )

        query_vector = await self._query_vector(ctx, query) if pool else None

        scored: list[tuple[MemoryItem, float]] = []
        for candidate in pool:
            ctx.check()
            text = text_of(candidate.data)
            lexical = self.scorer.term_overlap(query, text)
            score = lexical

            if query_vector is not None:
                vector = await self._candidate_vector(ctx, candidate, text)
                if vector is not None:
                    w_lex = self.settings.matching_lexical_weight
                    w_emb = self.settings.matching_embedding_weight
                    semantic = max(0.0, cosine_similarity(query_vector, vector))
                    score = (w_lex * lexical + w_emb * semantic) / (w_lex + w_emb)

            if score >= threshold:
                scored.append((candidate, score))

        scored.sort(key=lambda pair: (-pair[1], pair[0].sort_key()))
        return scored[:top_k]

    async def _query_vector(self, ctx: TenantContext, query: str) -> list[float] | None:
        service = self.deps.embedding_service
        if not self.options.use_embeddings or service is None:
            return None
        try:
            return await service.embed(ctx, query)
        except EmbeddingError as e:
            logger.warning("Matching falls back to lexical overlap", tenant_id=ctx.tenant_id, error=str(e))
            return None

    async def _candidate_vector(
        self,
        ctx: TenantContext,
        candidate: MemoryItem,
        text: str,
    ) -> list[float] | None:
        index = candidate.metadata.get("index") or {}
        if index.get("embedding"):
            return index["embedding"]
        if not text.strip():
            return None
        try:
            return await self.deps.embedding_service.embed(ctx, text)
        except EmbeddingError:
            return None

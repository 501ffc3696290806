"""
Recognition

Answers "have we seen this before?" for a candidate payload:

1. Gather the tenant's candidate memories: records aligned to the same
   entities, records carrying any of the tags, or the most recent records
   when neither is given
2. Score every candidate with the ConfidenceScorer, best first
3. Above the gray band it is a match, below it is not; inside the band
   the LLM decides when one is configured
"""

from typing import Any

import structlog

from mlo.context import TenantContext
from mlo.engine.confidence_scorer import ConfidenceScorer
from mlo.engine.entity_aligner import EntityAligner
from mlo.engine.fields import get_path
from mlo.errors import MLOError, StageProcessingError
from mlo.models.memory import MemoryItem
from mlo.models.recognition import RecognitionOptions, RecognitionResult
from mlo.services.llm import LLMService
from mlo.storage.base import PersistenceBackend
from mlo.storage.entity_repo import EntityRepository

logger = structlog.get_logger(__name__)

RECOGNITION_STAGE = "recognition"


class RecognitionService:
    """Tenant-scoped duplicate recognition over stored memories."""

    def __init__(
        self,
        store: PersistenceBackend,
        aligner: EntityAligner,
        confidence_scorer: ConfidenceScorer,
        llm_service: LLMService | None = None,
    ):
        self.store = store
        self.aligner = aligner
        self.entity_repository: EntityRepository = aligner.repository
        self.confidence_scorer = confidence_scorer
        self.llm_service = llm_service

    async def recognize(
        self,
        ctx: TenantContext,
        candidate: Any,
        options: RecognitionOptions | None = None,
    ) -> RecognitionResult:
        options = options or RecognitionOptions()

        candidates = await self.find_candidates(ctx, candidate, options)
        if not candidates:
            logger.debug("No recognition candidates", tenant_id=ctx.tenant_id)
            return RecognitionResult(
                is_match=False,
                confidence=0.0,
                explanation="No candidate memories found",
            )

        scored: list[tuple[float, MemoryItem]] = []
        for item in candidates:
            score = await self.confidence_scorer.calculate_confidence(
                ctx, candidate, item.data, options.entities
            )
            scored.append((score, item))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        confidence, best = scored[0]

        result = await self._decide(ctx, candidate, confidence, best, options)
        logger.info(
            "Recognition completed",
            tenant_id=ctx.tenant_id,
            candidates=len(candidates),
            confidence=round(confidence, 3),
            is_match=result.is_match,
            used_llm=result.used_llm,
        )
        return result

    async def _decide(
        self,
        ctx: TenantContext,
        candidate: Any,
        confidence: float,
        best: MemoryItem,
        options: RecognitionOptions,
    ) -> RecognitionResult:
        matched = {"matching_key": best.id, "matching_data": best.data}

        if confidence >= options.upper_bound:
            return RecognitionResult(
                is_match=True,
                confidence=confidence,
                explanation=f"High confidence match ({confidence:.3f})",
                **matched,
            )
        if confidence < options.lower_bound:
            return RecognitionResult(
                is_match=False,
                confidence=confidence,
                explanation=f"Low confidence ({confidence:.3f})",
            )

        if self.llm_service is None:
            is_match = confidence >= options.threshold
            return RecognitionResult(
                is_match=is_match,
                confidence=confidence,
                explanation=f"Gray band decided by threshold {options.threshold:.2f}",
                **(matched if is_match else {}),
            )

        verdict = await self.llm_service.disambiguate(
            ctx,
            candidate,
            best.data,
            confidence,
            options.threshold,
            options.custom_prompt,
        )
        return RecognitionResult(
            is_match=verdict.is_match,
            confidence=verdict.confidence,
            used_llm=True,
            explanation=verdict.reasoning,
            **(matched if verdict.is_match else {}),
        )

    async def find_candidates(
        self,
        ctx: TenantContext,
        candidate: Any,
        options: RecognitionOptions,
    ) -> list[MemoryItem]:
        """Candidate memories, deduplicated by key and capped at ``options.limit``."""
        keys: list[str] = []

        for path, entity_type in options.entities.items():
            value = get_path(candidate, path)
            if isinstance(value, bool) or not isinstance(value, (str, int, float)) or not str(value).strip():
                continue
            match = await self.aligner.lookup(ctx, str(value), entity_type)
            if match is None:
                continue
            records = await self.entity_repository.get_alignments_for_entity(
                ctx.tenant_id, match.entity.entity_id
            )
            keys.extend(r.memory_key for r in records)

        items: dict[str, MemoryItem] = {}
        if keys:
            for record in await self._store_call(ctx, self.store.query(ctx.tenant_id, {"keys": keys})):
                self._collect(ctx, items, record)

        # Any tag qualifies a record.
        for tag in options.tags:
            for record in await self._store_call(ctx, self.store.query(ctx.tenant_id, {"tags": [tag]})):
                self._collect(ctx, items, record)

        if not options.entities and not options.tags:
            records = await self._store_call(ctx, self.store.query(ctx.tenant_id))
            for record in records:
                self._collect(ctx, items, record)
            recent = sorted(items.values(), key=MemoryItem.sort_key, reverse=True)
            return recent[: options.limit]

        return list(items.values())[: options.limit]

    @staticmethod
    def _collect(ctx: TenantContext, items: dict[str, MemoryItem], record: dict[str, Any]) -> None:
        item = MemoryItem.from_record(record)
        if item.tenant_id == ctx.tenant_id and item.id not in items:
            items[item.id] = item

    async def _store_call(self, ctx: TenantContext, awaitable):
        try:
            return await ctx.guard(awaitable)
        except MLOError:
            raise
        except Exception as e:
            logger.error("Store call failed", tenant_id=ctx.tenant_id, error=str(e))
            raise StageProcessingError(RECOGNITION_STAGE, "store", e) from e

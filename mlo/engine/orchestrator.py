"""
Memory Lifecycle Orchestrator

Drives ``remember``/``recall`` through the profile-selected stages:

    acquisition -> encoding -> derivation -> retrieval -> neuralMemory -> utilization

remember():
1. Build a MemoryItem for the tenant
2. Thread it through every stage (fan-out and drops handled per stage)
3. Align mapped entity fields of every surviving item
4. Build associations (when neural memory is enabled)
5. Persist items, then associations

Writes happen only after the whole pipeline succeeded. A failure while
persisting restores every key, alignment, entity and alias touched by
the call.
"""

import threading
import time
from datetime import datetime
from typing import Any

import structlog

from mlo.config import Settings, get_settings
from mlo.context import TenantContext
from mlo.engine.confidence_scorer import ConfidenceScorer
from mlo.engine.entity_aligner import EntityAligner
from mlo.engine.fields import get_path
from mlo.engine.profiles import MemoryProfileRegistry, get_profile_registry
from mlo.engine.recognition import RecognitionService
from mlo.engine.similarity import SimilarityScorer
from mlo.engine.stages.base import Stage, StageDependencies
from mlo.engine.stages.factory import build_stages
from mlo.errors import MLOError, StageProcessingError, ValidationError
from mlo.models.association import Association
from mlo.models.entity import AlignmentChanges, AlignmentRecord, EntityAlignment, EntityField
from mlo.models.memory import (
    ContextResult,
    MemoryItem,
    MemoryMetadata,
    PipelineOutcome,
    RecallOptions,
    RememberOptions,
    RememberResult,
    utcnow,
)
from mlo.models.profile import STAGE_ORDER, MemoryProfile, StageName
from mlo.models.recognition import RecognitionOptions, RecognitionResult
from mlo.services.embedding import EmbeddingService
from mlo.services.llm import LLMService
from mlo.storage.association_repo import AssociationRepository
from mlo.storage.base import PersistenceBackend
from mlo.storage.entity_repo import EntityRepository
from mlo.storage.memory_store import InMemoryStore

logger = structlog.get_logger(__name__)

PERSISTENCE_STAGE = "persistence"


class MemoryLifecycleOrchestrator:
    """
    Tenant-aware memory pipeline.

    Stage configuration is fixed at construction; concurrent calls share
    processors but no mutable per-call state.
    """

    def __init__(
        self,
        profile: str | MemoryProfile | None = None,
        store: PersistenceBackend | None = None,
        entity_repository: EntityRepository | None = None,
        association_repository: AssociationRepository | None = None,
        embedding_service: EmbeddingService | None = None,
        llm_service: LLMService | None = None,
        settings: Settings | None = None,
        registry: MemoryProfileRegistry | None = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or get_profile_registry()

        if profile is None:
            profile = self.settings.default_profile
        self.profile = self.registry.get(profile) if isinstance(profile, str) else profile

        self.store = store if store is not None else InMemoryStore()
        self.entity_repository = entity_repository or EntityRepository()
        self.association_repository = association_repository or AssociationRepository()

        self.scorer = SimilarityScorer()
        self.aligner = EntityAligner(
            self.entity_repository,
            embedding_service=embedding_service,
            scorer=self.scorer,
            settings=self.settings,
        )
        self.confidence_scorer = ConfidenceScorer(self.aligner, self.scorer, self.settings)
        self.recognition = RecognitionService(
            self.store,
            self.aligner,
            self.confidence_scorer,
            llm_service=llm_service,
        )

        deps = StageDependencies(
            settings=self.settings,
            scorer=self.scorer,
            embedding_service=embedding_service,
            llm_service=llm_service,
        )
        self.stages: dict[StageName, Stage] = build_stages(self.profile, deps)

        self._counters_lock = threading.Lock()
        self._counters = {
            "remember_calls": 0,
            "recall_calls": 0,
            "items_persisted": 0,
            "items_dropped": 0,
            "errors": 0,
        }

        logger.info(
            "Memory lifecycle orchestrator initialized",
            profile=self.profile.name,
            embeddings=embedding_service is not None,
        )

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def run_pipeline(self, ctx: TenantContext, item: MemoryItem) -> PipelineOutcome:
        """Thread one item through every stage in order."""
        start = time.perf_counter()
        current = [item]
        dropped = []

        for name in STAGE_ORDER:
            stage = self.stages[name]
            survivors: list[MemoryItem] = []
            for entry in current:
                items, drops = await stage.process(ctx, entry)
                survivors.extend(items)
                dropped.extend(drops)
            current = survivors
            if not current:
                break

        return PipelineOutcome(
            items=current,
            dropped=dropped,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    # =========================================================================
    # Remember
    # =========================================================================

    async def remember(
        self,
        ctx: TenantContext,
        key: str,
        value: Any,
        options: RememberOptions | None = None,
    ) -> RememberResult | None:
        """
        Process and store a memory.

        Args:
            ctx: Tenant context (deadline/cancellation honored throughout)
            key: Memory key; fan-out children get ``"{key}:{n}"``
            value: Payload
            options: Type, persistence, tags and entity mappings

        Returns:
            RememberResult, or None when every item was dropped

        Raises:
            ValidationError: missing tenant, key or value
            StageProcessingError: a stage or the persistence step failed
            AlignmentError: strict alignment found no entity
            OperationTimeoutError: deadline expired or cancelled
        """
        start = time.perf_counter()
        ctx = self._resolve_context(ctx)
        options = options or RememberOptions()
        self._count("remember_calls")

        if not isinstance(key, str) or not key.strip():
            raise ValidationError("memory key is required")
        if value is None:
            raise ValidationError("memory value is required")

        item = MemoryItem(
            id=key,
            tenant_id=ctx.tenant_id,
            data=value,
            metadata=MemoryMetadata(
                tags=tuple(options.tags),
                memory_type=options.type,
                references=tuple(options.entities),
            ),
        )

        try:
            outcome = await self.run_pipeline(ctx, item)
        except MLOError:
            self._count("errors")
            raise

        self._count("items_dropped", len(outcome.dropped))
        if not outcome.items:
            logger.info(
                "Memory dropped by pipeline",
                tenant_id=ctx.tenant_id,
                key=key,
                stage=outcome.dropped[0].stage_name if outcome.dropped else None,
                reason=outcome.dropped[0].reason if outcome.dropped else None,
            )
            return None

        if not options.persist:
            return RememberResult(items=outcome.items, persisted=False, dropped=outcome.dropped)

        try:
            alignments, associations = await self._persist(ctx, outcome.items, options)
        except MLOError:
            self._count("errors")
            raise

        self._count("items_persisted", len(outcome.items))
        logger.info(
            "Memory remembered",
            tenant_id=ctx.tenant_id,
            key=key,
            items=len(outcome.items),
            dropped=len(outcome.dropped),
            associations=associations,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return RememberResult(
            items=outcome.items,
            persisted=True,
            alignments=alignments,
            associations_created=associations,
            dropped=outcome.dropped,
        )

    async def _persist(
        self,
        ctx: TenantContext,
        items: list[MemoryItem],
        options: RememberOptions,
    ) -> tuple[dict[str, dict[str, EntityAlignment | None]], int]:
        previous_records: dict[str, dict[str, Any] | None] = {}
        previous_alignments: dict[str, list[AlignmentRecord]] = {}
        alignments: dict[str, dict[str, EntityAlignment | None]] = {}
        changes = AlignmentChanges()

        try:
            for item in items:
                previous_alignments[item.id] = await self.entity_repository.get_alignments_for_memory(
                    ctx.tenant_id, item.id
                )
                if options.entities:
                    alignments[item.id] = await self._align_item(ctx, item, options, changes)

            associations = await self._build_associations(ctx, items)

            for item in items:
                previous_records[item.id] = await ctx.guard(self.store.get(ctx.tenant_id, item.id))
                await ctx.guard(
                    self.store.set(ctx.tenant_id, item.id, item.to_record(), list(item.metadata.tags))
                )

            stored = await self.association_repository.create_many(associations)
        except Exception as e:
            logger.error(
                "Persisting memory failed, rolling back",
                tenant_id=ctx.tenant_id,
                keys=[i.id for i in items],
                error=str(e),
            )
            await self._rollback(ctx, previous_records, previous_alignments, changes)
            if isinstance(e, MLOError):
                raise
            raise StageProcessingError(PERSISTENCE_STAGE, "store", e) from e

        return alignments, len(stored)

    async def _align_item(
        self,
        ctx: TenantContext,
        item: MemoryItem,
        options: RememberOptions,
        changes: AlignmentChanges,
    ) -> dict[str, EntityAlignment | None]:
        fields = []
        result: dict[str, EntityAlignment | None] = {}

        for path, entity_type in options.entities.items():
            value = get_path(item.data, path)
            if isinstance(value, bool) or not isinstance(value, (str, int, float)) or not str(value).strip():
                logger.debug("Entity field missing", item_id=item.id, field_path=path)
                result[path] = None
                continue
            fields.append(EntityField(field_path=path, value=str(value), entity_type=entity_type))

        if fields:
            result.update(
                await self.aligner.align_entity_fields(
                    ctx,
                    item.id,
                    fields,
                    auto_create=options.auto_create,
                    strict=options.strict_alignment,
                    changes=changes,
                )
            )
        return result

    async def _build_associations(
        self,
        ctx: TenantContext,
        items: list[MemoryItem],
    ) -> list[Association]:
        stage = self.stages[StageName.NEURAL_MEMORY]
        associative = stage.component("associative")
        if not stage.enabled or associative is None or not associative.options.enabled:
            return []

        item_ids = {i.id for i in items}
        records = await ctx.guard(self.store.query(ctx.tenant_id))
        related = [
            MemoryItem.from_record(r) for r in records
            if r.get("id") not in item_ids and r.get("tenant_id") == ctx.tenant_id
        ]
        return associative.build_associations(items, related)

    async def _rollback(
        self,
        ctx: TenantContext,
        previous_records: dict[str, dict[str, Any] | None],
        previous_alignments: dict[str, list[AlignmentRecord]],
        changes: AlignmentChanges,
    ) -> None:
        # Not guarded: compensation must run even after cancellation.
        for key, record in previous_records.items():
            try:
                if record is None:
                    await self.store.delete(ctx.tenant_id, key)
                else:
                    tags = (record.get("metadata") or {}).get("tags")
                    await self.store.set(ctx.tenant_id, key, record, tags)
            except Exception as e:
                logger.error("Rollback of stored key failed", tenant_id=ctx.tenant_id, key=key, error=str(e))

        for memory_key, records in previous_alignments.items():
            await self.entity_repository.delete_alignments_for_memory(ctx.tenant_id, memory_key)
            for record in records:
                await self.entity_repository.upsert_alignment(
                    record.tenant_id, record.memory_key, record.field_path, record.alignment
                )

        if changes:
            await self.aligner.revert(ctx, changes)

    # =========================================================================
    # Recall
    # =========================================================================

    async def recall(
        self,
        ctx: TenantContext,
        query: str,
        options: RecallOptions | None = None,
    ) -> list[MemoryItem]:
        """
        Find the tenant's memories matching a query.

        Returns:
            Items best match first, each with ``metadata.match_score``
        """
        start = time.perf_counter()
        ctx = self._resolve_context(ctx)
        options = options or RecallOptions()
        self._count("recall_calls")

        if not isinstance(query, str) or not query.strip():
            raise ValidationError("recall query is required")

        try:
            candidates = await self._candidates(ctx, options)

            matcher = self.stages[StageName.RETRIEVAL].component("matching")
            try:
                matches = await matcher.find_matches(
                    ctx,
                    query,
                    candidates,
                    top_k=options.limit,
                    similarity_threshold=options.similarity_threshold,
                )
            except MLOError:
                raise
            except Exception as e:
                raise StageProcessingError(StageName.RETRIEVAL.value, matcher.component, e) from e
        except MLOError:
            self._count("errors")
            raise

        results = [item.with_metadata(match_score=score) for item, score in matches]
        logger.info(
            "Memories recalled",
            tenant_id=ctx.tenant_id,
            candidates=len(candidates),
            results=len(results),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return results

    async def _candidates(self, ctx: TenantContext, options: RecallOptions) -> list[MemoryItem]:
        query_filter: dict[str, Any] = {}
        if options.tags:
            query_filter["tags"] = list(options.tags)
        if options.type is not None:
            query_filter["memory_type"] = options.type.value

        records = await self._store_call(ctx, self.store.query(ctx.tenant_id, query_filter))

        now = utcnow()
        candidates = []
        for record in records:
            item = MemoryItem.from_record(record)
            if item.tenant_id != ctx.tenant_id:
                continue
            if not options.include_expired and self._is_expired(item, now):
                continue
            candidates.append(item)
        return candidates

    async def build_context(
        self,
        ctx: TenantContext,
        query: str,
        options: RecallOptions | None = None,
        max_length: int | None = None,
    ) -> ContextResult:
        """Recall and assemble a bounded context string for RAG."""
        items = await self.recall(ctx, query, options)
        rag = self.stages[StageName.UTILIZATION].component("rag")
        return rag.generate_context(query, items, max_length)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def purge_expired(self, ctx: TenantContext) -> int:
        """Delete the tenant's items whose forgetting TTL has passed."""
        ctx = self._resolve_context(ctx)
        records = await self._store_call(ctx, self.store.query(ctx.tenant_id))

        now = utcnow()
        purged = 0
        for record in records:
            item = MemoryItem.from_record(record)
            if not self._is_expired(item, now):
                continue
            await self._store_call(ctx, self.store.delete(ctx.tenant_id, item.id))
            await self.entity_repository.delete_alignments_for_memory(ctx.tenant_id, item.id)
            await self.association_repository.delete_for_item(ctx.tenant_id, item.id)
            purged += 1

        if purged:
            logger.info("Expired memories purged", tenant_id=ctx.tenant_id, count=purged)
        return purged

    async def cleanup_orphaned_alignments(self, ctx: TenantContext) -> int:
        ctx = self._resolve_context(ctx)
        return await self.aligner.cleanup_orphaned_alignments(ctx, self.store)

    async def calculate_confidence(
        self,
        ctx: TenantContext,
        candidate: Any,
        existing: Any,
        entity_mappings: dict[str, str] | None = None,
    ) -> float:
        ctx = self._resolve_context(ctx)
        return await self.confidence_scorer.calculate_confidence(ctx, candidate, existing, entity_mappings)

    async def recognize(
        self,
        ctx: TenantContext,
        candidate: Any,
        options: RecognitionOptions | None = None,
    ) -> RecognitionResult:
        """Find the stored memory that ``candidate`` most likely duplicates."""
        ctx = self._resolve_context(ctx)
        try:
            return await self.recognition.recognize(ctx, candidate, options)
        except MLOError:
            self._count("errors")
            raise

    def get_metrics(self) -> dict[str, Any]:
        with self._counters_lock:
            counters = dict(self._counters)
        return {
            "profile": self.profile.name,
            **counters,
            "stages": {name.value: stage.get_metrics() for name, stage in self.stages.items()},
        }

    def is_stage_enabled(self, stage: StageName | str) -> bool:
        try:
            return self.stages[StageName(stage)].enabled
        except ValueError as e:
            raise ValidationError(f"Unknown stage '{stage}'") from e

    def get_profile(self) -> MemoryProfile:
        return self.profile.model_copy(deep=True)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _resolve_context(self, ctx: TenantContext) -> TenantContext:
        if not isinstance(ctx, TenantContext):
            raise ValidationError("a TenantContext is required")
        if ctx.deadline is None and self.settings.default_deadline_seconds is not None:
            return TenantContext.with_timeout(
                ctx.tenant_id,
                self.settings.default_deadline_seconds,
                ctx.cancellation,
            )
        return ctx

    async def _store_call(self, ctx: TenantContext, awaitable):
        try:
            return await ctx.guard(awaitable)
        except MLOError:
            raise
        except Exception as e:
            logger.error("Store call failed", tenant_id=ctx.tenant_id, error=str(e))
            raise StageProcessingError(PERSISTENCE_STAGE, "store", e) from e

    @staticmethod
    def _is_expired(item: MemoryItem, now: datetime) -> bool:
        if item.metadata.get("marked_for_deletion"):
            return True
        forget_at = item.metadata.get("forget_at")
        if not forget_at:
            return False
        if isinstance(forget_at, str):
            forget_at = datetime.fromisoformat(forget_at)
        return forget_at <= now

    def _count(self, name: str, amount: int = 1) -> None:
        with self._counters_lock:
            self._counters[name] += amount

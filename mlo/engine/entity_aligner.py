"""
Entity Aligner

Resolves raw field values to canonical entities through a progressive
cascade, stopping at the first tier that hits:

1. Exact: identity key equals an entity's canonical name
2. Alias: identity key equals a registered alias
3. Lexical: core-term Jaccard >= lexical threshold
4. Embedding: cosine >= embedding threshold (only with an embedding service)

The tier fixes the confidence label (exact/alias: high, lexical: medium,
embedding: low). Any non-exact hit registers the raw value as an alias of
the matched entity; the write is reported in ``EntityMatch.alias_added``.
"""

import structlog

from mlo.config import Settings, get_settings
from mlo.context import TenantContext
from mlo.engine.fields import has_path
from mlo.engine.similarity import SimilarityScorer
from mlo.errors import AlignmentError, ConflictError, EmbeddingError, MLOError, ValidationError
from mlo.models.entity import (
    AlignmentChanges,
    AlignmentConfidence,
    Entity,
    EntityAlignment,
    EntityField,
    EntityMatch,
    EntityStats,
    MatchTier,
)
from mlo.services.embedding import EmbeddingService, cosine_similarity
from mlo.storage.base import PersistenceBackend
from mlo.storage.entity_repo import EntityRepository

logger = structlog.get_logger(__name__)


class EntityAligner:
    """
    Canonical entity resolution and alignment bookkeeping.

    Concurrent creation of the same (tenant, type, canonical name) is
    serialized on a per-key lock; the loser of a race resolves to the
    winner's entity.
    """

    def __init__(
        self,
        repository: EntityRepository,
        embedding_service: EmbeddingService | None = None,
        scorer: SimilarityScorer | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository
        self.embedding_service = embedding_service
        self.scorer = scorer or SimilarityScorer()

        self.lexical_threshold = self.settings.alignment_lexical_threshold
        self.embedding_threshold = self.settings.alignment_embedding_threshold

    # =========================================================================
    # Alignment
    # =========================================================================

    async def align_entity_fields(
        self,
        ctx: TenantContext,
        memory_key: str,
        fields: list[EntityField],
        auto_create: bool | None = None,
        strict: bool = False,
        changes: AlignmentChanges | None = None,
    ) -> dict[str, EntityAlignment | None]:
        """
        Align each field value and record one alignment per field path.

        Args:
            ctx: Tenant context
            memory_key: Key of the owning memory item
            fields: Values to align with their entity types
            auto_create: Create entities on a cascade miss (defaults to settings)
            strict: Raise instead of resolving a miss to None
            changes: Collects created entities and added aliases for ``revert``

        Returns:
            Field path -> EntityAlignment, or None when nothing matched

        Raises:
            AlignmentError: strict miss, or the cascade itself failed
        """
        results: dict[str, EntityAlignment | None] = {}

        for field in fields:
            try:
                match = await self.resolve(
                    ctx,
                    field.value,
                    field.entity_type,
                    threshold=field.threshold,
                    auto_create=auto_create,
                )
            except MLOError:
                raise
            except Exception as e:
                logger.error(
                    "Entity alignment failed",
                    tenant_id=ctx.tenant_id,
                    field_path=field.field_path,
                    error=str(e),
                )
                raise AlignmentError(
                    f"Alignment of '{field.field_path}' failed: {e}",
                    field_path=field.field_path,
                    value=field.value,
                    entity_type=field.entity_type,
                ) from e

            if match is None:
                if strict:
                    raise AlignmentError(
                        f"No {field.entity_type} entity matches '{field.value}'",
                        field_path=field.field_path,
                        value=field.value,
                        entity_type=field.entity_type,
                    )
                results[field.field_path] = None
                continue

            if changes is not None:
                changes.record(match)
            alignment = EntityAlignment(
                entity_id=match.entity.entity_id,
                canonical_name=match.entity.canonical_name,
                original_value=field.value,
                confidence=match.confidence,
            )
            await self.repository.upsert_alignment(
                ctx.tenant_id, memory_key, field.field_path, alignment
            )
            results[field.field_path] = alignment

        logger.debug(
            "Entity fields aligned",
            tenant_id=ctx.tenant_id,
            memory_key=memory_key,
            aligned=sum(1 for a in results.values() if a is not None),
            unresolved=sum(1 for a in results.values() if a is None),
        )
        return results

    async def resolve(
        self,
        ctx: TenantContext,
        value: str,
        entity_type: str,
        threshold: float | None = None,
        auto_create: bool | None = None,
    ) -> EntityMatch | None:
        """Run the cascade with self-healing and optional creation."""
        self._validate(value, entity_type)
        if auto_create is None:
            auto_create = self.settings.alignment_auto_create

        match = await self._cascade(ctx, value, entity_type, threshold)
        if match is not None:
            return await self._heal(ctx, match, value)
        if not auto_create:
            return None
        return await self._create(ctx, value, entity_type, threshold)

    async def lookup(
        self,
        ctx: TenantContext,
        value: str,
        entity_type: str,
        threshold: float | None = None,
    ) -> EntityMatch | None:
        """Run the cascade without registering aliases or creating entities."""
        self._validate(value, entity_type)
        return await self._cascade(ctx, value, entity_type, threshold)

    async def _cascade(
        self,
        ctx: TenantContext,
        value: str,
        entity_type: str,
        threshold: float | None,
    ) -> EntityMatch | None:
        ctx.check()
        entities = await self.repository.list_by_type(ctx.tenant_id, entity_type)
        if not entities:
            return None

        key = self.scorer.identity_key(value)

        for entity in entities:
            if self.scorer.identity_key(entity.canonical_name) == key:
                return EntityMatch(entity=entity, tier=MatchTier.EXACT)

        for entity in entities:
            if any(self.scorer.identity_key(alias) == key for alias in entity.aliases):
                return EntityMatch(entity=entity, tier=MatchTier.ALIAS)

        lexical_threshold = threshold if threshold is not None else self.lexical_threshold
        best: tuple[Entity, float] | None = None
        for entity in entities:
            names = [entity.canonical_name, *sorted(entity.aliases)]
            score = max(self.scorer.string_similarity(value, name) for name in names)
            if score >= lexical_threshold and (best is None or score > best[1]):
                best = (entity, score)
        if best is not None:
            return EntityMatch(entity=best[0], tier=MatchTier.LEXICAL, similarity=best[1])

        if self.embedding_service is None:
            return None

        try:
            vector = await self.embedding_service.embed(ctx, self.scorer.normalize(value))
        except EmbeddingError as e:
            logger.warning(
                "Embedding tier unavailable, using lexical result",
                tenant_id=ctx.tenant_id,
                entity_type=entity_type,
                error=str(e),
            )
            return None

        best = None
        for entity in entities:
            embedding = entity.embedding
            if embedding is None:
                # Created while the provider was down; backfill on first use.
                try:
                    embedding = await self.embedding_service.embed(ctx, entity.canonical_name)
                except EmbeddingError:
                    continue
                await self.repository.set_embedding(entity.entity_id, ctx.tenant_id, embedding)
            score = cosine_similarity(vector, embedding)
            if score >= self.embedding_threshold and (best is None or score > best[1]):
                best = (entity, score)
        if best is not None:
            return EntityMatch(entity=best[0], tier=MatchTier.EMBEDDING, similarity=best[1])
        return None

    async def _heal(self, ctx: TenantContext, match: EntityMatch, value: str) -> EntityMatch:
        """Register ``value`` as an alias after a non-exact hit."""
        if match.tier == MatchTier.EXACT:
            return match

        added = await self.repository.add_alias(match.entity.entity_id, ctx.tenant_id, value)
        if not added:
            return match

        entity = match.entity.model_copy(update={"aliases": match.entity.aliases | {value}})
        logger.debug(
            "Alias registered",
            tenant_id=ctx.tenant_id,
            entity_id=entity.entity_id,
            alias=value,
            tier=match.tier.value,
        )
        return match.model_copy(update={"entity": entity, "alias_added": value})

    async def _create(
        self,
        ctx: TenantContext,
        value: str,
        entity_type: str,
        threshold: float | None,
    ) -> EntityMatch:
        canonical_name = self.scorer.normalize(value)
        if not canonical_name:
            raise AlignmentError(
                f"Cannot derive a canonical name from '{value}'",
                value=value,
                entity_type=entity_type,
            )

        key = (ctx.tenant_id, entity_type, canonical_name)
        async with self.repository.lock_for(key):
            # Another task may have created a matching entity while we waited.
            match = await self._cascade(ctx, value, entity_type, threshold)
            if match is not None:
                return await self._heal(ctx, match, value)

            entity = Entity(
                tenant_id=ctx.tenant_id,
                entity_type=entity_type,
                canonical_name=canonical_name,
                aliases={value},
            )
            if self.embedding_service is not None:
                try:
                    entity.embedding = await self.embedding_service.embed(ctx, canonical_name)
                except EmbeddingError as e:
                    logger.warning(
                        "Entity created without embedding",
                        tenant_id=ctx.tenant_id,
                        canonical_name=canonical_name,
                        error=str(e),
                    )

            try:
                created = await self.repository.create(entity)
            except ConflictError:
                winner = await self.repository.get_by_name(*key)
                if winner is None:
                    raise
                logger.info(
                    "Entity creation race resolved to existing entity",
                    tenant_id=ctx.tenant_id,
                    entity_id=winner.entity_id,
                )
                healed = await self._heal(
                    ctx, EntityMatch(entity=winner, tier=MatchTier.ALIAS), value
                )
                return healed.model_copy(update={"tier": MatchTier.CREATED})

        return EntityMatch(entity=created, tier=MatchTier.CREATED, created=True)

    @staticmethod
    def _validate(value: str, entity_type: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("entity value must be a non-empty string")
        if not entity_type:
            raise ValidationError("entity_type is required")

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def revert(self, ctx: TenantContext, changes: AlignmentChanges) -> None:
        """
        Undo the entity writes recorded in ``changes``.

        Aliases added to pre-existing entities are removed. Created entities
        are deleted unless an alignment still references them (a concurrent
        call may have matched one in the meantime).
        """
        created = set(changes.created_entity_ids)

        for entity_id, alias in reversed(changes.aliases_added):
            if entity_id not in created:
                await self.repository.remove_alias(entity_id, ctx.tenant_id, alias)

        for entity_id in changes.created_entity_ids:
            if await self.repository.get_alignments_for_entity(ctx.tenant_id, entity_id):
                logger.info(
                    "Created entity kept, still referenced",
                    tenant_id=ctx.tenant_id,
                    entity_id=entity_id,
                )
                continue
            await self.repository.delete(entity_id, ctx.tenant_id)

    async def unlink_entity(self, ctx: TenantContext, memory_key: str, field_path: str) -> bool:
        """Remove one alignment record. Returns False if none existed."""
        removed = await self.repository.delete_alignment(ctx.tenant_id, memory_key, field_path)
        if removed:
            logger.info(
                "Entity unlinked",
                tenant_id=ctx.tenant_id,
                memory_key=memory_key,
                field_path=field_path,
            )
        return removed

    async def force_realign(
        self,
        ctx: TenantContext,
        memory_key: str,
        field_path: str,
        entity_id: str,
        original_value: str | None = None,
    ) -> EntityAlignment:
        """
        Point a field at a chosen entity, overwriting any existing alignment.

        Raises:
            AlignmentError: the target entity does not exist for this tenant
        """
        entity = await self.repository.get_by_id(entity_id, ctx.tenant_id)
        if entity is None:
            raise AlignmentError(
                f"Entity {entity_id} not found for tenant {ctx.tenant_id}",
                field_path=field_path,
            )

        if original_value is None:
            existing = await self.repository.get_alignment(ctx.tenant_id, memory_key, field_path)
            original_value = (
                existing.alignment.original_value if existing else entity.canonical_name
            )

        alignment = EntityAlignment(
            entity_id=entity.entity_id,
            canonical_name=entity.canonical_name,
            original_value=original_value,
            confidence=AlignmentConfidence.HIGH,
        )
        await self.repository.upsert_alignment(ctx.tenant_id, memory_key, field_path, alignment)
        logger.info(
            "Entity realigned",
            tenant_id=ctx.tenant_id,
            memory_key=memory_key,
            field_path=field_path,
            entity_id=entity_id,
        )
        return alignment

    async def get_entity_stats(self, ctx: TenantContext) -> EntityStats:
        return await self.repository.get_entity_stats(ctx.tenant_id)

    async def cleanup_orphaned_alignments(
        self,
        ctx: TenantContext,
        store: PersistenceBackend,
    ) -> int:
        """
        Delete alignments whose item is gone or no longer has the field path.

        Returns:
            Number of alignment records removed
        """
        removed = 0
        for record in await self.repository.list_alignments(ctx.tenant_id):
            stored = await ctx.guard(store.get(ctx.tenant_id, record.memory_key))
            if stored is not None and has_path(stored.get("data"), record.field_path):
                continue
            if await self.repository.delete_alignment(
                ctx.tenant_id, record.memory_key, record.field_path
            ):
                removed += 1

        if removed:
            logger.info("Orphaned alignments removed", tenant_id=ctx.tenant_id, count=removed)
        return removed

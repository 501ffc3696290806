"""
Entity Repository

Data access layer for canonical entities and their field alignments.
Entities are unique per (tenant_id, entity_type, canonical_name); alignments
are unique per (tenant_id, memory_key, field_path).
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager

import structlog

from mlo.errors import ConflictError
from mlo.models.entity import AlignmentRecord, Entity, EntityAlignment, EntityStats
from mlo.models.memory import utcnow

logger = structlog.get_logger(__name__)


class EntityRepository:
    """
    Repository for entities and alignment records.

    Provides:
    - Entity create/read with key uniqueness
    - Alias and embedding updates
    - Per-key creation locks, dropped once no task holds or awaits them
    - Alignment upsert/lookup/delete
    """

    def __init__(self):
        self._entities: dict[str, Entity] = {}
        self._by_key: dict[tuple[str, str, str], str] = {}
        self._alignments: dict[tuple[str, str, str], AlignmentRecord] = {}
        # key -> (lock, number of tasks holding or waiting on it)
        self._creation_locks: dict[tuple[str, str, str], tuple[asyncio.Lock, int]] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # Entities
    # =========================================================================

    @asynccontextmanager
    async def lock_for(self, key: tuple[str, str, str]):
        """Serialize creation of one (tenant, type, canonical name) key."""
        lock, users = self._creation_locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._creation_locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._creation_locks[key]
            if users == 1:
                del self._creation_locks[key]
            else:
                self._creation_locks[key] = (lock, users - 1)

    def pending_locks(self) -> int:
        return len(self._creation_locks)

    async def create(self, entity: Entity) -> Entity:
        """
        Insert a new entity.

        Raises:
            ConflictError: an entity with the same key already exists
        """
        async with self._lock:
            if entity.key in self._by_key:
                raise ConflictError(entity.key)
            stored = entity.model_copy(deep=True)
            self._entities[stored.entity_id] = stored
            self._by_key[stored.key] = stored.entity_id

        logger.info(
            "Entity created",
            tenant_id=entity.tenant_id,
            entity_id=entity.entity_id,
            entity_type=entity.entity_type,
            canonical_name=entity.canonical_name,
        )
        return stored.model_copy(deep=True)

    async def get_by_id(self, entity_id: str, tenant_id: str) -> Entity | None:
        async with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None or entity.tenant_id != tenant_id:
                return None
            return entity.model_copy(deep=True)

    async def get_by_name(
        self,
        tenant_id: str,
        entity_type: str,
        canonical_name: str,
    ) -> Entity | None:
        async with self._lock:
            entity_id = self._by_key.get((tenant_id, entity_type, canonical_name))
            if entity_id is None:
                return None
            return self._entities[entity_id].model_copy(deep=True)

    async def list_by_type(self, tenant_id: str, entity_type: str) -> list[Entity]:
        """All entities of one type for a tenant, oldest first."""
        async with self._lock:
            entities = [
                e.model_copy(deep=True)
                for e in self._entities.values()
                if e.tenant_id == tenant_id and e.entity_type == entity_type
            ]
        return sorted(entities, key=lambda e: e.created_at)

    async def add_alias(self, entity_id: str, tenant_id: str, alias: str) -> bool:
        """Register an alias. Returns False if it was already present."""
        async with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None or entity.tenant_id != tenant_id:
                return False
            if alias in entity.aliases:
                return False
            entity.aliases.add(alias)
            entity.updated_at = utcnow()

        logger.debug("Alias added", entity_id=entity_id, alias=alias)
        return True

    async def set_embedding(self, entity_id: str, tenant_id: str, embedding: list[float]) -> None:
        async with self._lock:
            entity = self._entities.get(entity_id)
            if entity is not None and entity.tenant_id == tenant_id:
                entity.embedding = list(embedding)

    async def remove_alias(self, entity_id: str, tenant_id: str, alias: str) -> bool:
        """Unregister an alias. Returns False if it was not present."""
        async with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None or entity.tenant_id != tenant_id or alias not in entity.aliases:
                return False
            entity.aliases.discard(alias)
            entity.updated_at = utcnow()

        logger.debug("Alias removed", entity_id=entity_id, alias=alias)
        return True

    async def delete(self, entity_id: str, tenant_id: str) -> bool:
        """Delete an entity. Its alignment records are left to the caller."""
        async with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None or entity.tenant_id != tenant_id:
                return False
            del self._entities[entity_id]
            self._by_key.pop(entity.key, None)

        logger.info(
            "Entity deleted",
            tenant_id=tenant_id,
            entity_id=entity_id,
            canonical_name=entity.canonical_name,
        )
        return True

    # =========================================================================
    # Alignments
    # =========================================================================

    async def upsert_alignment(
        self,
        tenant_id: str,
        memory_key: str,
        field_path: str,
        alignment: EntityAlignment,
    ) -> AlignmentRecord:
        record = AlignmentRecord(
            tenant_id=tenant_id,
            memory_key=memory_key,
            field_path=field_path,
            alignment=alignment,
        )
        async with self._lock:
            self._alignments[record.key] = record
        return record

    async def get_alignment(
        self,
        tenant_id: str,
        memory_key: str,
        field_path: str,
    ) -> AlignmentRecord | None:
        async with self._lock:
            return self._alignments.get((tenant_id, memory_key, field_path))

    async def get_alignments_for_memory(
        self,
        tenant_id: str,
        memory_key: str,
    ) -> list[AlignmentRecord]:
        async with self._lock:
            return [
                r for r in self._alignments.values()
                if r.tenant_id == tenant_id and r.memory_key == memory_key
            ]

    async def get_alignments_for_entity(
        self,
        tenant_id: str,
        entity_id: str,
    ) -> list[AlignmentRecord]:
        async with self._lock:
            return [
                r for r in self._alignments.values()
                if r.tenant_id == tenant_id and r.alignment.entity_id == entity_id
            ]

    async def list_alignments(self, tenant_id: str) -> list[AlignmentRecord]:
        async with self._lock:
            return [r for r in self._alignments.values() if r.tenant_id == tenant_id]

    async def delete_alignment(self, tenant_id: str, memory_key: str, field_path: str) -> bool:
        async with self._lock:
            return self._alignments.pop((tenant_id, memory_key, field_path), None) is not None

    async def delete_alignments_for_memory(self, tenant_id: str, memory_key: str) -> int:
        """Delete all alignment records of one memory item."""
        async with self._lock:
            keys = [
                k for k, r in self._alignments.items()
                if r.tenant_id == tenant_id and r.memory_key == memory_key
            ]
            for k in keys:
                del self._alignments[k]

        if keys:
            logger.debug("Alignments deleted", tenant_id=tenant_id, memory_key=memory_key, count=len(keys))
        return len(keys)

    # =========================================================================
    # Stats
    # =========================================================================

    async def get_entity_stats(self, tenant_id: str) -> EntityStats:
        async with self._lock:
            by_type: dict[str, int] = defaultdict(int)
            for entity in self._entities.values():
                if entity.tenant_id == tenant_id:
                    by_type[entity.entity_type] += 1
            alignments = sum(1 for r in self._alignments.values() if r.tenant_id == tenant_id)

        return EntityStats(
            total_entities=sum(by_type.values()),
            total_alignments=alignments,
            entities_by_type=dict(by_type),
        )


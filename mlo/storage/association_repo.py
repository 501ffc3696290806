"""
Association Repository

Data access layer for weighted edges between memory items.
"""

import asyncio

import structlog

from mlo.models.association import Association, StrengthUpdate
from mlo.models.memory import utcnow

logger = structlog.get_logger(__name__)


class AssociationRepository:
    """
    Repository for Association CRUD operations.

    Bidirectional edges are keyed on the sorted id pair, so (a, b) and
    (b, a) address the same record.
    """

    def __init__(self):
        self._edges: dict[tuple[str, str, str], Association] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, association: Association) -> Association:
        """Insert an edge, or refresh strength/cues of an existing one."""
        async with self._lock:
            existing = self._edges.get(association.key)
            if existing is not None:
                stored = existing.model_copy(
                    update={
                        "strength": max(existing.strength, association.strength),
                        "shared_cues": sorted(set(existing.shared_cues) | set(association.shared_cues)),
                        "updated_at": utcnow(),
                    }
                )
            else:
                stored = association
            self._edges[stored.key] = stored

        logger.debug(
            "Association stored",
            tenant_id=association.tenant_id,
            from_item=association.from_item_id,
            to_item=association.to_item_id,
            strength=stored.strength,
        )
        return stored

    async def create_many(self, associations: list[Association]) -> list[Association]:
        if not associations:
            return []
        results = [await self.upsert(a) for a in associations]
        logger.info("Batch associations stored", count=len(results))
        return results

    async def get(self, tenant_id: str, from_item_id: str, to_item_id: str) -> Association | None:
        """Find the edge between two items, checking both orientations."""
        async with self._lock:
            for key in (
                (tenant_id, *sorted((from_item_id, to_item_id))),
                (tenant_id, from_item_id, to_item_id),
            ):
                edge = self._edges.get(key)
                if edge is not None:
                    return edge
        return None

    async def get_for_item(
        self,
        tenant_id: str,
        item_id: str,
        min_strength: float = 0.0,
    ) -> list[Association]:
        """All edges reachable from an item, strongest first."""
        async with self._lock:
            edges = [
                e for e in self._edges.values()
                if e.tenant_id == tenant_id and e.connects(item_id) and e.strength >= min_strength
            ]
        return sorted(edges, key=lambda e: e.strength, reverse=True)

    async def update_strength(
        self,
        tenant_id: str,
        from_item_id: str,
        to_item_id: str,
        delta: float,
    ) -> StrengthUpdate:
        """Apply an additive delta, clamped to [0, 1]."""
        async with self._lock:
            key = None
            for candidate in (
                (tenant_id, *sorted((from_item_id, to_item_id))),
                (tenant_id, from_item_id, to_item_id),
            ):
                if candidate in self._edges:
                    key = candidate
                    break

            if key is None:
                return StrengthUpdate(old_strength=0.0, new_strength=0.0, updated=False)

            edge = self._edges[key]
            new_strength = min(1.0, max(0.0, edge.strength + delta))
            updated = edge.model_copy(update={"strength": new_strength, "updated_at": utcnow()})
            self._edges[key] = updated

        return StrengthUpdate(
            old_strength=edge.strength,
            new_strength=new_strength,
            updated=new_strength != edge.strength,
            association=updated,
        )

    async def delete_for_item(self, tenant_id: str, item_id: str) -> int:
        """Delete every edge touching an item, in either direction."""
        async with self._lock:
            keys = [
                k for k, e in self._edges.items()
                if e.tenant_id == tenant_id and item_id in (e.from_item_id, e.to_item_id)
            ]
            for k in keys:
                del self._edges[k]
        return len(keys)

    async def count(self, tenant_id: str) -> int:
        async with self._lock:
            return sum(1 for e in self._edges.values() if e.tenant_id == tenant_id)

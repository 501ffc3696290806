"""
Neural memory stage: associative cues and weighted edges between items.
"""

from itertools import combinations

import structlog
from pydantic import Field

from mlo.context import TenantContext
from mlo.engine.fields import text_of
from mlo.engine.stages.base import ProcessorOptions, ProcessResult, StageProcessor
from mlo.models.association import Association, StrengthUpdate
from mlo.models.memory import MemoryItem
from mlo.models.profile import StageName

logger = structlog.get_logger(__name__)


class AssociativeOptions(ProcessorOptions):
    max_cues: int = Field(default=10, ge=1)
    min_shared_cues: int = Field(default=1, ge=1)
    sibling_strength: float = Field(default=0.5, ge=0.0, le=1.0)
    bidirectional: bool = True


class AssociativeMemory(StageProcessor):
    """
    Attaches ``association_cues`` and builds edges.

    Items sharing cues are linked with strength equal to the Jaccard of
    their cue sets; fan-out siblings of one input are linked with at least
    ``sibling_strength``.
    """

    stage = StageName.NEURAL_MEMORY
    component = "associative"
    variant = "AssociativeMemory"
    options_model = AssociativeOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        cues = sorted(self.scorer.core_terms(text_of(item.data)))[: self.options.max_cues]
        return item.with_metadata(association_cues=cues)

    def build_associations(
        self,
        items: list[MemoryItem],
        related: list[MemoryItem] | None = None,
    ) -> list[Association]:
        """
        Edges among ``items`` (co-remembered siblings) and between ``items``
        and already stored ``related`` items of the same tenant.
        """
        associations: list[Association] = []

        for a, b in combinations(items, 2):
            edge = self._edge(a, b, floor=self.options.sibling_strength, kind="co_remembered")
            if edge is not None:
                associations.append(edge)

        item_ids = {i.id for i in items}
        for new in items:
            for old in related or []:
                if old.id in item_ids:
                    continue
                edge = self._edge(new, old, floor=None, kind="shared_cues")
                if edge is not None:
                    associations.append(edge)

        return associations

    def update_association_strength(self, association: Association, delta: float) -> StrengthUpdate:
        """Apply a bounded additive delta, clamped to [0, 1]."""
        new_strength = min(1.0, max(0.0, association.strength + delta))
        updated = association.model_copy(update={"strength": new_strength})
        return StrengthUpdate(
            old_strength=association.strength,
            new_strength=new_strength,
            updated=new_strength != association.strength,
            association=updated,
        )

    def _edge(
        self,
        a: MemoryItem,
        b: MemoryItem,
        floor: float | None,
        kind: str,
    ) -> Association | None:
        if a.tenant_id != b.tenant_id or a.id == b.id:
            return None

        cues_a = set(a.metadata.get("association_cues") or [])
        cues_b = set(b.metadata.get("association_cues") or [])
        shared = cues_a & cues_b

        if floor is None and len(shared) < self.options.min_shared_cues:
            return None

        strength = self.scorer.jaccard(cues_a, cues_b)
        if floor is not None:
            strength = max(strength, floor)

        return Association(
            tenant_id=a.tenant_id,
            from_item_id=a.id,
            to_item_id=b.id,
            strength=strength,
            association_type=kind,
            bidirectional=self.options.bidirectional,
            shared_cues=sorted(shared),
        )

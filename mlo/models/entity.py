"""
Entity Models

Canonical entities deduplicated across memory content, and the alignment
records mapping raw field values onto them.
"""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from mlo.models.memory import utcnow


class AlignmentConfidence(str, Enum):
    """Confidence label, fixed by the cascade tier that matched."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MatchTier(str, Enum):
    """Cascade tiers in evaluation order."""
    EXACT = "exact"
    ALIAS = "alias"
    LEXICAL = "lexical"
    EMBEDDING = "embedding"
    CREATED = "created"

    @property
    def confidence(self) -> AlignmentConfidence:
        return TIER_CONFIDENCE[self]


TIER_CONFIDENCE = {
    MatchTier.EXACT: AlignmentConfidence.HIGH,
    MatchTier.ALIAS: AlignmentConfidence.HIGH,
    MatchTier.LEXICAL: AlignmentConfidence.MEDIUM,
    MatchTier.EMBEDDING: AlignmentConfidence.LOW,
    MatchTier.CREATED: AlignmentConfidence.HIGH,
}


class Entity(BaseModel):
    """A canonical referent owned by one tenant."""

    entity_id: str = Field(default_factory=lambda: str(uuid4()))
    tenant_id: str = Field(..., min_length=1)
    entity_type: str = Field(..., min_length=1)
    canonical_name: str = Field(..., min_length=1)
    aliases: set[str] = Field(default_factory=set)
    embedding: list[float] | None = Field(default=None, exclude=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str, str]:
        """Uniqueness key within the store."""
        return (self.tenant_id, self.entity_type, self.canonical_name)


class EntityAlignment(BaseModel):
    """Mapping from a raw field value to a canonical entity."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    canonical_name: str
    original_value: str
    confidence: AlignmentConfidence
    aligned_at: datetime = Field(default_factory=utcnow)


class AlignmentRecord(BaseModel):
    """Stored alignment, unique per (tenant_id, memory_key, field_path)."""

    tenant_id: str
    memory_key: str
    field_path: str
    alignment: EntityAlignment

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.tenant_id, self.memory_key, self.field_path)


class EntityField(BaseModel):
    """A field value to align."""

    field_path: str
    value: str
    entity_type: str
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)


class EntityMatch(BaseModel):
    """
    Cascade result with its side effects made explicit.

    ``alias_added`` is the raw value registered as a new alias of the matched
    entity (self-healing), or None when nothing was written.
    """

    entity: Entity
    tier: MatchTier
    similarity: float = 1.0
    alias_added: str | None = None
    created: bool = False

    @property
    def confidence(self) -> AlignmentConfidence:
        return self.tier.confidence


class EntityStats(BaseModel):
    total_entities: int = 0
    total_alignments: int = 0
    entities_by_type: dict[str, int] = Field(default_factory=dict)


class AlignmentChanges(BaseModel):
    """Entity writes made by one call, kept so a failed call can undo them."""

    created_entity_ids: list[str] = Field(default_factory=list)
    aliases_added: list[tuple[str, str]] = Field(default_factory=list)

    def record(self, match: EntityMatch) -> None:
        if match.created:
            self.created_entity_ids.append(match.entity.entity_id)
        if match.alias_added is not None:
            self.aliases_added.append((match.entity.entity_id, match.alias_added))

    def __bool__(self) -> bool:
        return bool(self.created_entity_ids or self.aliases_added)

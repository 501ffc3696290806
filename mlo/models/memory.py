"""
Memory Item Model

The unit that flows through the lifecycle pipeline. Items are immutable:
every stage returns a new item built with ``with_metadata``/``with_data``,
and ``processing_history`` only ever grows.
"""

import itertools
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_sequence = itertools.count(1)


def next_sequence() -> int:
    """Process-wide monotonic counter used to break creation-time ties."""
    return next(_sequence)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryType(str, Enum):
    """
    Long-term memory kinds accepted by ``remember``.

    - SEMANTIC: Facts and relationships
    - EPISODIC: Specific events/conversation turns
    """
    SEMANTIC = "semantic"
    EPISODIC = "episodic"


class MemoryMetadata(BaseModel):
    """Item metadata; unknown keys are kept as an extension bag."""

    model_config = ConfigDict(frozen=True, extra="allow")

    created_at: datetime = Field(default_factory=utcnow)
    sequence: int = Field(default_factory=next_sequence)
    tags: tuple[str, ...] = ()
    processing_history: tuple[str, ...] = ()
    summarized: bool = False
    memory_type: MemoryType = MemoryType.SEMANTIC
    references: tuple[str, ...] = Field(
        default=(),
        description="Field paths referenced by entity mappings",
    )

    def get(self, key: str, default: Any = None) -> Any:
        """Read a declared field or an extension key."""
        if key in type(self).model_fields:
            return getattr(self, key)
        return (self.model_extra or {}).get(key, default)


class MemoryItem(BaseModel):
    """A tenant-owned memory payload plus its lifecycle metadata."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    data: Any
    metadata: MemoryMetadata = Field(default_factory=MemoryMetadata)

    @property
    def history(self) -> tuple[str, ...]:
        return self.metadata.processing_history

    def has_visited(self, stage_name: str) -> bool:
        return stage_name in self.metadata.processing_history

    def with_data(self, data: Any, **metadata_updates: Any) -> "MemoryItem":
        item = self.model_copy(update={"data": data})
        if metadata_updates:
            item = item.with_metadata(**metadata_updates)
        return item

    def with_metadata(self, **updates: Any) -> "MemoryItem":
        """Return a copy with merged metadata (extension keys allowed)."""
        merged = {**self.metadata.model_dump(), **updates}
        return self.model_copy(update={"metadata": MemoryMetadata(**merged)})

    def with_stage(self, stage_name: str) -> "MemoryItem":
        """Return a copy with ``stage_name`` appended to the history."""
        return self.with_metadata(
            processing_history=self.metadata.processing_history + (stage_name,)
        )

    def with_id(self, item_id: str) -> "MemoryItem":
        return self.model_copy(update={"id": item_id})

    def sort_key(self) -> tuple[datetime, int]:
        """Creation order."""
        return (self.metadata.created_at, self.metadata.sequence)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "MemoryItem":
        return cls.model_validate(record)


class RememberOptions(BaseModel):
    """Options accepted by ``remember``."""

    type: MemoryType = MemoryType.SEMANTIC
    persist: bool = True
    tags: list[str] = Field(default_factory=list)
    entities: dict[str, str] = Field(
        default_factory=dict,
        description="Field path -> entity type to align after processing",
    )
    auto_create: bool | None = None
    strict_alignment: bool = False


class RecallOptions(BaseModel):
    """Options accepted by ``recall``."""

    type: MemoryType | None = None
    tags: list[str] = Field(default_factory=list)
    limit: int | None = Field(default=None, ge=1)
    similarity_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    include_expired: bool = False


class DroppedItem(BaseModel):
    """An item removed by a stage, captured as it entered that stage."""

    item: MemoryItem
    stage_name: str
    component_name: str
    reason: str | None = None


class PipelineOutcome(BaseModel):
    """Result of threading one input through the enabled stages."""

    items: list[MemoryItem] = Field(default_factory=list)
    dropped: list[DroppedItem] = Field(default_factory=list)
    duration_ms: float = 0.0


class RememberResult(BaseModel):
    """What ``remember`` produced and persisted."""

    items: list[MemoryItem]
    persisted: bool
    alignments: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Item id -> field path -> EntityAlignment | None",
    )
    associations_created: int = 0
    dropped: list[DroppedItem] = Field(default_factory=list)


class ContextResult(BaseModel):
    """Context assembled for retrieval-augmented use."""

    context: str = ""
    items: list[MemoryItem] = Field(
        default_factory=list,
        description="Items that contributed, best ranked first",
    )
    truncated: bool = False

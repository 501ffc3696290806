"""
Pydantic Models

Core data structures:
- MemoryItem: The unit flowing through the lifecycle pipeline
- Entity / EntityAlignment: Canonical entities and field alignments
- Association: Weighted edges between items
- MemoryProfile / StageConfig: Named stage configuration bundles
- RecognitionOptions / RecognitionResult: Duplicate recognition
"""

from mlo.models.memory import (
    ContextResult,
    DroppedItem,
    MemoryItem,
    MemoryMetadata,
    MemoryType,
    PipelineOutcome,
    RecallOptions,
    RememberOptions,
    RememberResult,
)
from mlo.models.entity import (
    AlignmentChanges,
    AlignmentConfidence,
    AlignmentRecord,
    Entity,
    EntityAlignment,
    EntityField,
    EntityMatch,
    EntityStats,
    MatchTier,
)
from mlo.models.association import Association, StrengthUpdate
from mlo.models.profile import STAGE_ORDER, MemoryProfile, StageConfig, StageName
from mlo.models.recognition import Disambiguation, RecognitionOptions, RecognitionResult

__all__ = [
    # Memory
    "ContextResult",
    "DroppedItem",
    "MemoryItem",
    "MemoryMetadata",
    "MemoryType",
    "PipelineOutcome",
    "RecallOptions",
    "RememberOptions",
    "RememberResult",
    # Entity
    "AlignmentChanges",
    "AlignmentConfidence",
    "AlignmentRecord",
    "Entity",
    "EntityAlignment",
    "EntityField",
    "EntityMatch",
    "EntityStats",
    "MatchTier",
    # Association
    "Association",
    "StrengthUpdate",
    # Profile
    "STAGE_ORDER",
    "MemoryProfile",
    "StageConfig",
    "StageName",
    # Recognition
    "Disambiguation",
    "RecognitionOptions",
    "RecognitionResult",
]

"""
Memory Engine - Lifecycle Logic

Core components:
- SimilarityScorer: Normalization, lexical and structural similarity
- EntityAligner: Exact -> alias -> lexical -> embedding entity cascade
- ConfidenceScorer: Duplicate-likelihood blend
- RecognitionService: Candidate lookup, scoring and gray-band LLM decisions
- MemoryProfileRegistry: Named stage configuration bundles
- MemoryLifecycleOrchestrator: remember/recall through the six stages
"""

from mlo.engine.similarity import SimilarityScorer
from mlo.engine.entity_aligner import EntityAligner
from mlo.engine.confidence_scorer import ConfidenceScorer
from mlo.engine.recognition import RecognitionService
from mlo.engine.profiles import MemoryProfileRegistry, get_profile_registry
from mlo.engine.orchestrator import MemoryLifecycleOrchestrator

__all__ = [
    "SimilarityScorer",
    "EntityAligner",
    "ConfidenceScorer",
    "RecognitionService",
    "MemoryProfileRegistry",
    "get_profile_registry",
    "MemoryLifecycleOrchestrator",
]

"""
Lifecycle stage processors.

Closed variant set per stage, selected by profile configuration.
"""

from mlo.engine.stages.acquisition import (
    NoveltyConsolidator,
    TenantAwareFilter,
    TextTruncationCompressor,
)
from mlo.engine.stages.base import (
    ProcessorMetrics,
    ProcessorOptions,
    Stage,
    StageDependencies,
    StageProcessor,
)
from mlo.engine.stages.derivation import (
    ConversationReflection,
    LLMSummarizer,
    SimpleDistiller,
    SimpleSummarizer,
    TimeDecayForgetter,
)
from mlo.engine.stages.encoding import ConversationAttention, ModalityFusion
from mlo.engine.stages.factory import VARIANTS, build_stage, build_stages
from mlo.engine.stages.neural_memory import AssociativeMemory
from mlo.engine.stages.retrieval import DirectMemoryIndexer, TopKMatcher
from mlo.engine.stages.utilization import (
    SimpleHallucinationMitigator,
    SimpleRAG,
    SlidingWindowContextManager,
)

__all__ = [
    "AssociativeMemory",
    "ConversationAttention",
    "ConversationReflection",
    "DirectMemoryIndexer",
    "LLMSummarizer",
    "ModalityFusion",
    "NoveltyConsolidator",
    "ProcessorMetrics",
    "ProcessorOptions",
    "SimpleDistiller",
    "SimpleHallucinationMitigator",
    "SimpleRAG",
    "SimpleSummarizer",
    "SlidingWindowContextManager",
    "Stage",
    "StageDependencies",
    "StageProcessor",
    "TenantAwareFilter",
    "TextTruncationCompressor",
    "TimeDecayForgetter",
    "TopKMatcher",
    "VARIANTS",
    "build_stage",
    "build_stages",
]

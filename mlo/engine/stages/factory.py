"""
Stage factory.

The set of processor variants is closed: each stage has fixed components,
and each component a table of variants selectable by name from a profile.
"""

import structlog

from mlo.engine.stages.acquisition import (
    NoveltyConsolidator,
    TenantAwareFilter,
    TextTruncationCompressor,
)
from mlo.engine.stages.base import Stage, StageDependencies, StageProcessor
from mlo.engine.stages.derivation import (
    ConversationReflection,
    LLMSummarizer,
    SimpleDistiller,
    SimpleSummarizer,
    TimeDecayForgetter,
)
from mlo.engine.stages.encoding import ConversationAttention, ModalityFusion
from mlo.engine.stages.neural_memory import AssociativeMemory
from mlo.engine.stages.retrieval import DirectMemoryIndexer, TopKMatcher
from mlo.engine.stages.utilization import (
    SimpleHallucinationMitigator,
    SimpleRAG,
    SlidingWindowContextManager,
)
from mlo.errors import ValidationError
from mlo.models.profile import STAGE_ORDER, MemoryProfile, StageConfig, StageName

logger = structlog.get_logger(__name__)


def _table(*classes: type[StageProcessor]) -> dict[str, type[StageProcessor]]:
    return {cls.variant: cls for cls in classes}


# Stage -> component (in execution order) -> variant name -> class
VARIANTS: dict[StageName, dict[str, dict[str, type[StageProcessor]]]] = {
    StageName.ACQUISITION: {
        "filter": _table(TenantAwareFilter),
        "compressor": _table(TextTruncationCompressor),
        "consolidator": _table(NoveltyConsolidator),
    },
    StageName.ENCODING: {
        "attention": _table(ConversationAttention),
        "fusion": _table(ModalityFusion),
    },
    StageName.DERIVATION: {
        "reflection": _table(ConversationReflection),
        "summarization": _table(SimpleSummarizer, LLMSummarizer),
        "distillation": _table(SimpleDistiller),
        "forgetting": _table(TimeDecayForgetter),
    },
    StageName.RETRIEVAL: {
        "indexing": _table(DirectMemoryIndexer),
        "matching": _table(TopKMatcher),
    },
    StageName.NEURAL_MEMORY: {
        "associative": _table(AssociativeMemory),
    },
    StageName.UTILIZATION: {
        "rag": _table(SimpleRAG),
        "long_context": _table(SlidingWindowContextManager),
        "hallucination_mitigation": _table(SimpleHallucinationMitigator),
    },
}


def default_variant(stage: StageName, component: str) -> str:
    """First variant registered for a component."""
    return next(iter(VARIANTS[stage][component]))


def build_stage(name: StageName, config: StageConfig, deps: StageDependencies) -> Stage:
    """
    Instantiate every component of a stage.

    Components missing from ``config.components`` get their default
    variant. Disabled stages are still built so their query-side operations
    (matching, context assembly) stay available.

    Raises:
        ValidationError: unknown component or variant name
    """
    components = VARIANTS[name]

    unknown = set(config.components) - set(components)
    if unknown:
        raise ValidationError(f"Unknown components for stage '{name.value}': {sorted(unknown)}")

    processors: list[StageProcessor] = []
    for component, variants in components.items():
        variant = config.components.get(component, default_variant(name, component))
        cls = variants.get(variant)
        if cls is None:
            raise ValidationError(
                f"Unknown variant '{variant}' for {name.value}/{component} "
                f"(available: {', '.join(variants)})"
            )
        processors.append(cls(config.options_for(component), deps))

    return Stage(name, processors, enabled=config.enabled)


def build_stages(profile: MemoryProfile, deps: StageDependencies) -> dict[StageName, Stage]:
    stages = {name: build_stage(name, profile.stage(name), deps) for name in STAGE_ORDER}
    logger.debug(
        "Stages built",
        profile=profile.name,
        enabled=[n.value for n, s in stages.items() if s.enabled],
    )
    return stages

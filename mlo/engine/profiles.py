"""
Memory Profile Registry

Named stage configuration bundles. Three profiles ship built in:

- basic: minimal processing, no neural memory
- conversational: dialogue-aware processing with turn consolidation
- research-optimized: large inputs, reference preservation, wide retrieval
"""

from typing import Any

import structlog

from mlo.errors import ProfileNotFoundError, ValidationError
from mlo.models.profile import MemoryProfile, StageConfig, StageName

logger = structlog.get_logger(__name__)


def _profile(name: str, description: str, stages: dict[StageName, dict[str, Any]]) -> MemoryProfile:
    return MemoryProfile(
        name=name,
        description=description,
        stages={stage: StageConfig(**config) for stage, config in stages.items()},
    )


BASIC_PROFILE = _profile(
    "basic",
    "Minimal functionality for simple use cases",
    {
        StageName.ACQUISITION: {
            "components": {
                "filter": "TenantAwareFilter",
                "compressor": "TextTruncationCompressor",
                "consolidator": "NoveltyConsolidator",
            },
            "options": {
                "filter": {"max_input_size": 2500, "tenant_isolation": True, "relevance_threshold": 0.1},
                "compressor": {"max_length": 500},
                "consolidator": {"enabled": False},
            },
        },
        StageName.ENCODING: {
            "components": {"attention": "ConversationAttention", "fusion": "ModalityFusion"},
            "options": {
                "attention": {"pass_through": True},
                "fusion": {"enabled": False, "modalities": ["text"]},
            },
        },
        StageName.DERIVATION: {
            "components": {
                "reflection": "ConversationReflection",
                "summarization": "SimpleSummarizer",
                "distillation": "SimpleDistiller",
                "forgetting": "TimeDecayForgetter",
            },
            "options": {
                "summarization": {"strategy": "truncate", "max_summary_length": 200},
                "forgetting": {"decay_rate": 0.1, "time_window_hours": 24, "retention_threshold": 0.3},
            },
        },
        StageName.RETRIEVAL: {
            "components": {"indexing": "DirectMemoryIndexer", "matching": "TopKMatcher"},
            "options": {
                "indexing": {"strategy": "direct"},
                "matching": {"top_k": 5, "similarity_threshold": 0.5},
            },
        },
        StageName.NEURAL_MEMORY: {
            "enabled": False,
            "components": {"associative": "AssociativeMemory"},
        },
        StageName.UTILIZATION: {
            "components": {
                "rag": "SimpleRAG",
                "long_context": "SlidingWindowContextManager",
                "hallucination_mitigation": "SimpleHallucinationMitigator",
            },
            "options": {
                "rag": {"max_retrieved_items": 3, "context_window": 1000},
                "long_context": {"window_size": 2000, "overlap_size": 200},
                "hallucination_mitigation": {"enabled": False},
            },
        },
    },
)


CONVERSATIONAL_PROFILE = _profile(
    "conversational",
    "Optimized for dialogue and chat scenarios",
    {
        StageName.ACQUISITION: {
            "components": {
                "filter": "TenantAwareFilter",
                "compressor": "TextTruncationCompressor",
                "consolidator": "NoveltyConsolidator",
            },
            "options": {
                "filter": {
                    "max_input_size": 2000,
                    "tenant_isolation": True,
                    "conversation_aware": True,
                    "relevance_threshold": 0.2,
                },
                "compressor": {"max_length": 800},
                "consolidator": {"novelty_threshold": 0.8, "strategy": "conversation"},
            },
        },
        StageName.ENCODING: {
            "components": {"attention": "ConversationAttention", "fusion": "ModalityFusion"},
            "options": {
                "attention": {"speaker_tracking": True, "turn_boundaries": True},
                "fusion": {"modalities": ["text", "conversation"]},
            },
        },
        StageName.DERIVATION: {
            "components": {
                "reflection": "ConversationReflection",
                "summarization": "SimpleSummarizer",
                "distillation": "SimpleDistiller",
                "forgetting": "TimeDecayForgetter",
            },
            "options": {
                "reflection": {"track_misunderstandings": True},
                "summarization": {"strategy": "dialogue", "max_summary_length": 300},
                "distillation": {"max_facts": 8},
                "forgetting": {"decay_rate": 0.05, "time_window_hours": 168, "retention_threshold": 0.4},
            },
        },
        StageName.RETRIEVAL: {
            "components": {"indexing": "DirectMemoryIndexer", "matching": "TopKMatcher"},
            "options": {
                "indexing": {"strategy": "conversation"},
                "matching": {"top_k": 8, "similarity_threshold": 0.4},
            },
        },
        StageName.NEURAL_MEMORY: {
            "components": {"associative": "AssociativeMemory"},
            "options": {"associative": {"min_shared_cues": 2}},
        },
        StageName.UTILIZATION: {
            "components": {
                "rag": "SimpleRAG",
                "long_context": "SlidingWindowContextManager",
                "hallucination_mitigation": "SimpleHallucinationMitigator",
            },
            "options": {
                "rag": {"max_retrieved_items": 5, "context_window": 1500},
                "long_context": {"window_size": 3000, "overlap_size": 300},
                "hallucination_mitigation": {"grounding_threshold": 0.5},
            },
        },
    },
)


RESEARCH_OPTIMIZED_PROFILE = _profile(
    "research-optimized",
    "Designed for complex analysis and research tasks",
    {
        StageName.ACQUISITION: {
            "components": {
                "filter": "TenantAwareFilter",
                "compressor": "TextTruncationCompressor",
                "consolidator": "NoveltyConsolidator",
            },
            "options": {
                "filter": {
                    "max_input_size": 5000,
                    "tenant_isolation": True,
                    "research_mode": True,
                    "complexity_aware": True,
                    "relevance_threshold": 0.3,
                },
                "compressor": {"max_length": 2000, "preserve_references": True},
                "consolidator": {"enabled": False},
            },
        },
        StageName.ENCODING: {
            "components": {"attention": "ConversationAttention", "fusion": "ModalityFusion"},
            "options": {
                "attention": {"pass_through": True},
                "fusion": {"modalities": ["text", "research", "code"]},
            },
        },
        StageName.DERIVATION: {
            "components": {
                "reflection": "ConversationReflection",
                "summarization": "SimpleSummarizer",
                "distillation": "SimpleDistiller",
                "forgetting": "TimeDecayForgetter",
            },
            "options": {
                "reflection": {"enabled": False},
                "summarization": {"max_summary_length": 500},
                "distillation": {"enabled": False},
                "forgetting": {"decay_rate": 0.02, "time_window_hours": 720, "retention_threshold": 0.6},
            },
        },
        StageName.RETRIEVAL: {
            "components": {"indexing": "DirectMemoryIndexer", "matching": "TopKMatcher"},
            "options": {
                "indexing": {"strategy": "research", "max_terms": 64},
                "matching": {"top_k": 10, "similarity_threshold": 0.3},
            },
        },
        StageName.NEURAL_MEMORY: {
            "components": {"associative": "AssociativeMemory"},
            "options": {"associative": {"max_cues": 20}},
        },
        StageName.UTILIZATION: {
            "components": {
                "rag": "SimpleRAG",
                "long_context": "SlidingWindowContextManager",
                "hallucination_mitigation": "SimpleHallucinationMitigator",
            },
            "options": {
                "rag": {"max_retrieved_items": 15, "context_window": 4000},
                "long_context": {"window_size": 8000, "overlap_size": 800},
                "hallucination_mitigation": {"grounding_threshold": 0.6},
            },
        },
    },
)


PROFILE_RECOMMENDATIONS: dict[str, list[str]] = {
    "chatbot": ["conversational", "basic"],
    "assistant": ["conversational", "research-optimized"],
    "research": ["research-optimized", "conversational"],
    "simple": ["basic", "conversational"],
    "academic": ["research-optimized"],
    "dialogue": ["conversational", "basic"],
    "analysis": ["research-optimized", "conversational"],
    "lightweight": ["basic"],
    "production": ["conversational", "research-optimized"],
    "development": ["basic", "conversational"],
}


class MemoryProfileRegistry:
    """Registry of named profiles; lookups return independent copies."""

    def __init__(self, include_builtin: bool = True):
        self._profiles: dict[str, MemoryProfile] = {}
        if include_builtin:
            for profile in (BASIC_PROFILE, CONVERSATIONAL_PROFILE, RESEARCH_OPTIMIZED_PROFILE):
                self.register(profile)

    def register(self, profile: MemoryProfile, overwrite: bool = False) -> None:
        if profile.name in self._profiles and not overwrite:
            raise ValidationError(f"Memory profile '{profile.name}' is already registered")
        self._profiles[profile.name] = profile.model_copy(deep=True)
        logger.debug("Memory profile registered", profile=profile.name)

    def get(self, name: str) -> MemoryProfile:
        """
        Resolve a profile by name.

        Raises:
            ProfileNotFoundError: unknown name
        """
        profile = self._profiles.get(name)
        if profile is None:
            raise ProfileNotFoundError(name, self.list_profiles())
        return profile.model_copy(deep=True)

    def list_profiles(self) -> list[str]:
        return list(self._profiles)

    def is_valid_profile(self, name: str) -> bool:
        return name in self._profiles

    def recommend_profiles(self, use_case: str) -> list[str]:
        """Profiles suited to a use case, best first; falls back to basic."""
        recommended = PROFILE_RECOMMENDATIONS.get(use_case.strip().lower(), ["basic"])
        return [name for name in recommended if name in self._profiles]


_registry: MemoryProfileRegistry | None = None


def get_profile_registry() -> MemoryProfileRegistry:
    """Get the process-wide registry (built-in profiles plus registrations)."""
    global _registry
    if _registry is None:
        _registry = MemoryProfileRegistry()
    return _registry

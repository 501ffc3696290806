"""
Tests for MemoryProfileRegistry
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from mlo.engine.profiles import (
    BASIC_PROFILE,
    MemoryProfileRegistry,
    get_profile_registry,
)
from mlo.errors import ProfileNotFoundError, ValidationError
from mlo.models.profile import STAGE_ORDER, MemoryProfile, StageConfig, StageName


def custom_profile(name="custom", **overrides):
    stages = {stage: StageConfig() for stage in STAGE_ORDER}
    stages.update(overrides)
    return MemoryProfile(name=name, stages=stages)


class TestBuiltinProfiles:
    def test_three_builtin_profiles(self, registry):
        assert registry.list_profiles() == ["basic", "conversational", "research-optimized"]

    def test_basic_disables_neural_memory(self, registry):
        basic = registry.get("basic")

        assert basic.is_enabled(StageName.NEURAL_MEMORY) is False
        assert basic.stage(StageName.RETRIEVAL).options_for("matching") == {
            "top_k": 5,
            "similarity_threshold": 0.5,
        }

    def test_conversational_consolidates(self, registry):
        conversational = registry.get("conversational")

        acquisition = conversational.stage(StageName.ACQUISITION)
        assert acquisition.options_for("consolidator")["novelty_threshold"] == 0.8
        assert conversational.is_enabled(StageName.NEURAL_MEMORY) is True

    def test_research_accepts_large_inputs(self, registry):
        research = registry.get("research-optimized")

        assert research.stage(StageName.ACQUISITION).options_for("filter")["max_input_size"] == 5000

    def test_every_profile_configures_every_stage(self, registry):
        for name in registry.list_profiles():
            assert set(registry.get(name).stages) == set(STAGE_ORDER)


class TestRegistry:
    def test_unknown_profile(self, registry):
        with pytest.raises(ProfileNotFoundError) as exc_info:
            registry.get("turbo")

        assert exc_info.value.profile_name == "turbo"
        assert "basic" in exc_info.value.available
        assert isinstance(exc_info.value, ValidationError)

    def test_get_returns_independent_copy(self, registry):
        first = registry.get("basic")
        first.stages[StageName.NEURAL_MEMORY] = StageConfig(enabled=True)

        assert registry.get("basic").is_enabled(StageName.NEURAL_MEMORY) is False

    def test_register_custom(self, registry):
        registry.register(custom_profile())

        assert registry.is_valid_profile("custom")
        assert registry.get("custom").name == "custom"

    def test_duplicate_name_rejected(self, registry):
        with pytest.raises(ValidationError):
            registry.register(custom_profile("basic"))

    def test_overwrite(self, registry):
        registry.register(custom_profile("basic"), overwrite=True)

        assert registry.get("basic").is_enabled(StageName.NEURAL_MEMORY) is True

    def test_empty_registry(self):
        registry = MemoryProfileRegistry(include_builtin=False)

        assert registry.list_profiles() == []
        assert not registry.is_valid_profile("basic")

    def test_profile_must_cover_all_stages(self):
        with pytest.raises(PydanticValidationError):
            MemoryProfile(name="partial", stages={StageName.ACQUISITION: StageConfig()})

    @pytest.mark.parametrize("use_case,expected", [
        ("chatbot", ["conversational", "basic"]),
        ("  Research ", ["research-optimized", "conversational"]),
        ("unheard-of", ["basic"]),
    ])
    def test_recommend_profiles(self, registry, use_case, expected):
        assert registry.recommend_profiles(use_case) == expected

    def test_global_registry_is_shared(self):
        assert get_profile_registry() is get_profile_registry()
        assert get_profile_registry().is_valid_profile(BASIC_PROFILE.name)

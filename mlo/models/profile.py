"""
Profile Models

A profile is a named bundle of per-stage configuration: which processor
variant runs for each component and the options it is built with.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class StageName(str, Enum):
    """The six lifecycle stages."""
    ACQUISITION = "acquisition"
    ENCODING = "encoding"
    DERIVATION = "derivation"
    RETRIEVAL = "retrieval"
    NEURAL_MEMORY = "neuralMemory"
    UTILIZATION = "utilization"


STAGE_ORDER: tuple[StageName, ...] = (
    StageName.ACQUISITION,
    StageName.ENCODING,
    StageName.DERIVATION,
    StageName.RETRIEVAL,
    StageName.NEURAL_MEMORY,
    StageName.UTILIZATION,
)


class StageConfig(BaseModel):
    """Configuration of one stage."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    components: dict[str, str] = Field(
        default_factory=dict,
        description="Component name -> processor variant name",
    )
    options: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Component name -> option map",
    )

    def options_for(self, component: str) -> dict[str, Any]:
        return dict(self.options.get(component, {}))


class MemoryProfile(BaseModel):
    """Named, immutable stage configuration bundle."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    stages: dict[StageName, StageConfig]

    @model_validator(mode="after")
    def validate_all_stages(self) -> "MemoryProfile":
        """Every stage must be configured, even if disabled."""
        missing = [s.value for s in STAGE_ORDER if s not in self.stages]
        if missing:
            raise ValueError(f"profile '{self.name}' is missing stages: {missing}")
        return self

    def stage(self, name: StageName) -> StageConfig:
        return self.stages[name]

    def is_enabled(self, name: StageName) -> bool:
        return self.stages[name].enabled

"""
Recognition Models

Options and result of asking whether a payload is already remembered.
"""

from typing import Any

from pydantic import BaseModel, Field, model_validator

# Half-width of the gray band around the threshold handed to the LLM.
LLM_BAND = 0.11


class RecognitionOptions(BaseModel):
    """Options accepted by ``recognize``."""

    threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    llm_lower_bound: float | None = Field(default=None, ge=0.0, le=1.0)
    llm_upper_bound: float | None = Field(default=None, ge=0.0, le=1.0)
    entities: dict[str, str] = Field(
        default_factory=dict,
        description="Field path -> entity type used to find and score candidates",
    )
    tags: list[str] = Field(default_factory=list)
    custom_prompt: str | None = Field(
        default=None,
        description="Replaces the disambiguation prompt; "
        "{candidate}, {existing} and {confidence} are substituted",
    )
    limit: int = Field(default=50, ge=1)

    @model_validator(mode="after")
    def validate_band(self) -> "RecognitionOptions":
        if self.lower_bound > self.upper_bound:
            raise ValueError("llm_lower_bound must not exceed llm_upper_bound")
        return self

    @property
    def lower_bound(self) -> float:
        if self.llm_lower_bound is not None:
            return self.llm_lower_bound
        return max(0.0, self.threshold - LLM_BAND)

    @property
    def upper_bound(self) -> float:
        if self.llm_upper_bound is not None:
            return self.llm_upper_bound
        return min(1.0, self.threshold + LLM_BAND)


class RecognitionResult(BaseModel):
    """Best match found for a candidate payload."""

    is_match: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    matching_key: str | None = None
    matching_data: Any = None
    used_llm: bool = False
    explanation: str | None = None


class Disambiguation(BaseModel):
    """The LLM's verdict on a gray-band candidate pair."""

    is_match: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""

"""
Configuration Management

Uses Pydantic Settings for type-safe environment variable handling.
All keys can be overridden with an ``MLO_`` prefixed environment variable.
"""

import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MLO_",
        env_file=".env" if os.path.exists(".env") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Profiles
    default_profile: str = "basic"

    # Entity alignment
    alignment_lexical_threshold: float = 0.7
    alignment_embedding_threshold: float = 0.85
    alignment_auto_create: bool = True

    # Confidence scoring
    confidence_entity_weight: float = 0.6
    confidence_exact_weight: float = 0.25
    confidence_structural_weight: float = 0.15
    structural_type_mismatch_weight: float = 0.5

    # Matching
    matching_lexical_weight: float = 0.6
    matching_embedding_weight: float = 0.4

    # External calls
    retry_attempts: int = 3
    retry_wait_min: float = 0.1
    retry_wait_max: float = 2.0
    retry_wait_multiplier: float = 0.2
    default_deadline_seconds: float | None = None

    @field_validator(
        "alignment_lexical_threshold",
        "alignment_embedding_threshold",
        "confidence_entity_weight",
        "confidence_exact_weight",
        "confidence_structural_weight",
        "structural_type_mismatch_weight",
        "matching_lexical_weight",
        "matching_embedding_weight",
    )
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        """Ensure thresholds and weights lie in [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be between 0 and 1")
        return v

    @field_validator("retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("retry_attempts must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_weight_sums(self) -> "Settings":
        """Blends must have at least one non-zero weight."""
        confidence_total = (
            self.confidence_entity_weight
            + self.confidence_exact_weight
            + self.confidence_structural_weight
        )
        if confidence_total == 0:
            raise ValueError("confidence weights must not all be zero")
        if self.matching_lexical_weight + self.matching_embedding_weight == 0:
            raise ValueError("matching weights must not all be zero")
        return self

    @property
    def confidence_weights(self) -> dict[str, float]:
        """Weights of the confidence blend keyed by signal."""
        return {
            "entity": self.confidence_entity_weight,
            "exact": self.confidence_exact_weight,
            "structural": self.confidence_structural_weight,
        }


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()

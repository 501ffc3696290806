"""
Tests for Settings and logging configuration
"""

import pytest
import structlog
from pydantic import ValidationError as PydanticValidationError

from mlo.config import Settings, get_settings
from mlo.log_config import configure_logging


class TestSettingsDefaults:
    def test_documented_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.default_profile == "basic"
        assert settings.alignment_lexical_threshold == 0.7
        assert settings.alignment_embedding_threshold == 0.85
        assert settings.alignment_auto_create is True
        assert settings.matching_lexical_weight == 0.6
        assert settings.matching_embedding_weight == 0.4
        assert settings.retry_attempts == 3
        assert settings.default_deadline_seconds is None

    def test_confidence_weights(self):
        settings = Settings(_env_file=None)

        assert settings.confidence_weights == {
            "entity": 0.6,
            "exact": 0.25,
            "structural": 0.15,
        }

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestSettingsEnvironment:
    def test_env_prefix_override(self, monkeypatch):
        monkeypatch.setenv("MLO_ALIGNMENT_LEXICAL_THRESHOLD", "0.55")
        monkeypatch.setenv("MLO_DEFAULT_PROFILE", "conversational")

        settings = Settings(_env_file=None)

        assert settings.alignment_lexical_threshold == 0.55
        assert settings.default_profile == "conversational"

    def test_unprefixed_variables_ignored(self, monkeypatch):
        monkeypatch.setenv("ALIGNMENT_LEXICAL_THRESHOLD", "0.1")

        settings = Settings(_env_file=None)

        assert settings.alignment_lexical_threshold == 0.7


class TestSettingsValidation:
    @pytest.mark.parametrize("field", [
        "alignment_lexical_threshold",
        "alignment_embedding_threshold",
        "confidence_entity_weight",
        "matching_embedding_weight",
    ])
    def test_rejects_values_outside_unit_interval(self, field):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, **{field: 1.5})

    def test_rejects_zero_confidence_weights(self):
        with pytest.raises(PydanticValidationError):
            Settings(
                _env_file=None,
                confidence_entity_weight=0,
                confidence_exact_weight=0,
                confidence_structural_weight=0,
            )

    def test_rejects_zero_matching_weights(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, matching_lexical_weight=0, matching_embedding_weight=0)

    def test_rejects_zero_retry_attempts(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, retry_attempts=0)

    def test_log_level_normalized(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, log_level="verbose")


class TestLogging:
    def test_configure_logging_console(self, test_settings):
        try:
            configure_logging(test_settings)
            assert structlog.is_configured()
            structlog.get_logger("mlo.test").info("configured", check=True)
        finally:
            structlog.reset_defaults()

    def test_configure_logging_json(self):
        try:
            configure_logging(Settings(_env_file=None, log_json=True))
            processors = structlog.get_config()["processors"]
            assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        finally:
            structlog.reset_defaults()

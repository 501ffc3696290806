"""
Error taxonomy.

Callers of the orchestrator only ever observe subclasses of ``MLOError``.
"""


class MLOError(Exception):
    """Base class for all memory lifecycle errors."""


class ValidationError(MLOError):
    """Missing tenant, missing required field or malformed input."""


class ProfileNotFoundError(ValidationError):
    """Profile name does not resolve to a registered profile."""

    def __init__(self, profile_name: str, available: list[str]):
        self.profile_name = profile_name
        self.available = available
        super().__init__(
            f"Unknown memory profile '{profile_name}' "
            f"(available: {', '.join(available) or 'none'})"
        )


class StageProcessingError(MLOError):
    """A stage processor (or the persistence step) raised."""

    def __init__(self, stage_name: str, component_name: str, cause: BaseException):
        self.stage_name = stage_name
        self.component_name = component_name
        self.cause = cause
        super().__init__(f"{stage_name}/{component_name} failed: {cause}")


class AlignmentError(MLOError):
    """Entity cascade exhausted with auto-create disabled, or aligner failure."""

    def __init__(
        self,
        message: str,
        field_path: str | None = None,
        value: str | None = None,
        entity_type: str | None = None,
    ):
        self.field_path = field_path
        self.value = value
        self.entity_type = entity_type
        super().__init__(message)


class ConflictError(MLOError):
    """Recoverable race: an entity with the same key was created concurrently."""

    def __init__(self, key: tuple[str, str, str]):
        self.key = key
        tenant_id, entity_type, canonical_name = key
        super().__init__(
            f"Entity '{canonical_name}' ({entity_type}) already exists for tenant {tenant_id}"
        )


class OperationTimeoutError(MLOError, TimeoutError):
    """Deadline expired or the operation was cancelled."""


class EmbeddingError(MLOError):
    """Embedding provider failed after retries."""


class LLMError(MLOError):
    """LLM capability failed after retries."""

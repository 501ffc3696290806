"""
Stage processor contract.

Every processor exposes ``process``/``configure``/``get_metrics``. A stage
is a fixed, ordered set of processors; it threads one item through them,
handling fan-out and drops, and appends its name to the item's
``processing_history`` exactly once.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, ClassVar, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from mlo.config import Settings, get_settings
from mlo.context import TenantContext
from mlo.engine.similarity import SimilarityScorer
from mlo.errors import OperationTimeoutError, StageProcessingError, ValidationError
from mlo.models.memory import DroppedItem, MemoryItem
from mlo.models.profile import StageName
from mlo.services.embedding import EmbeddingService
from mlo.services.llm import LLMService

logger = structlog.get_logger(__name__)

ProcessResult = Union[MemoryItem, list[MemoryItem], None]


class ProcessorOptions(BaseModel):
    """
    Recognized options of a processor.

    Subclasses declare their own keys; anything else given to ``configure``
    is kept in ``extensions`` untouched.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    extensions: dict[str, Any] = Field(default_factory=dict)


class ProcessorMetrics:
    """Thread-safe counters shared by concurrent runs of one processor."""

    def __init__(self):
        self._lock = threading.Lock()
        self.items_processed = 0
        self.items_dropped = 0
        self.errors = 0
        self._total_latency_ms = 0.0

    def record(self, latency_ms: float, dropped: bool = False, error: bool = False) -> None:
        with self._lock:
            if error:
                self.errors += 1
            else:
                self.items_processed += 1
                if dropped:
                    self.items_dropped += 1
            self._total_latency_ms += latency_ms

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            calls = self.items_processed + self.errors
            return {
                "items_processed": self.items_processed,
                "items_dropped": self.items_dropped,
                "errors": self.errors,
                "avg_latency_ms": self._total_latency_ms / calls if calls else 0.0,
            }


@dataclass
class StageDependencies:
    """Collaborators handed to processors at construction."""

    settings: Settings
    scorer: SimilarityScorer
    embedding_service: EmbeddingService | None = None
    llm_service: LLMService | None = None


class StageProcessor:
    """
    Base class for one component of a stage.

    Subclasses set ``stage``/``component``/``variant``, an ``options_model``
    and implement ``_process``.
    """

    stage: ClassVar[StageName]
    component: ClassVar[str]
    variant: ClassVar[str]
    options_model: ClassVar[type[ProcessorOptions]] = ProcessorOptions

    def __init__(
        self,
        options: dict[str, Any] | None = None,
        deps: StageDependencies | None = None,
    ):
        if deps is None:
            deps = StageDependencies(settings=get_settings(), scorer=SimilarityScorer())
        self.deps = deps
        self.settings = deps.settings
        self.scorer = deps.scorer
        self.options = self.options_model()
        self._metrics = ProcessorMetrics()
        if options:
            self.configure(options)

    def configure(self, options: dict[str, Any]) -> None:
        """
        Merge options into the current configuration.

        Recognized keys are validated; unknown keys land in ``extensions``.
        The options object is swapped in one assignment, so a run in
        flight keeps seeing a consistent configuration.
        """
        recognized = set(self.options_model.model_fields) - {"extensions"}
        current = self.options.model_dump()
        known = {k: v for k, v in options.items() if k in recognized}
        unknown = {k: v for k, v in options.items() if k not in recognized}
        merged = {
            **current,
            **known,
            "extensions": {**current.get("extensions", {}), **unknown},
        }
        try:
            self.options = self.options_model(**merged)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid options for {self.variant}: {e}") from e

    def get_metrics(self) -> dict[str, Any]:
        return {"variant": self.variant, **self._metrics.snapshot()}

    async def process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        """Apply the processor once; a no-op if the stage already ran."""
        if item.has_visited(self.stage.value):
            return item

        start = time.perf_counter()
        try:
            result = await self._process(ctx, item)
        except Exception:
            self._metrics.record((time.perf_counter() - start) * 1000, error=True)
            raise
        self._metrics.record((time.perf_counter() - start) * 1000, dropped=result is None)
        return result

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        raise NotImplementedError

    def drop_reason(self, ctx: TenantContext, item: MemoryItem) -> str | None:
        """Why ``process`` would drop ``item``; processors that filter override it."""
        return None


class Stage:
    """Ordered processors of one lifecycle stage."""

    def __init__(self, name: StageName, components: list[StageProcessor], enabled: bool = True):
        self.name = name
        self.components = components
        self.enabled = enabled

    def component(self, component_name: str) -> StageProcessor | None:
        for processor in self.components:
            if processor.component == component_name:
                return processor
        return None

    async def process(
        self,
        ctx: TenantContext,
        item: MemoryItem,
    ) -> tuple[list[MemoryItem], list[DroppedItem]]:
        """
        Run every enabled component over ``item`` and its fan-out.

        Returns:
            Surviving items (stage recorded in their history) and drops

        Raises:
            StageProcessingError: a component raised
            OperationTimeoutError: deadline or cancellation
        """
        stage_name = self.name.value
        if item.has_visited(stage_name):
            return [item], []
        if not self.enabled:
            return [item.with_stage(stage_name)], []

        current = [item]
        dropped: list[DroppedItem] = []

        for processor in self.components:
            if not processor.options.enabled:
                continue

            survivors: list[MemoryItem] = []
            for entry in current:
                ctx.check()
                try:
                    result = await processor.process(ctx, entry)
                except (OperationTimeoutError, StageProcessingError):
                    raise
                except Exception as e:
                    logger.error(
                        "Stage processor failed",
                        tenant_id=ctx.tenant_id,
                        item_id=entry.id,
                        stage=stage_name,
                        component=processor.component,
                        error=str(e),
                    )
                    raise StageProcessingError(stage_name, processor.component, e) from e

                if result is None:
                    dropped.append(
                        DroppedItem(
                            item=entry,
                            stage_name=stage_name,
                            component_name=processor.component,
                            reason=processor.drop_reason(ctx, entry),
                        )
                    )
                    logger.debug(
                        "Item dropped",
                        item_id=entry.id,
                        stage=stage_name,
                        component=processor.component,
                    )
                elif isinstance(result, list):
                    survivors.extend(result)
                else:
                    survivors.append(result)

            current = survivors
            if not current:
                break

        return [entry.with_stage(stage_name) for entry in current], dropped

    def get_metrics(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "components": {p.component: p.get_metrics() for p in self.components},
        }

"""
Utilization stage: RAG context assembly, sliding windows, grounding checks.
"""

import structlog
from pydantic import Field, model_validator

from mlo.context import TenantContext
from mlo.engine.fields import text_of
from mlo.engine.stages.acquisition import TRUNCATION_MARKER, truncate_words
from mlo.engine.stages.base import ProcessorOptions, ProcessResult, StageProcessor
from mlo.models.memory import ContextResult, MemoryItem
from mlo.models.profile import StageName

logger = structlog.get_logger(__name__)


class RAGOptions(ProcessorOptions):
    max_retrieved_items: int = Field(default=3, ge=1)
    context_window: int = Field(default=1000, ge=1)
    snippet_length: int = Field(default=200, ge=1)
    separator: str = "\n\n"


class SimpleRAG(StageProcessor):
    """
    Context assembly for retrieval-augmented generation.

    ``process`` attaches a bounded ``context_snippet``; ``generate_context``
    joins ranked items into one string within ``max_length``, cutting the
    lowest-ranked items first.
    """

    stage = StageName.UTILIZATION
    component = "rag"
    variant = "SimpleRAG"
    options_model = RAGOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        snippet = truncate_words(" ".join(text_of(item.data).split()), self.options.snippet_length)
        return item.with_metadata(context_snippet=snippet)

    def generate_context(
        self,
        query: str,
        ranked_items: list[MemoryItem],
        max_length: int | None = None,
    ) -> ContextResult:
        """
        Args:
            query: Query the items were ranked for (logged only)
            ranked_items: Best match first
            max_length: Character budget (defaults to ``context_window``)
        """
        budget = max_length or self.options.context_window
        separator = self.options.separator
        selected = ranked_items[: self.options.max_retrieved_items]
        sections = [self._section(item) for item in selected]
        truncated_flags = [False] * len(sections)

        def total() -> int:
            kept = [s for s in sections if s]
            return sum(len(s) for s in kept) + len(separator) * max(0, len(kept) - 1)

        for index in range(len(sections) - 1, -1, -1):
            excess = total() - budget
            if excess <= 0:
                break
            section = sections[index]
            keep = len(section) - excess
            if keep > len(TRUNCATION_MARKER):
                sections[index] = truncate_words(section, keep)
            else:
                sections[index] = ""
            truncated_flags[index] = True

        items = []
        for item, section, cut in zip(selected, sections, truncated_flags):
            if not section:
                continue
            items.append(item.with_metadata(truncated=True) if cut else item)

        context = separator.join(s for s in sections if s)
        logger.debug(
            "Context generated",
            query_length=len(query),
            items=len(items),
            length=len(context),
            truncated=any(truncated_flags),
        )
        return ContextResult(context=context, items=items, truncated=any(truncated_flags))

    @staticmethod
    def _section(item: MemoryItem) -> str:
        return " ".join(text_of(item.data).split())


class LongContextOptions(ProcessorOptions):
    window_size: int = Field(default=2000, ge=1)
    overlap_size: int = Field(default=200, ge=0)

    @model_validator(mode="after")
    def validate_overlap(self) -> "LongContextOptions":
        if self.overlap_size >= self.window_size:
            raise ValueError("overlap_size must be smaller than window_size")
        return self


class SlidingWindowContextManager(StageProcessor):
    """Splits long text into overlapping windows."""

    stage = StageName.UTILIZATION
    component = "long_context"
    variant = "SlidingWindowContextManager"
    options_model = LongContextOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        text = text_of(item.data)
        if len(text) <= self.options.window_size:
            return item
        return item.with_metadata(context_windows=len(self.create_windows(text)))

    def create_windows(self, text: str) -> list[str]:
        size = self.options.window_size
        step = size - self.options.overlap_size
        if len(text) <= size:
            return [text] if text else []

        windows = []
        start = 0
        while True:
            windows.append(text[start : start + size])
            if start + size >= len(text):
                break
            start += step
        return windows


class HallucinationOptions(ProcessorOptions):
    grounding_threshold: float = Field(default=0.5, ge=0.0, le=1.0)


class SimpleHallucinationMitigator(StageProcessor):
    """
    Checks that derived content (summary, distilled facts) is grounded in
    the item's own text and flags items that are not.
    """

    stage = StageName.UTILIZATION
    component = "hallucination_mitigation"
    variant = "SimpleHallucinationMitigator"
    options_model = HallucinationOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        derived = [item.metadata.get("summary") or ""]
        derived.extend(item.metadata.get("distilled_facts") or [])
        derived_text = " ".join(d for d in derived if d)
        if not derived_text.strip():
            return item

        grounding = self.check_grounding(derived_text, [text_of(item.data)])
        if not grounding["grounded"]:
            logger.warning("Derived content poorly grounded", item_id=item.id, score=grounding["score"])
        return item.with_metadata(grounding=grounding)

    def check_grounding(self, claim: str, sources: list[str]) -> dict:
        """Fraction of the claim's significant terms found in the sources."""
        score = self.scorer.term_overlap(claim, " ".join(sources))
        return {
            "score": round(score, 4),
            "grounded": score >= self.options.grounding_threshold,
        }

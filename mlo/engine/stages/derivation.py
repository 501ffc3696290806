"""
Derivation stage: reflection, summarization, distillation, forgetting.

Processors here only attach derived metadata. Forgetting marks items with a
TTL; deletion happens later through ``purge_expired``.
"""

import math
import re
from collections import Counter
from datetime import timedelta
from typing import Literal

import structlog
from pydantic import Field

from mlo.context import TenantContext
from mlo.engine.fields import flatten_fields, text_of
from mlo.engine.stages.acquisition import truncate_words
from mlo.engine.stages.base import ProcessorOptions, ProcessResult, StageProcessor
from mlo.errors import LLMError
from mlo.models.memory import MemoryItem, utcnow
from mlo.models.profile import StageName

logger = structlog.get_logger(__name__)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_MISUNDERSTANDING_CUES = (
    "i meant",
    "that's not what",
    "that is not what",
    "misunderstood",
    "not what i asked",
    "let me clarify",
)


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


# =============================================================================
# Reflection
# =============================================================================


class ReflectionOptions(ProcessorOptions):
    max_key_terms: int = Field(default=5, ge=1)
    track_misunderstandings: bool = False


class ConversationReflection(StageProcessor):
    """Attaches lightweight insights: key terms, questions, misunderstandings."""

    stage = StageName.DERIVATION
    component = "reflection"
    variant = "ConversationReflection"
    options_model = ReflectionOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        text = text_of(item.data)
        if not text.strip():
            return item

        core = self.scorer.core_terms(text)
        terms = Counter(t for t in self.scorer.normalize(text).split() if t in core)
        insights = {
            "key_terms": [t for t, _ in terms.most_common(self.options.max_key_terms)],
            "questions": sum(1 for s in split_sentences(text) if s.endswith("?")),
        }
        if self.options.track_misunderstandings:
            lowered = text.lower()
            insights["misunderstandings"] = sum(lowered.count(cue) for cue in _MISUNDERSTANDING_CUES)

        return item.with_metadata(insights=insights)


# =============================================================================
# Summarization
# =============================================================================


class SummarizerOptions(ProcessorOptions):
    strategy: Literal["truncate", "dialogue"] = "truncate"
    max_summary_length: int = Field(default=200, ge=10)


class SimpleSummarizer(StageProcessor):
    """
    Extractive summary.

    - truncate: leading text cut on a word boundary
    - dialogue: first sentence of each line, then truncated
    """

    stage = StageName.DERIVATION
    component = "summarization"
    variant = "SimpleSummarizer"
    options_model = SummarizerOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        text = text_of(item.data).strip()
        if not text:
            return item
        return item.with_metadata(summary=self.summarize(text), summarized=True)

    def summarize(self, text: str) -> str:
        if self.options.strategy == "dialogue":
            firsts = []
            for line in text.splitlines():
                sentences = split_sentences(line)
                if sentences:
                    firsts.append(sentences[0])
            text = " ".join(firsts) or text
        return truncate_words(" ".join(text.split()), self.options.max_summary_length)


class LLMSummarizerOptions(ProcessorOptions):
    max_summary_length: int = Field(default=300, ge=10)
    min_input_length: int = Field(default=0, ge=0)


class LLMSummarizer(StageProcessor):
    """Abstractive summary through the injected LLM capability."""

    stage = StageName.DERIVATION
    component = "summarization"
    variant = "LLMSummarizer"
    options_model = LLMSummarizerOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        text = text_of(item.data).strip()
        if not text or len(text) < self.options.min_input_length:
            return item

        llm = self.deps.llm_service
        if llm is None:
            raise LLMError("LLMSummarizer requires an LLM service")

        summary = await llm.summarize(ctx, text, self.options.max_summary_length)
        return item.with_metadata(summary=summary, summarized=True)


# =============================================================================
# Distillation
# =============================================================================


class DistillerOptions(ProcessorOptions):
    max_facts: int = Field(default=5, ge=1)
    min_terms: int = Field(default=2, ge=1)


class SimpleDistiller(StageProcessor):
    """
    Extracts fact candidates.

    Structured payloads yield ``path: value`` facts; text yields its
    sentences with at least ``min_terms`` significant words.
    """

    stage = StageName.DERIVATION
    component = "distillation"
    variant = "SimpleDistiller"
    options_model = DistillerOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        if isinstance(item.data, (dict, list)):
            facts = [
                f"{path}: {value}"
                for path, value in flatten_fields(item.data).items()
                if value is not None and str(value).strip()
            ]
        else:
            facts = [
                s for s in split_sentences(text_of(item.data))
                if len(self.scorer.core_terms(s)) >= self.options.min_terms
            ]

        if not facts:
            return item
        return item.with_metadata(distilled_facts=facts[: self.options.max_facts])


# =============================================================================
# Forgetting
# =============================================================================


class ForgetterOptions(ProcessorOptions):
    decay_rate: float = Field(default=0.1, ge=0.0)
    time_window_hours: float = Field(default=24.0, gt=0.0)
    retention_threshold: float = Field(default=0.3, gt=0.0, le=1.0)


class TimeDecayForgetter(StageProcessor):
    """
    Exponential time decay: ``retention = exp(-decay_rate * age / window)``.

    Sets ``forget_at`` to the moment retention drops below the threshold and
    ``marked_for_deletion`` when that moment has already passed. Nothing is
    deleted here.
    """

    stage = StageName.DERIVATION
    component = "forgetting"
    variant = "TimeDecayForgetter"
    options_model = ForgetterOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        opts = self.options
        if opts.decay_rate == 0:
            return item

        windows = math.log(1.0 / opts.retention_threshold) / opts.decay_rate
        forget_at = item.metadata.created_at + timedelta(hours=opts.time_window_hours * windows)
        now = utcnow()

        return item.with_metadata(
            retention=round(self.retention(item, now), 4),
            forget_at=forget_at.isoformat(),
            marked_for_deletion=now >= forget_at,
        )

    def retention(self, item: MemoryItem, now=None) -> float:
        now = now or utcnow()
        age_hours = max(0.0, (now - item.metadata.created_at).total_seconds() / 3600)
        return math.exp(-self.options.decay_rate * age_hours / self.options.time_window_hours)

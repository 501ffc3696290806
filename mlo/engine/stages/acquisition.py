"""
Acquisition stage: filter, compress, consolidate.
"""

import json
from typing import Any

import structlog
from pydantic import Field

from mlo.context import TenantContext
from mlo.engine.fields import text_of
from mlo.engine.stages.base import ProcessorOptions, ProcessResult, StageProcessor
from mlo.models.memory import MemoryItem, next_sequence
from mlo.models.profile import StageName

logger = structlog.get_logger(__name__)

TRUNCATION_MARKER = "..."


def payload_size(data: Any) -> int:
    """Serialized length of a payload."""
    if isinstance(data, str):
        return len(data)
    return len(json.dumps(data, ensure_ascii=False, default=str, sort_keys=True))


def truncate_words(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut ``text`` to at most ``limit`` characters on a word boundary."""
    if len(text) <= limit:
        return text
    if limit <= len(marker):
        return text[:limit]

    cut = text[: limit - len(marker)]
    boundary = cut.rfind(" ")
    if boundary > 0:
        cut = cut[:boundary]
    return cut.rstrip() + marker


# =============================================================================
# Filter
# =============================================================================


class FilterOptions(ProcessorOptions):
    max_input_size: int = Field(default=2500, ge=1)
    tenant_isolation: bool = True
    allowed_tenants: list[str] = Field(default_factory=list)
    relevance_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    conversation_aware: bool = False
    research_mode: bool = False
    complexity_aware: bool = False


class TenantAwareFilter(StageProcessor):
    """
    Pure predicate: drops items owned by another tenant, oversized items,
    and items scoring below the relevance threshold.
    """

    stage = StageName.ACQUISITION
    component = "filter"
    variant = "TenantAwareFilter"
    options_model = FilterOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        reason = self.drop_reason(ctx, item)
        if reason is not None:
            logger.debug("Item filtered out", item_id=item.id, tenant_id=item.tenant_id, reason=reason)
            return None
        return item

    def drop_reason(self, ctx: TenantContext, item: MemoryItem) -> str | None:
        opts = self.options
        if opts.tenant_isolation and item.tenant_id != ctx.tenant_id:
            return "tenant_mismatch"
        if opts.allowed_tenants and item.tenant_id not in opts.allowed_tenants:
            return "tenant_not_allowed"

        size = payload_size(item.data)
        if size > opts.max_input_size:
            return "oversize"

        if self.relevance(item, size) < opts.relevance_threshold:
            return "low_relevance"
        return None

    def relevance(self, item: MemoryItem, size: int | None = None) -> float:
        """Relevance in [0, 1]; an explicit ``relevance`` metadata value wins."""
        explicit = item.metadata.get("relevance")
        if isinstance(explicit, (int, float)):
            return min(1.0, max(0.0, float(explicit)))

        if not text_of(item.data).strip():
            return 0.0

        opts = self.options
        intent = item.metadata.get("intent")
        score = 0.7
        if opts.conversation_aware and intent == "conversation":
            score += 0.1
        if opts.research_mode and intent == "research":
            score += 0.2
        if opts.complexity_aware:
            size = size if size is not None else payload_size(item.data)
            if size > 1000:
                score += 0.1
        return min(score, 1.0)


# =============================================================================
# Compressor
# =============================================================================


class CompressorOptions(ProcessorOptions):
    max_length: int = Field(default=500, ge=1)
    preserve_references: bool = False
    preserve_paths: list[str] = Field(default_factory=list)


class TextTruncationCompressor(StageProcessor):
    """
    Truncates text on word boundaries.

    Structured payloads keep their shape; string leaves share the length
    budget, except referenced field paths when ``preserve_references`` is on.
    """

    stage = StageName.ACQUISITION
    component = "compressor"
    variant = "TextTruncationCompressor"
    options_model = CompressorOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        original_size = payload_size(item.data)
        data = item.data

        if original_size > self.options.max_length:
            if isinstance(data, str):
                data = truncate_words(data, self.options.max_length)
            elif isinstance(data, (dict, list)):
                data = self._compress_structure(item)

        compressed_size = payload_size(data)
        compression = {
            "original_size": original_size,
            "compressed_size": compressed_size,
            "ratio": compressed_size / original_size if original_size else 1.0,
        }
        if compressed_size < original_size:
            logger.debug("Item compressed", item_id=item.id, **compression)
        return item.with_data(data, compression=compression)

    def _compress_structure(self, item: MemoryItem) -> Any:
        preserved = set(self.options.preserve_paths)
        if self.options.preserve_references:
            preserved.update(item.metadata.references)

        leaves = self._string_leaves(item.data, "", preserved)
        if not leaves:
            return item.data
        per_field = max(len(TRUNCATION_MARKER) + 1, self.options.max_length // len(leaves))
        return self._truncate(item.data, "", preserved, per_field)

    def _string_leaves(self, value: Any, path: str, preserved: set[str]) -> list[str]:
        if isinstance(value, dict):
            return [
                leaf
                for key, child in value.items()
                for leaf in self._string_leaves(child, f"{path}.{key}" if path else str(key), preserved)
            ]
        if isinstance(value, list):
            return [
                leaf
                for index, child in enumerate(value)
                for leaf in self._string_leaves(child, f"{path}.{index}" if path else str(index), preserved)
            ]
        if isinstance(value, str) and path not in preserved:
            return [path]
        return []

    def _truncate(self, value: Any, path: str, preserved: set[str], limit: int) -> Any:
        if isinstance(value, dict):
            return {
                key: self._truncate(child, f"{path}.{key}" if path else str(key), preserved, limit)
                for key, child in value.items()
            }
        if isinstance(value, list):
            return [
                self._truncate(child, f"{path}.{index}" if path else str(index), preserved, limit)
                for index, child in enumerate(value)
            ]
        if isinstance(value, str) and path not in preserved:
            return truncate_words(value, limit)
        return value


# =============================================================================
# Consolidator
# =============================================================================


class ConsolidatorOptions(ProcessorOptions):
    novelty_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


class NoveltyConsolidator(StageProcessor):
    """
    Groups the records of a batch payload and merges near-duplicates.

    An item whose data is a list fans out into one item per group, with ids
    ``"{parent}:{n}"``. Merged groups list their batch positions as
    ``"{parent}#{index}"`` in ``merged_from``. Any other payload passes through.
    """

    stage = StageName.ACQUISITION
    component = "consolidator"
    variant = "NoveltyConsolidator"
    options_model = ConsolidatorOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        if not isinstance(item.data, list) or not item.data:
            return item

        # Records are ordered by their position in the batch.
        records = [
            item.with_data(record, fan_out_parent=item.id, sequence=next_sequence()).with_id(f"{item.id}#{n}")
            for n, record in enumerate(item.data)
        ]
        groups: list[list[MemoryItem]] = []
        for record in records:
            for group in groups:
                if self.should_consolidate(group[0], record)["should_merge"]:
                    group.append(record)
                    break
            else:
                groups.append([record])

        children = [
            self.merge_items(group).with_id(f"{item.id}:{n}")
            for n, group in enumerate(groups)
        ]
        logger.debug(
            "Batch consolidated",
            item_id=item.id,
            records=len(records),
            groups=len(children),
        )
        return children

    def should_consolidate(self, a: MemoryItem, b: MemoryItem) -> dict[str, Any]:
        """Decide whether two items carry the same information."""
        if a.tenant_id != b.tenant_id:
            return {"should_merge": False, "similarity": 0.0, "reason": "different_tenants"}

        if a.data == b.data:
            return {"should_merge": True, "similarity": 1.0, "reason": "duplicate"}

        similarity = self.scorer.string_similarity(text_of(a.data), text_of(b.data))
        if similarity >= self.options.novelty_threshold:
            return {"should_merge": True, "similarity": similarity, "reason": "similar_content"}
        return {"should_merge": False, "similarity": similarity, "reason": "novel"}

    def merge_items(self, items: list[MemoryItem]) -> MemoryItem:
        """Concatenate data and union tags; the earliest item is the base."""
        if not items:
            raise ValueError("merge_items requires at least one item")
        if len(items) == 1:
            return items[0]

        ordered = sorted(items, key=lambda i: i.sort_key())
        base = ordered[0]

        if all(isinstance(i.data, str) for i in ordered):
            data: Any = "\n".join(i.data for i in ordered)
        else:
            data = []
            for i in ordered:
                if isinstance(i.data, list):
                    data.extend(i.data)
                else:
                    data.append(i.data)

        tags: list[str] = []
        for i in ordered:
            tags.extend(t for t in i.metadata.tags if t not in tags)

        return base.with_data(
            data,
            tags=tuple(tags),
            merged_from=[i.id for i in ordered],
        )

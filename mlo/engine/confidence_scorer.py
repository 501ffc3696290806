"""
Confidence Scorer

Blends three signals into a duplicate-likelihood score in [0, 1]:

- entity:     fraction of mapped entity fields present on both sides that
              resolve to the same entity
- exact:      fraction of shared field paths holding equal values
- structural: Jaccard of field-path sets, partial credit on type mismatch

Weights come from settings (0.6 / 0.25 / 0.15 by default) and are
renormalized over the signals that apply, so an object pair without entity
mappings is scored on exact + structural alone.
"""

from typing import Any

import structlog

from mlo.config import Settings, get_settings
from mlo.context import TenantContext
from mlo.engine.entity_aligner import EntityAligner
from mlo.engine.fields import flatten_fields
from mlo.engine.similarity import SimilarityScorer

logger = structlog.get_logger(__name__)


class ConfidenceScorer:
    """Duplicate-likelihood scoring between two payloads."""

    def __init__(
        self,
        aligner: EntityAligner,
        scorer: SimilarityScorer | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.aligner = aligner
        self.scorer = scorer or aligner.scorer
        self.weights = self.settings.confidence_weights

    async def calculate_confidence(
        self,
        ctx: TenantContext,
        candidate: Any,
        existing: Any,
        entity_mappings: dict[str, str] | None = None,
    ) -> float:
        """
        Score how likely ``candidate`` duplicates ``existing``.

        Returns 0.0 when the two payloads share no field path.
        """
        signals = await self.explain(ctx, candidate, existing, entity_mappings)
        if not signals:
            return 0.0

        total_weight = sum(self.weights[name] for name in signals)
        if total_weight == 0:
            return 0.0

        score = sum(self.weights[name] * value for name, value in signals.items()) / total_weight
        return min(1.0, max(0.0, score))

    async def explain(
        self,
        ctx: TenantContext,
        candidate: Any,
        existing: Any,
        entity_mappings: dict[str, str] | None = None,
    ) -> dict[str, float]:
        """Individual signal values; empty when nothing is comparable."""
        fields_a = flatten_fields(candidate)
        fields_b = flatten_fields(existing)
        shared = set(fields_a) & set(fields_b)
        if not shared:
            return {}

        signals: dict[str, float] = {}

        entity_signal = await self._entity_signal(ctx, fields_a, fields_b, entity_mappings or {})
        if entity_signal is not None:
            signals["entity"] = entity_signal

        equal = sum(1 for path in shared if fields_a[path] == fields_b[path])
        signals["exact"] = equal / len(shared)

        signals["structural"] = self.scorer.structural_similarity(
            fields_a,
            fields_b,
            self.settings.structural_type_mismatch_weight,
        )

        logger.debug("Confidence signals", tenant_id=ctx.tenant_id, **signals)
        return signals

    async def _entity_signal(
        self,
        ctx: TenantContext,
        fields_a: dict[str, Any],
        fields_b: dict[str, Any],
        entity_mappings: dict[str, str],
    ) -> float | None:
        # A mapping only counts when both payloads carry a value for it.
        paths = [
            p for p in entity_mappings
            if _is_text(fields_a.get(p)) and _is_text(fields_b.get(p))
        ]
        if not paths:
            return None

        same = 0
        for path in paths:
            value_a = fields_a[path]
            value_b = fields_b[path]
            entity_type = entity_mappings[path]
            match_a = await self.aligner.lookup(ctx, str(value_a), entity_type)
            match_b = await self.aligner.lookup(ctx, str(value_b), entity_type)
            if match_a is not None and match_b is not None:
                same += match_a.entity.entity_id == match_b.entity.entity_id
            elif match_a is None and match_b is None:
                # Neither side is known yet; fall back to canonical form equality.
                same += self.scorer.normalize(str(value_a)) == self.scorer.normalize(str(value_b))

        return same / len(paths)


def _is_text(value: Any) -> bool:
    return value is not None and str(value).strip() != ""

"""
Encoding stage: attention over conversation turns, modality fusion.
"""

import re
from typing import Any

import structlog
from pydantic import Field

from mlo.context import TenantContext
from mlo.engine.fields import text_of
from mlo.engine.stages.base import ProcessorOptions, ProcessResult, StageProcessor
from mlo.models.memory import MemoryItem
from mlo.models.profile import StageName

logger = structlog.get_logger(__name__)

_SPEAKER_LINE = re.compile(r"^\s*([A-Za-z][\w .-]{0,40}?)\s*:\s*(.+)$")


class AttentionOptions(ProcessorOptions):
    pass_through: bool = False
    speaker_tracking: bool = True
    turn_boundaries: bool = True


class ConversationAttention(StageProcessor):
    """
    Weights conversation turns by how many significant terms they carry.

    Turns come from a list of ``{"speaker", "text"}`` records or from
    ``"Speaker: text"`` lines. Payloads without turns pass through.
    """

    stage = StageName.ENCODING
    component = "attention"
    variant = "ConversationAttention"
    options_model = AttentionOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        if self.options.pass_through:
            return item

        turns = self.extract_turns(item.data)
        if not turns:
            return item

        term_counts = [len(self.scorer.core_terms(text)) for _, text in turns]
        total = sum(term_counts)
        weights = [
            round(count / total, 4) if total else round(1 / len(turns), 4)
            for count in term_counts
        ]

        attention: dict[str, Any] = {"turns": len(turns), "weights": weights}
        if self.options.speaker_tracking:
            speakers: list[str] = []
            for speaker, _ in turns:
                if speaker and speaker not in speakers:
                    speakers.append(speaker)
            attention["speakers"] = speakers
        if self.options.turn_boundaries:
            attention["focus_turn"] = max(range(len(turns)), key=lambda i: weights[i])

        return item.with_metadata(attention=attention)

    @staticmethod
    def extract_turns(data: Any) -> list[tuple[str | None, str]]:
        if isinstance(data, list):
            turns = []
            for entry in data:
                if isinstance(entry, dict) and isinstance(entry.get("text"), str):
                    turns.append((entry.get("speaker"), entry["text"]))
            return turns

        if isinstance(data, dict) and isinstance(data.get("turns"), list):
            return ConversationAttention.extract_turns(data["turns"])

        if isinstance(data, str):
            turns = []
            for line in data.splitlines():
                match = _SPEAKER_LINE.match(line)
                if match:
                    turns.append((match.group(1).strip(), match.group(2).strip()))
            return turns if len(turns) > 1 else []

        return []


class FusionOptions(ProcessorOptions):
    modalities: list[str] = Field(
        default_factory=lambda: ["text", "conversation", "code", "research"],
    )
    separator: str = "\n"


class ModalityFusion(StageProcessor):
    """
    Fuses modality-tagged parts into one text representation.

    ``data["parts"]`` holds ``{"modality", "content"}`` records. Parts with a
    recognized modality are joined into ``data["fused"]``; the rest stay in
    ``data["parts"]`` unchanged.
    """

    stage = StageName.ENCODING
    component = "fusion"
    variant = "ModalityFusion"
    options_model = FusionOptions

    async def _process(self, ctx: TenantContext, item: MemoryItem) -> ProcessResult:
        if not isinstance(item.data, dict) or not isinstance(item.data.get("parts"), list):
            return item

        recognized = set(self.options.modalities)
        fused: list[str] = []
        fused_modalities: list[str] = []
        remaining: list[Any] = []

        for part in item.data["parts"]:
            modality = part.get("modality") if isinstance(part, dict) else None
            if modality in recognized:
                fused.append(text_of(part.get("content")))
                if modality not in fused_modalities:
                    fused_modalities.append(modality)
            else:
                remaining.append(part)

        if not fused:
            return item

        data = {**item.data, "parts": remaining}
        previous = data.get("fused")
        data["fused"] = self.options.separator.join(
            ([previous] if isinstance(previous, str) and previous else []) + fused
        )

        logger.debug(
            "Modalities fused",
            item_id=item.id,
            fused=len(fused),
            passed_through=len(remaining),
        )
        return item.with_data(
            data,
            fusion={
                "fused_parts": len(fused),
                "passed_through": len(remaining),
                "modalities": fused_modalities,
            },
        )

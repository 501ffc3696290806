"""
Tests for derivation processors
"""

from datetime import datetime, timedelta

import pytest

from mlo.engine.stages.base import StageDependencies
from mlo.engine.stages.derivation import (
    ConversationReflection,
    LLMSummarizer,
    SimpleDistiller,
    SimpleSummarizer,
    TimeDecayForgetter,
    split_sentences,
)
from mlo.errors import LLMError
from mlo.models.memory import utcnow
from mlo.services.llm import LLMService

from tests.mocks.llm import MockLLMCaller


def test_split_sentences():
    assert split_sentences("One. Two? Three!\nFour") == ["One.", "Two?", "Three!", "Four"]


class TestConversationReflection:
    @pytest.mark.asyncio
    async def test_key_terms_and_questions(self, stage_deps, tenant_ctx, make_item):
        reflection = ConversationReflection(deps=stage_deps)

        result = await reflection.process(tenant_ctx, make_item("Where is Riga? Riga is in Latvia."))

        insights = result.metadata.get("insights")
        assert insights["key_terms"][0] == "riga"
        assert insights["questions"] == 1
        assert "misunderstandings" not in insights

    @pytest.mark.asyncio
    async def test_tracks_misunderstandings(self, stage_deps, tenant_ctx, make_item):
        reflection = ConversationReflection({"track_misunderstandings": True}, stage_deps)

        result = await reflection.process(tenant_ctx, make_item("No, I meant Tallinn."))

        assert result.metadata.get("insights")["misunderstandings"] == 1


class TestSimpleSummarizer:
    @pytest.mark.asyncio
    async def test_truncate_strategy(self, stage_deps, tenant_ctx, make_item):
        summarizer = SimpleSummarizer({"max_summary_length": 20}, stage_deps)

        result = await summarizer.process(
            tenant_ctx, make_item("The quick brown fox jumps over the lazy dog")
        )

        assert len(result.metadata.get("summary")) <= 20
        assert result.metadata.summarized is True

    def test_dialogue_strategy(self, stage_deps):
        summarizer = SimpleSummarizer({"strategy": "dialogue"}, stage_deps)

        summary = summarizer.summarize("Alice: Hi there. How are you?\nBob: Fine. Thanks.")

        assert summary == "Alice: Hi there. Bob: Fine."

    @pytest.mark.asyncio
    async def test_empty_text_untouched(self, stage_deps, tenant_ctx, make_item):
        item = make_item("   ")

        assert await SimpleSummarizer(deps=stage_deps).process(tenant_ctx, item) == item


class TestLLMSummarizer:
    @pytest.mark.asyncio
    async def test_uses_llm_service(self, test_settings, scorer, llm_service, mock_llm_caller, tenant_ctx, make_item):
        deps = StageDependencies(settings=test_settings, scorer=scorer, llm_service=llm_service)
        summarizer = LLMSummarizer(deps=deps)

        result = await summarizer.process(tenant_ctx, make_item("Riga is the capital of Latvia."))

        assert result.metadata.get("summary") == "A short summary."
        assert result.metadata.summarized is True
        assert "Riga is the capital of Latvia." in mock_llm_caller.last_prompt

    @pytest.mark.asyncio
    async def test_requires_llm_service(self, stage_deps, tenant_ctx, make_item):
        with pytest.raises(LLMError):
            await LLMSummarizer(deps=stage_deps).process(tenant_ctx, make_item("text"))

    @pytest.mark.asyncio
    async def test_short_input_skipped(self, test_settings, scorer, llm_service, mock_llm_caller, tenant_ctx, make_item):
        deps = StageDependencies(settings=test_settings, scorer=scorer, llm_service=llm_service)
        summarizer = LLMSummarizer({"min_input_length": 100}, deps)
        item = make_item("short")

        assert await summarizer.process(tenant_ctx, item) == item
        assert mock_llm_caller.call_count == 0

    @pytest.mark.asyncio
    async def test_provider_failure_surfaces(self, test_settings, scorer, tenant_ctx, make_item):
        caller = MockLLMCaller(always_fail=True)
        deps = StageDependencies(
            settings=test_settings,
            scorer=scorer,
            llm_service=LLMService(caller, settings=test_settings),
        )

        with pytest.raises(LLMError):
            await LLMSummarizer(deps=deps).process(tenant_ctx, make_item("some text"))
        assert caller.call_count == test_settings.retry_attempts


class TestSimpleDistiller:
    @pytest.mark.asyncio
    async def test_structured_facts(self, stage_deps, tenant_ctx, make_item):
        distiller = SimpleDistiller(deps=stage_deps)

        result = await distiller.process(tenant_ctx, make_item({"city": "Riga", "country": "Latvia", "note": ""}))

        assert result.metadata.get("distilled_facts") == ["city: Riga", "country: Latvia"]

    @pytest.mark.asyncio
    async def test_text_facts_need_enough_terms(self, stage_deps, tenant_ctx, make_item):
        distiller = SimpleDistiller({"max_facts": 1}, stage_deps)

        result = await distiller.process(
            tenant_ctx, make_item("Ok. Riga is big. The capital of Latvia is Riga.")
        )

        assert result.metadata.get("distilled_facts") == ["Riga is big."]


class TestTimeDecayForgetter:
    @pytest.mark.asyncio
    async def test_fresh_item_gets_future_ttl(self, stage_deps, tenant_ctx, make_item):
        forgetter = TimeDecayForgetter(deps=stage_deps)
        item = make_item("fact")

        result = await forgetter.process(tenant_ctx, item)

        forget_at = datetime.fromisoformat(result.metadata.get("forget_at"))
        assert forget_at > item.metadata.created_at + timedelta(hours=24)
        assert result.metadata.get("marked_for_deletion") is False
        assert result.metadata.get("retention") == pytest.approx(1.0, abs=1e-3)

    @pytest.mark.asyncio
    async def test_old_item_marked(self, stage_deps, tenant_ctx, make_item):
        forgetter = TimeDecayForgetter({"decay_rate": 1.0, "time_window_hours": 1}, stage_deps)
        item = make_item("fact", created_at=utcnow() - timedelta(hours=5))

        result = await forgetter.process(tenant_ctx, item)

        assert result.metadata.get("marked_for_deletion") is True
        assert result.metadata.get("retention") < 0.3

    @pytest.mark.asyncio
    async def test_zero_decay_is_noop(self, stage_deps, tenant_ctx, make_item):
        item = make_item("fact")

        assert await TimeDecayForgetter({"decay_rate": 0}, stage_deps).process(tenant_ctx, item) == item

"""
Tests for encoding processors
"""

import pytest

from mlo.engine.stages.encoding import ConversationAttention, ModalityFusion


class TestConversationAttention:
    @pytest.mark.asyncio
    async def test_weights_turns_by_content(self, stage_deps, tenant_ctx, make_item):
        attention = ConversationAttention(deps=stage_deps)
        item = make_item([
            {"speaker": "alice", "text": "Riga is the capital of Latvia"},
            {"speaker": "bob", "text": "yes"},
        ])

        result = await attention.process(tenant_ctx, item)

        meta = result.metadata.get("attention")
        assert meta["turns"] == 2
        assert meta["weights"] == [0.75, 0.25]
        assert meta["speakers"] == ["alice", "bob"]
        assert meta["focus_turn"] == 0

    def test_extracts_speaker_lines(self):
        turns = ConversationAttention.extract_turns("Alice: hello there\nBob: hi")

        assert turns == [("Alice", "hello there"), ("Bob", "hi")]

    def test_single_labelled_line_is_not_a_conversation(self):
        assert ConversationAttention.extract_turns("Note: buy milk") == []

    def test_turns_key(self):
        data = {"turns": [{"speaker": "a", "text": "x"}, {"text": "y"}]}

        assert ConversationAttention.extract_turns(data) == [("a", "x"), (None, "y")]

    @pytest.mark.asyncio
    async def test_pass_through(self, stage_deps, tenant_ctx, make_item):
        attention = ConversationAttention({"pass_through": True}, stage_deps)
        item = make_item("Alice: hello there\nBob: hi")

        assert await attention.process(tenant_ctx, item) == item

    @pytest.mark.asyncio
    async def test_speaker_tracking_off(self, stage_deps, tenant_ctx, make_item):
        attention = ConversationAttention({"speaker_tracking": False, "turn_boundaries": False}, stage_deps)

        result = await attention.process(tenant_ctx, make_item("Alice: hello there\nBob: hi"))

        assert set(result.metadata.get("attention")) == {"turns", "weights"}


class TestModalityFusion:
    @pytest.mark.asyncio
    async def test_fuses_recognized_parts(self, stage_deps, tenant_ctx, make_item):
        fusion = ModalityFusion(deps=stage_deps)
        image = {"modality": "image", "content": "base64..."}
        item = make_item({
            "parts": [
                {"modality": "text", "content": "hello"},
                image,
                {"modality": "code", "content": "print(1)"},
            ]
        })

        result = await fusion.process(tenant_ctx, item)

        assert result.data["fused"] == "hello\nprint(1)"
        assert result.data["parts"] == [image]
        assert result.metadata.get("fusion") == {
            "fused_parts": 2,
            "passed_through": 1,
            "modalities": ["text", "code"],
        }

    @pytest.mark.asyncio
    async def test_restricted_modalities(self, stage_deps, tenant_ctx, make_item):
        fusion = ModalityFusion({"modalities": ["text"]}, stage_deps)
        item = make_item({"parts": [{"modality": "code", "content": "x = 1"}]})

        assert await fusion.process(tenant_ctx, item) == item

    @pytest.mark.asyncio
    async def test_payload_without_parts_untouched(self, stage_deps, tenant_ctx, make_item):
        item = make_item("plain text")

        assert await ModalityFusion(deps=stage_deps).process(tenant_ctx, item) == item

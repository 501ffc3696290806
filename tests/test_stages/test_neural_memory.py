"""
Tests for AssociativeMemory
"""

import pytest

from mlo.engine.stages.neural_memory import AssociativeMemory
from mlo.models.association import Association


@pytest.fixture
def memory(stage_deps):
    return AssociativeMemory(deps=stage_deps)


class TestCues:
    @pytest.mark.asyncio
    async def test_attaches_sorted_cues(self, memory, tenant_ctx, make_item):
        result = await memory.process(tenant_ctx, make_item("Riga is the capital of Latvia"))

        assert result.metadata.get("association_cues") == ["capital", "latvia", "riga"]

    @pytest.mark.asyncio
    async def test_max_cues(self, stage_deps, tenant_ctx, make_item):
        memory = AssociativeMemory({"max_cues": 2}, stage_deps)

        result = await memory.process(tenant_ctx, make_item("Riga is the capital of Latvia"))

        assert result.metadata.get("association_cues") == ["capital", "latvia"]


class TestBuildAssociations:
    def test_siblings_get_floor_strength(self, memory, make_item):
        a = make_item("x", item_id="p:0", association_cues=["latvia", "riga"])
        b = make_item("y", item_id="p:1", association_cues=["tallinn"])

        [edge] = memory.build_associations([a, b])

        assert edge.association_type == "co_remembered"
        assert edge.strength == 0.5
        assert edge.shared_cues == []

    def test_related_items_share_cues(self, memory, make_item):
        new = make_item("x", item_id="new", association_cues=["capital", "latvia", "riga"])
        old = make_item("y", item_id="old", association_cues=["latvia", "riga"])
        unrelated = make_item("z", item_id="other", association_cues=["tallinn"])

        [edge] = memory.build_associations([new], related=[old, unrelated, new])

        assert (edge.from_item_id, edge.to_item_id) == ("new", "old")
        assert edge.association_type == "shared_cues"
        assert edge.strength == pytest.approx(2 / 3)
        assert edge.shared_cues == ["latvia", "riga"]
        assert edge.bidirectional is True

    def test_min_shared_cues(self, stage_deps, make_item):
        memory = AssociativeMemory({"min_shared_cues": 2}, stage_deps)
        new = make_item("x", item_id="new", association_cues=["latvia", "riga"])
        old = make_item("y", item_id="old", association_cues=["riga", "port"])

        assert memory.build_associations([new], related=[old]) == []

    def test_never_crosses_tenants(self, memory, make_item):
        new = make_item("x", item_id="new", association_cues=["riga"])
        foreign = make_item("y", item_id="old", tenant_id="tenant-b", association_cues=["riga"])

        assert memory.build_associations([new], related=[foreign]) == []


class TestUpdateStrength:
    def test_clamped(self, memory):
        edge = Association(tenant_id="t", from_item_id="a", to_item_id="b", strength=0.9)

        update = memory.update_association_strength(edge, 0.5)

        assert update.old_strength == 0.9
        assert update.new_strength == 1.0
        assert update.updated is True
        assert update.association.strength == 1.0
        assert edge.strength == 0.9

    def test_no_change_at_bound(self, memory):
        edge = Association(tenant_id="t", from_item_id="a", to_item_id="b", strength=0.0)

        assert memory.update_association_strength(edge, -0.3).updated is False

"""
Tests for EntityRepository
"""

import asyncio

import pytest

from mlo.errors import ConflictError
from mlo.models.entity import AlignmentConfidence, Entity, EntityAlignment


def make_entity(name="riga", entity_type="city", tenant_id="tenant-a", aliases=None):
    return Entity(
        tenant_id=tenant_id,
        entity_type=entity_type,
        canonical_name=name,
        aliases=set(aliases or []),
    )


def make_alignment(entity, value="Riga"):
    return EntityAlignment(
        entity_id=entity.entity_id,
        canonical_name=entity.canonical_name,
        original_value=value,
        confidence=AlignmentConfidence.HIGH,
    )


class TestEntities:
    @pytest.mark.asyncio
    async def test_create_and_read(self, entity_repository):
        entity = await entity_repository.create(make_entity(aliases=["Riga"]))

        by_id = await entity_repository.get_by_id(entity.entity_id, "tenant-a")
        by_name = await entity_repository.get_by_name("tenant-a", "city", "riga")

        assert by_id == entity
        assert by_name.entity_id == entity.entity_id

    @pytest.mark.asyncio
    async def test_duplicate_key_conflicts(self, entity_repository):
        await entity_repository.create(make_entity())

        with pytest.raises(ConflictError) as exc_info:
            await entity_repository.create(make_entity())

        assert exc_info.value.key == ("tenant-a", "city", "riga")

    @pytest.mark.asyncio
    async def test_same_name_other_tenant_allowed(self, entity_repository):
        await entity_repository.create(make_entity())
        other = await entity_repository.create(make_entity(tenant_id="tenant-b"))

        assert await entity_repository.get_by_id(other.entity_id, "tenant-a") is None

    @pytest.mark.asyncio
    async def test_list_by_type_oldest_first(self, entity_repository):
        first = await entity_repository.create(make_entity("riga"))
        second = await entity_repository.create(make_entity("tallinn"))
        await entity_repository.create(make_entity("latvia", entity_type="country"))

        cities = await entity_repository.list_by_type("tenant-a", "city")

        assert [e.entity_id for e in cities] == [first.entity_id, second.entity_id]

    @pytest.mark.asyncio
    async def test_add_alias(self, entity_repository):
        entity = await entity_repository.create(make_entity(aliases=["Riga"]))

        assert await entity_repository.add_alias(entity.entity_id, "tenant-a", "Rīga") is True
        assert await entity_repository.add_alias(entity.entity_id, "tenant-a", "Rīga") is False
        assert await entity_repository.add_alias(entity.entity_id, "tenant-b", "RIGA") is False

        stored = await entity_repository.get_by_id(entity.entity_id, "tenant-a")
        assert stored.aliases == {"Riga", "Rīga"}

    @pytest.mark.asyncio
    async def test_returned_entities_are_copies(self, entity_repository):
        entity = await entity_repository.create(make_entity())
        entity.aliases.add("mutated")

        stored = await entity_repository.get_by_id(entity.entity_id, "tenant-a")
        assert "mutated" not in stored.aliases

    @pytest.mark.asyncio
    async def test_set_embedding(self, entity_repository):
        entity = await entity_repository.create(make_entity())

        await entity_repository.set_embedding(entity.entity_id, "tenant-a", [1.0, 0.0])

        assert (await entity_repository.get_by_id(entity.entity_id, "tenant-a")).embedding == [1.0, 0.0]

    @pytest.mark.asyncio
    async def test_remove_alias(self, entity_repository):
        entity = await entity_repository.create(make_entity(aliases=["Riga", "Rīga"]))

        assert await entity_repository.remove_alias(entity.entity_id, "tenant-b", "Rīga") is False
        assert await entity_repository.remove_alias(entity.entity_id, "tenant-a", "Rīga") is True
        assert await entity_repository.remove_alias(entity.entity_id, "tenant-a", "Rīga") is False

        stored = await entity_repository.get_by_id(entity.entity_id, "tenant-a")
        assert stored.aliases == {"Riga"}

    @pytest.mark.asyncio
    async def test_delete_frees_key(self, entity_repository):
        entity = await entity_repository.create(make_entity())

        assert await entity_repository.delete(entity.entity_id, "tenant-b") is False
        assert await entity_repository.delete(entity.entity_id, "tenant-a") is True
        assert await entity_repository.get_by_name("tenant-a", "city", "riga") is None

        recreated = await entity_repository.create(make_entity())
        assert recreated.entity_id != entity.entity_id


class TestCreationLocks:
    @pytest.mark.asyncio
    async def test_lock_dropped_after_release(self, entity_repository):
        key = ("tenant-a", "city", "riga")

        async with entity_repository.lock_for(key):
            assert entity_repository.pending_locks() == 1

        assert entity_repository.pending_locks() == 0

    @pytest.mark.asyncio
    async def test_lock_kept_while_waiters_remain(self, entity_repository):
        key = ("tenant-a", "city", "riga")
        order = []

        async def worker(name, hold):
            async with entity_repository.lock_for(key):
                order.append(name)
                await asyncio.sleep(hold)

        first = asyncio.create_task(worker("first", 0.05))
        await asyncio.sleep(0)
        second = asyncio.create_task(worker("second", 0))
        await asyncio.sleep(0)

        assert entity_repository.pending_locks() == 1
        await asyncio.gather(first, second)

        assert order == ["first", "second"]
        assert entity_repository.pending_locks() == 0

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self, entity_repository):
        key = ("tenant-a", "city", "riga")

        with pytest.raises(RuntimeError):
            async with entity_repository.lock_for(key):
                raise RuntimeError("boom")

        assert entity_repository.pending_locks() == 0


class TestAlignments:
    @pytest.mark.asyncio
    async def test_upsert_is_unique_per_field(self, entity_repository):
        riga = await entity_repository.create(make_entity("riga"))
        tallinn = await entity_repository.create(make_entity("tallinn"))

        await entity_repository.upsert_alignment("tenant-a", "m1", "city", make_alignment(riga))
        await entity_repository.upsert_alignment("tenant-a", "m1", "city", make_alignment(tallinn, "Tallinn"))

        records = await entity_repository.get_alignments_for_memory("tenant-a", "m1")
        assert len(records) == 1
        assert records[0].alignment.entity_id == tallinn.entity_id

    @pytest.mark.asyncio
    async def test_lookups(self, entity_repository):
        riga = await entity_repository.create(make_entity("riga"))
        await entity_repository.upsert_alignment("tenant-a", "m1", "city", make_alignment(riga))
        await entity_repository.upsert_alignment("tenant-a", "m2", "home", make_alignment(riga, "RIGA"))

        assert (await entity_repository.get_alignment("tenant-a", "m1", "city")).memory_key == "m1"
        assert len(await entity_repository.get_alignments_for_entity("tenant-a", riga.entity_id)) == 2
        assert await entity_repository.list_alignments("tenant-b") == []

    @pytest.mark.asyncio
    async def test_deletes(self, entity_repository):
        riga = await entity_repository.create(make_entity("riga"))
        for path in ("a", "b"):
            await entity_repository.upsert_alignment("tenant-a", "m1", path, make_alignment(riga))
        await entity_repository.upsert_alignment("tenant-a", "m2", "a", make_alignment(riga))

        assert await entity_repository.delete_alignment("tenant-a", "m2", "a") is True
        assert await entity_repository.delete_alignment("tenant-a", "m2", "a") is False
        assert await entity_repository.delete_alignments_for_memory("tenant-a", "m1") == 2
        assert await entity_repository.list_alignments("tenant-a") == []

    @pytest.mark.asyncio
    async def test_stats(self, entity_repository):
        riga = await entity_repository.create(make_entity("riga"))
        await entity_repository.create(make_entity("latvia", entity_type="country"))
        await entity_repository.create(make_entity("riga", tenant_id="tenant-b"))
        await entity_repository.upsert_alignment("tenant-a", "m1", "city", make_alignment(riga))

        stats = await entity_repository.get_entity_stats("tenant-a")

        assert stats.total_entities == 2
        assert stats.total_alignments == 1
        assert stats.entities_by_type == {"city": 1, "country": 1}

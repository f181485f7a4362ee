"""Integration tests for SQLAlchemyTagRepository against SQLite."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import CircularReferenceError, TagNotFoundError
from domain.entities.tag import LifeStatus, Tag, TagItem
from domain.entities.tag_type import TagType
from infrastructure.database.repositories.sqlalchemy_tag_repo import SQLAlchemyTagRepository

NOW = datetime(2025, 8, 14, 12, 0, 0)


async def _tag(
    repo: SQLAlchemyTagRepository,
    tag_type: TagType = TagType.BUNDLE,
    location_key_id: int | None = 1,
    **kwargs,
) -> Tag:
    number = await repo.get_next_tag_number(tag_type)
    return await repo.add(
        Tag(tag_type=tag_type, tag_number=number, location_key_id=location_key_id, **kwargs)
    )


class TestCrud:
    @pytest.mark.asyncio
    async def test_add_then_get_round_trip(self, repo: SQLAlchemyTagRepository):
        created = await repo.add(
            Tag(tag_type=TagType.TRANSPORT_BOX, tag_number=12, location_key_id=4)
        )

        fetched = await repo.get_by_id(created.id)

        assert created.id is not None
        assert fetched is not None
        assert fetched.tag_type == TagType.TRANSPORT_BOX
        assert fetched.tag_number == 12
        assert fetched.location_key_id == 4
        assert fetched.status == LifeStatus.ACTIVE
        assert fetched.created_by == "tester"
        assert fetched.is_empty

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, repo: SQLAlchemyTagRepository):
        assert await repo.get_by_id(404) is None

    @pytest.mark.asyncio
    async def test_get_by_number_and_type(self, repo: SQLAlchemyTagRepository):
        bundle = await _tag(repo, TagType.BUNDLE)
        await _tag(repo, TagType.BASKET)

        found = await repo.get_by_number_and_type(1, TagType.BUNDLE)

        assert found is not None
        assert found.id == bundle.id
        assert await repo.get_by_number_and_type(2, TagType.BUNDLE) is None

    @pytest.mark.asyncio
    async def test_next_number_is_per_type(self, repo: SQLAlchemyTagRepository):
        assert await repo.get_next_tag_number(TagType.WASH) == 1

        await _tag(repo, TagType.WASH)
        await _tag(repo, TagType.WASH)
        await _tag(repo, TagType.BASKET)

        assert await repo.get_next_tag_number(TagType.WASH) == 3
        assert await repo.get_next_tag_number(TagType.BASKET) == 2

    @pytest.mark.asyncio
    async def test_paging_covers_every_tag_once(self, repo: SQLAlchemyTagRepository):
        created = [await _tag(repo) for _ in range(5)]

        pages = [await repo.get_paged(page, 2) for page in (1, 2, 3, 4)]

        assert [len(page) for page in pages] == [2, 2, 1, 0]
        seen = [tag.id for page in pages for tag in page]
        assert seen == [tag.id for tag in created]

    @pytest.mark.asyncio
    async def test_update_persists_fields(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo)
        tag.status = LifeStatus.DEAD
        tag.location_key_id = 9

        updated = await repo.update(tag)

        assert updated.status == LifeStatus.DEAD
        assert updated.location_key_id == 9
        assert updated.updated_at is not None
        assert updated.updated_by == "tester"

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, repo: SQLAlchemyTagRepository):
        with pytest.raises(TagNotFoundError):
            await repo.update(Tag(tag_type=TagType.BUNDLE, tag_number=1, id=404))

    @pytest.mark.asyncio
    async def test_delete_releases_contents_and_placement(self, repo: SQLAlchemyTagRepository):
        parent = await _tag(repo, TagType.BASKET)
        tag = await _tag(repo)
        await repo.add_tag_to_tag(parent.id, tag.id, NOW, 1)
        await repo.add_unit_to_tag(tag.id, 101, NOW, 1)

        assert await repo.delete(tag.id) is True

        assert await repo.get_by_id(tag.id) is None
        assert await repo.is_unit_in_any_tag(101) is False
        assert await repo.is_tag_empty(parent.id) is True

    @pytest.mark.asyncio
    async def test_delete_missing_returns_false(self, repo: SQLAlchemyTagRepository):
        assert await repo.delete(404) is False


class TestQueries:
    @pytest.mark.asyncio
    async def test_by_type_and_location(self, repo: SQLAlchemyTagRepository):
        wash = await _tag(repo, TagType.WASH, location_key_id=3)
        await _tag(repo, TagType.BASKET, location_key_id=3)
        await _tag(repo, TagType.WASH, location_key_id=4)

        by_type = await repo.get_tags_by_type(TagType.WASH)
        by_location = await repo.get_tags_by_location(3)

        assert len(by_type) == 2
        assert [tag.id for tag in by_location][0] == wash.id
        assert len(by_location) == 2

    @pytest.mark.asyncio
    async def test_auto_tags(self, repo: SQLAlchemyTagRepository):
        await _tag(repo)
        auto = await _tag(repo, is_auto=True)

        assert [tag.id for tag in await repo.get_auto_tags()] == [auto.id]

    @pytest.mark.asyncio
    async def test_content_count_counts_every_kind(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo, TagType.INSTRUMENT_CONTAINER)
        child = await _tag(repo)
        await repo.add_unit_to_tag(tag.id, 101, NOW, 1)
        await repo.add_item_to_tag(tag.id, TagItem(1, 2, 3, count=4), NOW, 1)
        await repo.add_indicator_to_tag(tag.id, 55, NOW, 1)
        await repo.add_tag_to_tag(tag.id, child.id, NOW, 1)

        assert await repo.get_tag_content_count(tag.id) == 4
        assert await repo.is_tag_empty(tag.id) is False
        assert await repo.is_tag_empty(child.id) is True


class TestUnitPlacement:
    @pytest.mark.asyncio
    async def test_unit_lives_in_one_tag(self, repo: SQLAlchemyTagRepository):
        first = await _tag(repo)
        second = await _tag(repo)

        assert await repo.add_unit_to_tag(first.id, 101, NOW, 1) is True
        assert await repo.add_unit_to_tag(second.id, 101, NOW, 1) is True

        holders = await repo.get_tags_containing_unit(101)
        assert [tag.id for tag in holders] == [second.id]
        assert (await repo.get_by_id(first.id)).is_empty
        assert (await repo.get_by_id(second.id)).contents.units == [101]

    @pytest.mark.asyncio
    async def test_missing_tag_returns_false(self, repo: SQLAlchemyTagRepository):
        assert await repo.add_unit_to_tag(404, 101, NOW, 1) is False
        assert await repo.is_unit_in_any_tag(101) is False

    @pytest.mark.asyncio
    async def test_split_placements_coexist(self, repo: SQLAlchemyTagRepository):
        first = await _tag(repo)
        second = await _tag(repo)

        await repo.add_unit_to_tag(first.id, 101, NOW, 1, mark_as_split=True)
        await repo.add_unit_to_tag(second.id, 101, NOW, 1, mark_as_split=True)

        holders = await repo.get_tags_containing_unit(101)
        assert {tag.id for tag in holders} == {first.id, second.id}
        assert [tag.id for tag in await repo.get_linked_split_tags(first.id)] == [second.id]
        assert await repo.get_split_unit_serial_number_split_tag(101) == first.id

    @pytest.mark.asyncio
    async def test_plain_add_collapses_split_placements(self, repo: SQLAlchemyTagRepository):
        first = await _tag(repo)
        second = await _tag(repo)
        third = await _tag(repo)
        await repo.add_unit_to_tag(first.id, 101, NOW, 1, mark_as_split=True)
        await repo.add_unit_to_tag(second.id, 101, NOW, 1, mark_as_split=True)

        await repo.add_unit_to_tag(third.id, 101, NOW, 1)

        assert [tag.id for tag in await repo.get_tags_containing_unit(101)] == [third.id]
        assert await repo.get_split_unit_serial_number_split_tag(101) is None

    @pytest.mark.asyncio
    async def test_failed_add_keeps_previous_placement(
        self,
        repo: SQLAlchemyTagRepository,
        db_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ):
        first = await _tag(repo)
        await repo.add_unit_to_tag(first.id, 101, NOW, 1)
        db_session.expunge_all()

        # Skip the existence check so the insert hits the foreign key.
        monkeypatch.setattr(repo, "_lock_tags", AsyncMock(return_value=True))
        assert await repo.add_unit_to_tag(404, 101, NOW, 1) is False

        db_session.expunge_all()
        holders = await repo.get_tags_containing_unit(101)
        assert [tag.id for tag in holders] == [first.id]

    @pytest.mark.asyncio
    async def test_remove_unit(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo)
        await repo.add_unit_to_tag(tag.id, 101, NOW, 1)

        assert await repo.remove_unit_from_tag(tag.id, 101, NOW, 1) is True
        assert await repo.remove_unit_from_tag(tag.id, 101, NOW, 1) is False
        assert await repo.is_tag_empty(tag.id)

    @pytest.mark.asyncio
    async def test_content_mutation_stamps_tag(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo)

        await repo.add_unit_to_tag(tag.id, 101, NOW, 1)

        fetched = await repo.get_by_id(tag.id)
        assert fetched.updated_at == NOW
        assert fetched.updated_by == "tester"


class TestItemsAndIndicators:
    @pytest.mark.asyncio
    async def test_item_round_trip_keeps_count(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo, TagType.INSTRUMENT_CONTAINER)

        await repo.add_item_to_tag(tag.id, TagItem(1, 2, 3, count=4), NOW, 1)

        fetched = await repo.get_by_id(tag.id)
        assert fetched.contents.items == [TagItem(1, 2, 3)]
        assert fetched.contents.items[0].count == 4

    @pytest.mark.asyncio
    async def test_item_moves_between_tags(self, repo: SQLAlchemyTagRepository):
        first = await _tag(repo, TagType.INSTRUMENT_CONTAINER)
        second = await _tag(repo, TagType.INSTRUMENT_CONTAINER)

        await repo.add_item_to_tag(first.id, TagItem(1, 2, 3, count=1), NOW, 1)
        await repo.add_item_to_tag(second.id, TagItem(1, 2, 3, count=2), NOW, 1)

        holders = await repo.get_tags_containing_item(1, 2)
        assert [tag.id for tag in holders] == [second.id]
        assert await repo.is_item_in_any_tag(1, 2) is True
        assert await repo.is_item_in_any_tag(1, 9) is False

    @pytest.mark.asyncio
    async def test_items_with_other_lot_are_distinct(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo, TagType.INSTRUMENT_CONTAINER)

        await repo.add_item_to_tag(tag.id, TagItem(1, 2, 3), NOW, 1)
        await repo.add_item_to_tag(tag.id, TagItem(1, 2, 4), NOW, 1)

        assert (await repo.get_by_id(tag.id)).contents.item_count == 2

    @pytest.mark.asyncio
    async def test_remove_item_needs_exact_key(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo, TagType.INSTRUMENT_CONTAINER)
        await repo.add_item_to_tag(tag.id, TagItem(1, 2, 3, count=4), NOW, 1)

        assert await repo.remove_item_from_tag(tag.id, TagItem(1, 2, 9), NOW, 1) is False
        assert await repo.remove_item_from_tag(tag.id, TagItem(1, 2, 3), NOW, 1) is True

    @pytest.mark.asyncio
    async def test_indicator_lives_in_one_tag(self, repo: SQLAlchemyTagRepository):
        first = await _tag(repo)
        second = await _tag(repo)

        await repo.add_indicator_to_tag(first.id, 55, NOW, 1)
        await repo.add_indicator_to_tag(second.id, 55, NOW, 1)

        holders = await repo.get_tags_containing_indicator(55)
        assert [tag.id for tag in holders] == [second.id]
        assert await repo.remove_indicator_from_tag(first.id, 55, NOW, 1) is False
        assert await repo.remove_indicator_from_tag(second.id, 55, NOW, 1) is True


class TestHierarchy:
    @pytest.mark.asyncio
    async def test_nested_tag_is_loaded_with_its_contents(self, repo: SQLAlchemyTagRepository):
        outer = await _tag(repo, TagType.TRANSPORT)
        inner = await _tag(repo)
        await repo.add_unit_to_tag(inner.id, 101, NOW, 1)
        await repo.add_tag_to_tag(outer.id, inner.id, NOW, 1)

        fetched = await repo.get_by_id(outer.id)

        assert [tag.id for tag in fetched.contents.tags] == [inner.id]
        assert fetched.contents.tags[0].contents.units == [101]
        assert fetched.contents.get_all_contained_units() == [101]

    @pytest.mark.asyncio
    async def test_reparenting_moves_the_tag(self, repo: SQLAlchemyTagRepository):
        first = await _tag(repo, TagType.BASKET)
        second = await _tag(repo, TagType.BASKET)
        child = await _tag(repo)

        await repo.add_tag_to_tag(first.id, child.id, NOW, 1)
        await repo.add_tag_to_tag(second.id, child.id, NOW, 1)

        assert (await repo.get_parent_tag(child.id)).id == second.id
        assert await repo.get_child_tags(first.id) == []

    @pytest.mark.asyncio
    async def test_tag_cannot_contain_itself(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo)

        with pytest.raises(CircularReferenceError):
            await repo.add_tag_to_tag(tag.id, tag.id, NOW, 1)

    @pytest.mark.asyncio
    async def test_nesting_under_descendant_is_rejected(self, repo: SQLAlchemyTagRepository):
        a = await _tag(repo, TagType.TRANSPORT)
        b = await _tag(repo, TagType.BASKET)
        c = await _tag(repo)
        await repo.add_tag_to_tag(a.id, b.id, NOW, 1)
        await repo.add_tag_to_tag(b.id, c.id, NOW, 1)

        with pytest.raises(CircularReferenceError):
            await repo.add_tag_to_tag(c.id, a.id, NOW, 1)

        assert await repo.get_parent_tag(a.id) is None
        assert await repo.get_root_tag_id(c.id) == a.id

    @pytest.mark.asyncio
    async def test_missing_tag_returns_false(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo)

        assert await repo.add_tag_to_tag(tag.id, 404, NOW, 1) is False
        assert await repo.add_tag_to_tag(404, tag.id, NOW, 1) is False

    @pytest.mark.asyncio
    async def test_roots_and_children(self, repo: SQLAlchemyTagRepository):
        root = await _tag(repo, TagType.TRANSPORT)
        first = await _tag(repo)
        second = await _tag(repo)
        await repo.add_tag_to_tag(root.id, first.id, NOW, 1)
        await repo.add_tag_to_tag(root.id, second.id, NOW, 1)

        assert [tag.id for tag in await repo.get_root_tags()] == [root.id]
        assert [tag.id for tag in await repo.get_child_tags(root.id)] == [first.id, second.id]
        assert await repo.get_root_tag_id(root.id) == root.id
        assert await repo.get_root_tag_id(second.id) == root.id

    @pytest.mark.asyncio
    async def test_remove_tag_from_tag(self, repo: SQLAlchemyTagRepository):
        parent = await _tag(repo, TagType.BASKET)
        child = await _tag(repo)
        await repo.add_tag_to_tag(parent.id, child.id, NOW, 1)

        assert await repo.remove_tag_from_tag(parent.id, child.id, NOW, 1) is True
        assert await repo.remove_tag_from_tag(parent.id, child.id, NOW, 1) is False
        assert await repo.get_parent_tag(child.id) is None


class TestBulkOperations:
    @pytest.mark.asyncio
    async def test_dissolve_empties_but_keeps_tag(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo, TagType.BASKET)
        child = await _tag(repo)
        await repo.add_unit_to_tag(tag.id, 101, NOW, 1)
        await repo.add_indicator_to_tag(tag.id, 55, NOW, 1)
        await repo.add_tag_to_tag(tag.id, child.id, NOW, 1)

        assert await repo.dissolve_tag(tag.id, NOW, 2) is True

        fetched = await repo.get_by_id(tag.id)
        assert fetched is not None
        assert fetched.is_empty
        assert await repo.get_parent_tag(child.id) is None

    @pytest.mark.asyncio
    async def test_dissolve_missing_returns_false(self, repo: SQLAlchemyTagRepository):
        assert await repo.dissolve_tag(404, NOW, 1) is False

    @pytest.mark.asyncio
    async def test_clear_contents(self, repo: SQLAlchemyTagRepository):
        tag = await _tag(repo)
        await repo.add_unit_to_tag(tag.id, 101, NOW, 1)

        assert await repo.clear_tag_contents(tag.id, NOW, 1) is True
        assert await repo.is_tag_empty(tag.id)

    @pytest.mark.asyncio
    async def test_move_transfers_everything(self, repo: SQLAlchemyTagRepository):
        source = await _tag(repo, TagType.BASKET)
        transport = await _tag(repo, TagType.TRANSPORT)
        child = await _tag(repo)
        await repo.add_unit_to_tag(source.id, 101, NOW, 1)
        await repo.add_unit_to_tag(source.id, 102, NOW, 1)
        await repo.add_tag_to_tag(source.id, child.id, NOW, 1)

        assert await repo.move_tag_content_to_transport_tag(source.id, transport.id, NOW, 5)

        moved = await repo.get_by_id(transport.id)
        assert sorted(moved.contents.units) == [101, 102]
        assert [tag.id for tag in moved.contents.tags] == [child.id]
        assert await repo.is_tag_empty(source.id)

    @pytest.mark.asyncio
    async def test_move_onto_itself_or_missing_returns_false(
        self, repo: SQLAlchemyTagRepository
    ):
        tag = await _tag(repo)

        assert await repo.move_tag_content_to_transport_tag(tag.id, tag.id, NOW, 1) is False
        assert await repo.move_tag_content_to_transport_tag(tag.id, 404, NOW, 1) is False

    @pytest.mark.asyncio
    async def test_move_into_own_content_is_rejected(self, repo: SQLAlchemyTagRepository):
        source = await _tag(repo, TagType.BASKET)
        child = await _tag(repo, TagType.BASKET)
        transport = await _tag(repo, TagType.TRANSPORT)
        await repo.add_tag_to_tag(source.id, child.id, NOW, 1)
        await repo.add_tag_to_tag(child.id, transport.id, NOW, 1)

        with pytest.raises(CircularReferenceError):
            await repo.move_tag_content_to_transport_tag(source.id, transport.id, NOW, 1)


class TestAutoTags:
    @pytest.mark.asyncio
    async def test_reserved_numbers_start_at_one(self, repo: SQLAlchemyTagRepository):
        first_id = await repo.reserve_auto_tag(TagType.BUNDLE, 1)
        second_id = await repo.reserve_auto_tag(TagType.BUNDLE, 1)

        first = await repo.get_by_id(first_id)
        second = await repo.get_by_id(second_id)
        assert (first.tag_number, second.tag_number) == (1, 2)
        assert first.is_auto and first.has_auto_reservation
        assert first.status == LifeStatus.ACTIVE
        assert first.created_by == "tester"

    @pytest.mark.asyncio
    async def test_release_reservation(self, repo: SQLAlchemyTagRepository):
        tag_id = await repo.reserve_auto_tag(TagType.WASH, 1)

        assert [tag.id for tag in await repo.get_reserved_auto_tags()] == [tag_id]
        assert await repo.release_auto_tag_reservation(tag_id) is True
        assert await repo.release_auto_tag_reservation(tag_id) is False
        assert await repo.get_reserved_auto_tags() == []
        assert await repo.release_auto_tag_reservation(404) is False

    @pytest.mark.asyncio
    async def test_empty_auto_tag_lookup(self, repo: SQLAlchemyTagRepository):
        tag_id = await repo.reserve_auto_tag(TagType.BASKET, 3)

        found = await repo.get_empty_auto_tag(TagType.BASKET, 3)
        assert found is not None and found.id == tag_id
        assert await repo.get_empty_auto_tag(TagType.BASKET, 4) is None
        assert await repo.get_empty_auto_tag(TagType.BUNDLE, 3) is None

        await repo.add_unit_to_tag(tag_id, 101, NOW, 3)
        assert await repo.get_empty_auto_tag(TagType.BASKET, 3) is None

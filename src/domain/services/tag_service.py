"""Tag service layer with business logic."""

from collections.abc import Callable, Iterable
from datetime import datetime

import structlog

from core.exceptions import (
    DuplicateTagNumberError,
    InvalidTagStateError,
    InvalidTagTypeError,
    TagContentConflictError,
    TagContentNotFoundError,
    TagNotEmptyError,
    TagNotFoundError,
)
from domain.entities.tag import LifeStatus, Tag, TagContentCondition, TagContentType, TagItem
from domain.entities.tag_type import TagType
from domain.repositories.unit_of_work import IUnitOfWork

logger = structlog.get_logger()

# Starting an auto tag of the key type stops running auto tags of these types.
CONFLICTING_AUTO_TAG_TYPES: dict[TagType, tuple[TagType, ...]] = {
    TagType.BASKET: (TagType.BASKET, TagType.BUNDLE, TagType.TRANSPORT),
    TagType.BUNDLE: (TagType.BUNDLE,),
    TagType.TRANSPORT: (TagType.BASKET, TagType.BUNDLE, TagType.TRANSPORT),
    TagType.WASH: (TagType.WASH,),
    TagType.TRANSPORT_BOX: (
        TagType.BUNDLE,
        TagType.TRANSPORT_BOX,
        TagType.INSTRUMENT_CONTAINER,
    ),
}

TRANSPORT_TAG_TYPES = (TagType.TRANSPORT, TagType.TRANSPORT_BOX)


def get_conflicting_tag_types(tag_type: TagType) -> tuple[TagType, ...]:
    """Auto tag types that must be stopped before ``tag_type`` starts."""
    return CONFLICTING_AUTO_TAG_TYPES.get(tag_type, ())


class TagService:
    """Service layer for Tag business logic."""

    def __init__(self, uow_factory: Callable[[], IUnitOfWork]) -> None:
        self._uow_factory = uow_factory

    # --- Tag management ---

    async def get_tag(self, tag_id: int) -> Tag:
        """Get a tag with its contents."""
        async with self._uow_factory() as uow:
            return await self._require_tag(uow, tag_id)

    async def get_tag_by_number_and_type(self, tag_number: int, tag_type: TagType) -> Tag:
        async with self._uow_factory() as uow:
            tag = await uow.tags.get_by_number_and_type(tag_number, tag_type)
            if not tag:
                raise TagNotFoundError(f"{tag_type.display_name} #{tag_number}")
            return tag

    async def get_tags(self, page: int = 1, page_size: int = 50) -> list[Tag]:
        async with self._uow_factory() as uow:
            return await uow.tags.get_paged(page, page_size)

    async def create_tag(
        self,
        tag_type: TagType,
        location_key_id: int | None,
        is_auto: bool = False,
        tag_number: int | None = None,
        holds_items: bool | None = None,
        in_tag_group_key_id: int | None = None,
    ) -> Tag:
        """Create a tag, allocating the next number for its type when none is given."""
        async with self._uow_factory() as uow:
            if tag_number is None:
                tag_number = await uow.tags.get_next_tag_number(tag_type)
            elif await uow.tags.get_by_number_and_type(tag_number, tag_type):
                raise DuplicateTagNumberError(tag_number, tag_type.value)

            tag = Tag(
                tag_type=tag_type,
                tag_number=tag_number,
                is_auto=is_auto,
                location_key_id=location_key_id,
                location_time=datetime.utcnow(),
                holds_items=holds_items,
                in_tag_group_key_id=in_tag_group_key_id,
            )
            created = await uow.tags.add(tag)
            await uow.commit()

        logger.info(
            "tag_created",
            tag_id=created.id,
            tag_type=tag_type.value,
            tag_number=created.tag_number,
        )
        return created

    async def delete_tag(self, tag_id: int) -> None:
        """Delete an empty tag."""
        async with self._uow_factory() as uow:
            await self._require_tag(uow, tag_id)
            if not await uow.tags.is_tag_empty(tag_id):
                raise TagNotEmptyError(str(tag_id))

            await uow.tags.delete(tag_id)
            await uow.commit()

        logger.info("tag_deleted", tag_id=tag_id)

    # --- Validation ---

    def is_valid_tag(
        self,
        tag: Tag,
        valid_types: Iterable[TagType],
        must_have_content: Iterable[TagType] = (),
        required_conditions: Iterable[TagContentCondition] = (),
    ) -> bool:
        """Check a tag against a caller's accepted types and content rules.

        ``must_have_content`` lists types that are only valid when non-empty.
        An empty ``required_conditions`` accepts any content condition.
        """
        if tag.tag_type not in set(valid_types):
            logger.warning("tag_type_not_accepted", tag_id=tag.id, tag_type=tag.tag_type.value)
            return False

        if tag.tag_type in set(must_have_content) and tag.is_empty:
            logger.warning("tag_requires_content", tag_id=tag.id)
            return False

        conditions = set(required_conditions)
        if conditions and tag.content_condition not in conditions:
            logger.warning(
                "tag_content_condition_rejected",
                tag_id=tag.id,
                content_condition=tag.content_condition.value,
            )
            return False

        return True

    # --- Auto tags ---

    async def start_auto_tag(
        self, tag_type: TagType, location_key_id: int | None, user_key_id: int | None = None
    ) -> Tag:
        """Start automatic tagging for a type at a location.

        Conflicting auto tags are stopped first. An empty auto tag already at
        the location is reused, otherwise a new one is reserved.
        """
        if not tag_type.auto_capable:
            raise InvalidTagTypeError(
                "auto",
                tag_type.value,
                [t.value for t in TagType if t.auto_capable],
            )

        async with self._uow_factory() as uow:
            for conflicting in get_conflicting_tag_types(tag_type):
                await self._release_reservations(uow, conflicting)

            existing = await uow.tags.get_empty_auto_tag(tag_type, location_key_id)
            if existing:
                existing.has_auto_reservation = True
                existing.location_time = datetime.utcnow()
                await uow.tags.update(existing)
                tag_id = existing.id
            else:
                tag_id = await uow.tags.reserve_auto_tag(tag_type, location_key_id)

            tag = await self._require_tag(uow, tag_id)  # type: ignore[arg-type]
            await uow.commit()

        logger.info(
            "auto_tag_started",
            tag_id=tag.id,
            tag_type=tag_type.value,
            location_key_id=location_key_id,
            user_key_id=user_key_id,
            reused=existing is not None,
        )
        return tag

    async def stop_auto_tag(self, tag_type: TagType) -> bool:
        """Release every reserved auto tag of the type. False when none was running."""
        async with self._uow_factory() as uow:
            released = await self._release_reservations(uow, tag_type)
            await uow.commit()

        if not released:
            logger.warning("no_active_auto_tag", tag_type=tag_type.value)
            return False
        logger.info("auto_tag_stopped", tag_type=tag_type.value, released=released)
        return True

    async def stop_all_auto_tags(self) -> int:
        """Release every auto tag reservation. Returns the number released."""
        async with self._uow_factory() as uow:
            released = 0
            for tag in await uow.tags.get_reserved_auto_tags():
                if await uow.tags.release_auto_tag_reservation(tag.id):  # type: ignore[arg-type]
                    released += 1
            await uow.commit()

        logger.info("all_auto_tags_stopped", released=released)
        return released

    async def reserve_empty_auto_tag(
        self, tag_type: TagType, location_key_id: int | None
    ) -> Tag | None:
        """Reserve an existing empty auto tag at the location, if there is one."""
        async with self._uow_factory() as uow:
            tag = await uow.tags.get_empty_auto_tag(tag_type, location_key_id)
            if not tag:
                return None

            tag.has_auto_reservation = True
            updated = await uow.tags.update(tag)
            await uow.commit()

        logger.info("auto_tag_reserved", tag_id=updated.id, tag_type=tag_type.value)
        return updated

    async def release_auto_tag_reservation(self, tag_id: int) -> bool:
        async with self._uow_factory() as uow:
            released = await uow.tags.release_auto_tag_reservation(tag_id)
            await uow.commit()
        return released

    # --- Content ---

    async def insert_unit_in_tag(
        self,
        tag_id: int,
        unit_id: int,
        time: datetime | None = None,
        mark_as_split: bool = False,
    ) -> None:
        """Place a unit in a tag, moving it out of any other tag unless split."""
        async with self._uow_factory() as uow:
            tag = await self._require_tag(uow, tag_id)
            if tag.status == LifeStatus.DEAD:
                raise InvalidTagStateError(str(tag_id), "is dead")

            added = await uow.tags.add_unit_to_tag(
                tag_id, unit_id, time or datetime.utcnow(), tag.location_key_id, mark_as_split
            )
            if not added:
                raise TagContentConflictError(str(tag_id), TagContentType.UNIT, str(unit_id))
            await uow.commit()

        logger.info("unit_inserted", tag_id=tag_id, unit_id=unit_id, split=mark_as_split)

    async def insert_item_in_tag(
        self, tag_id: int, item: TagItem, time: datetime | None = None
    ) -> None:
        async with self._uow_factory() as uow:
            tag = await self._require_tag(uow, tag_id)
            if not tag.holds_items:
                raise InvalidTagStateError(str(tag_id), "does not hold items")

            added = await uow.tags.add_item_to_tag(
                tag_id, item, time or datetime.utcnow(), tag.location_key_id
            )
            if not added:
                raise TagContentConflictError(str(tag_id), TagContentType.ITEM, str(item.key))
            await uow.commit()

        logger.info("item_inserted", tag_id=tag_id, item_key_id=item.item_key_id)

    async def insert_tag_in_tag(
        self, source_tag_id: int, target_tag_id: int, time: datetime | None = None
    ) -> None:
        """Nest the source tag inside the target tag."""
        async with self._uow_factory() as uow:
            await self._require_tag(uow, source_tag_id)
            target = await self._require_tag(uow, target_tag_id)

            added = await uow.tags.add_tag_to_tag(
                target_tag_id, source_tag_id, time or datetime.utcnow(), target.location_key_id
            )
            if not added:
                raise TagContentConflictError(
                    str(target_tag_id), TagContentType.TAG, str(source_tag_id)
                )
            await uow.commit()

        logger.info("tag_nested", source_tag_id=source_tag_id, target_tag_id=target_tag_id)

    async def insert_indicator_in_tag(
        self, tag_id: int, indicator_id: int, time: datetime | None = None
    ) -> None:
        async with self._uow_factory() as uow:
            tag = await self._require_tag(uow, tag_id)

            added = await uow.tags.add_indicator_to_tag(
                tag_id, indicator_id, time or datetime.utcnow(), tag.location_key_id
            )
            if not added:
                raise TagContentConflictError(
                    str(tag_id), TagContentType.INDICATOR, str(indicator_id)
                )
            await uow.commit()

        logger.info("indicator_inserted", tag_id=tag_id, indicator_id=indicator_id)

    async def remove_unit_from_tag(
        self, tag_id: int, unit_id: int, time: datetime | None = None
    ) -> None:
        async with self._uow_factory() as uow:
            tag = await self._require_tag(uow, tag_id)
            removed = await uow.tags.remove_unit_from_tag(
                tag_id, unit_id, time or datetime.utcnow(), tag.location_key_id
            )
            if not removed:
                raise TagContentNotFoundError(str(tag_id), TagContentType.UNIT, str(unit_id))
            await uow.commit()

        logger.info("unit_removed", tag_id=tag_id, unit_id=unit_id)

    async def remove_item_from_tag(
        self, tag_id: int, item: TagItem, time: datetime | None = None
    ) -> None:
        async with self._uow_factory() as uow:
            tag = await self._require_tag(uow, tag_id)
            removed = await uow.tags.remove_item_from_tag(
                tag_id, item, time or datetime.utcnow(), tag.location_key_id
            )
            if not removed:
                raise TagContentNotFoundError(str(tag_id), TagContentType.ITEM, str(item.key))
            await uow.commit()

        logger.info("item_removed", tag_id=tag_id, item_key_id=item.item_key_id)

    async def remove_tag_from_tag(
        self, source_tag_id: int, target_tag_id: int, time: datetime | None = None
    ) -> None:
        """Take the source tag out of the target tag."""
        async with self._uow_factory() as uow:
            target = await self._require_tag(uow, target_tag_id)
            removed = await uow.tags.remove_tag_from_tag(
                target_tag_id, source_tag_id, time or datetime.utcnow(), target.location_key_id
            )
            if not removed:
                raise TagContentNotFoundError(
                    str(target_tag_id), TagContentType.TAG, str(source_tag_id)
                )
            await uow.commit()

        logger.info("tag_unnested", source_tag_id=source_tag_id, target_tag_id=target_tag_id)

    async def remove_indicator_from_tag(
        self, tag_id: int, indicator_id: int, time: datetime | None = None
    ) -> None:
        async with self._uow_factory() as uow:
            tag = await self._require_tag(uow, tag_id)
            removed = await uow.tags.remove_indicator_from_tag(
                tag_id, indicator_id, time or datetime.utcnow(), tag.location_key_id
            )
            if not removed:
                raise TagContentNotFoundError(
                    str(tag_id), TagContentType.INDICATOR, str(indicator_id)
                )
            await uow.commit()

        logger.info("indicator_removed", tag_id=tag_id, indicator_id=indicator_id)

    async def remove_unit_from_any_tag(self, unit_id: int, time: datetime | None = None) -> bool:
        """Remove every placement of a unit. False if it was in no tag."""
        async with self._uow_factory() as uow:
            removed = await self._remove_unit_everywhere(uow, unit_id, time or datetime.utcnow())
            await uow.commit()
        return removed

    async def remove_tag_from_any_tag(self, tag_id: int, time: datetime | None = None) -> bool:
        """Detach a tag from its parent. False if it was not nested."""
        async with self._uow_factory() as uow:
            parent = await uow.tags.get_parent_tag(tag_id)
            if not parent:
                return False
            removed = await uow.tags.remove_tag_from_tag(
                parent.id, tag_id, time or datetime.utcnow(), parent.location_key_id  # type: ignore[arg-type]
            )
            await uow.commit()
        return removed

    async def remove_indicator_from_any_tag(
        self, indicator_id: int, time: datetime | None = None
    ) -> bool:
        """Detach an indicator from whichever tag holds it."""
        removed = False
        async with self._uow_factory() as uow:
            for tag in await uow.tags.get_tags_containing_indicator(indicator_id):
                removed |= await uow.tags.remove_indicator_from_tag(
                    tag.id, indicator_id, time or datetime.utcnow(), tag.location_key_id  # type: ignore[arg-type]
                )
            await uow.commit()
        return removed

    # --- Moves ---

    async def move_unit_to_transport_box_tag(
        self, unit_id: int, transport_box_tag_id: int, time: datetime | None = None
    ) -> None:
        """Pull a unit out of every tag, split placements included, into a transport box."""
        time = time or datetime.utcnow()
        async with self._uow_factory() as uow:
            box = await self._require_tag(uow, transport_box_tag_id)
            self._require_type(box, TagType.TRANSPORT_BOX)

            await self._remove_unit_everywhere(uow, unit_id, time)
            added = await uow.tags.add_unit_to_tag(
                transport_box_tag_id, unit_id, time, box.location_key_id
            )
            if not added:
                raise TagContentConflictError(
                    str(transport_box_tag_id), TagContentType.UNIT, str(unit_id)
                )
            await uow.commit()

        logger.info(
            "unit_moved_to_transport_box",
            unit_id=unit_id,
            transport_box_tag_id=transport_box_tag_id,
        )

    async def move_bundle_tag_to_transport_box_tag(
        self, bundle_tag_id: int, transport_box_tag_id: int, time: datetime | None = None
    ) -> None:
        async with self._uow_factory() as uow:
            bundle = await self._require_tag(uow, bundle_tag_id)
            box = await self._require_tag(uow, transport_box_tag_id)
            self._require_type(bundle, TagType.BUNDLE)
            self._require_type(box, TagType.TRANSPORT_BOX)

            added = await uow.tags.add_tag_to_tag(
                transport_box_tag_id, bundle_tag_id, time or datetime.utcnow(), box.location_key_id
            )
            if not added:
                raise TagContentConflictError(
                    str(transport_box_tag_id), TagContentType.TAG, str(bundle_tag_id)
                )
            await uow.commit()

        logger.info(
            "bundle_moved_to_transport_box",
            bundle_tag_id=bundle_tag_id,
            transport_box_tag_id=transport_box_tag_id,
        )

    async def move_tag_to_tag(
        self, source_tag_id: int, target_tag_id: int, time: datetime | None = None
    ) -> None:
        await self.insert_tag_in_tag(source_tag_id, target_tag_id, time)

    async def move_tag_content_to_transport_tag(
        self, source_tag_id: int, transport_tag_id: int, time: datetime | None = None
    ) -> None:
        """Move everything held by the source tag onto a transport tag."""
        async with self._uow_factory() as uow:
            await self._require_tag(uow, source_tag_id)
            transport = await self._require_tag(uow, transport_tag_id)
            self._require_type(transport, *TRANSPORT_TAG_TYPES)

            moved = await uow.tags.move_tag_content_to_transport_tag(
                source_tag_id,
                transport_tag_id,
                time or datetime.utcnow(),
                transport.location_key_id,
            )
            if not moved:
                raise InvalidTagStateError(
                    str(source_tag_id), f"cannot be moved onto tag {transport_tag_id}"
                )
            await uow.commit()

        logger.info(
            "tag_content_moved",
            source_tag_id=source_tag_id,
            transport_tag_id=transport_tag_id,
        )

    # --- Queries ---

    async def is_tag_empty(self, tag_id: int) -> bool:
        async with self._uow_factory() as uow:
            await self._require_tag(uow, tag_id)
            return await uow.tags.is_tag_empty(tag_id)

    async def get_tag_content_count(self, tag_id: int) -> int:
        async with self._uow_factory() as uow:
            await self._require_tag(uow, tag_id)
            return await uow.tags.get_tag_content_count(tag_id)

    async def is_unit_in_tag(self, unit_id: int, tag_id: int) -> bool:
        async with self._uow_factory() as uow:
            tags = await uow.tags.get_tags_containing_unit(unit_id)
            return any(tag.id == tag_id for tag in tags)

    async def get_unit_tags(self, unit_id: int) -> list[Tag]:
        async with self._uow_factory() as uow:
            return await uow.tags.get_tags_containing_unit(unit_id)

    async def unit_is_split_to_tags(self, unit_id: int) -> bool:
        """True when the unit currently sits in more than one tag."""
        async with self._uow_factory() as uow:
            return len(await uow.tags.get_tags_containing_unit(unit_id)) > 1

    async def get_child_tags(self, tag_id: int) -> list[Tag]:
        async with self._uow_factory() as uow:
            await self._require_tag(uow, tag_id)
            return await uow.tags.get_child_tags(tag_id)

    async def get_parent_tag(self, tag_id: int) -> Tag | None:
        async with self._uow_factory() as uow:
            await self._require_tag(uow, tag_id)
            return await uow.tags.get_parent_tag(tag_id)

    async def get_root_tags(self) -> list[Tag]:
        async with self._uow_factory() as uow:
            return await uow.tags.get_root_tags()

    async def get_root_tag_id(self, tag_id: int) -> int:
        async with self._uow_factory() as uow:
            await self._require_tag(uow, tag_id)
            return await uow.tags.get_root_tag_id(tag_id)

    async def get_tag_display_string(self, tag_id: int) -> str:
        """Display string of the tag, empty when it does not exist."""
        async with self._uow_factory() as uow:
            tag = await uow.tags.get_by_id(tag_id)
            return tag.display_string if tag else ""

    # --- Dissolution ---

    async def dissolve_tag(
        self, tag_id: int, location_key_id: int | None = None, time: datetime | None = None
    ) -> None:
        """Empty a tag, keeping the tag itself."""
        async with self._uow_factory() as uow:
            tag = await self._require_tag(uow, tag_id)
            if location_key_id is None:
                location_key_id = tag.location_key_id
            await uow.tags.dissolve_tag(tag_id, time or datetime.utcnow(), location_key_id)
            await uow.commit()

        logger.info("tag_dissolved", tag_id=tag_id, location_key_id=location_key_id)

    async def dissolve_linked_split_tags(
        self, tag_id: int, location_key_id: int | None = None, time: datetime | None = None
    ) -> int:
        """Dissolve every other tag sharing a split unit with this one."""
        time = time or datetime.utcnow()
        async with self._uow_factory() as uow:
            tag = await self._require_tag(uow, tag_id)
            if location_key_id is None:
                location_key_id = tag.location_key_id

            dissolved = 0
            for linked in await uow.tags.get_linked_split_tags(tag_id):
                if await uow.tags.dissolve_tag(linked.id, time, location_key_id):  # type: ignore[arg-type]
                    dissolved += 1
            await uow.commit()

        logger.info("linked_split_tags_dissolved", tag_id=tag_id, dissolved=dissolved)
        return dissolved

    async def clear_tag_contents(self, tag_id: int, time: datetime | None = None) -> None:
        """Empty a tag at its own location."""
        async with self._uow_factory() as uow:
            tag = await self._require_tag(uow, tag_id)
            await uow.tags.clear_tag_contents(
                tag_id, time or datetime.utcnow(), tag.location_key_id
            )
            await uow.commit()

        logger.info("tag_contents_cleared", tag_id=tag_id)

    # --- Helpers ---

    async def _require_tag(self, uow: IUnitOfWork, tag_id: int) -> Tag:
        tag = await uow.tags.get_by_id(tag_id)
        if not tag:
            raise TagNotFoundError(str(tag_id))
        return tag

    @staticmethod
    def _require_type(tag: Tag, *expected: TagType) -> None:
        if tag.tag_type not in expected:
            raise InvalidTagTypeError(
                str(tag.id), tag.tag_type.value, [t.value for t in expected]
            )

    async def _release_reservations(self, uow: IUnitOfWork, tag_type: TagType) -> int:
        released = 0
        for tag in await uow.tags.get_reserved_auto_tags():
            if tag.tag_type == tag_type and tag.is_auto:
                if await uow.tags.release_auto_tag_reservation(tag.id):  # type: ignore[arg-type]
                    released += 1
        return released

    async def _remove_unit_everywhere(
        self, uow: IUnitOfWork, unit_id: int, time: datetime
    ) -> bool:
        removed = False
        for tag in await uow.tags.get_tags_containing_unit(unit_id):
            removed |= await uow.tags.remove_unit_from_tag(
                tag.id, unit_id, time, tag.location_key_id  # type: ignore[arg-type]
            )
        return removed

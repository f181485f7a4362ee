"""SQLAlchemy implementation of Tag repository."""

from collections.abc import Sequence
from datetime import datetime

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import CircularReferenceError, TagNotFoundError
from domain.entities.tag import LifeStatus, Tag, TagContentType, TagItem
from domain.entities.tag_type import TagType
from infrastructure.database.models import TagContentModel, TagModel

logger = structlog.get_logger()


class SQLAlchemyTagRepository:
    """SQLAlchemy implementation of ITagRepository.

    Content lives in ``tag_contents``, one row per placement. Mutations lock
    the affected tag rows first and run their multi-statement work inside a
    savepoint, so a rejected placement leaves the previous state untouched.
    """

    def __init__(self, session: AsyncSession, system_user: str = "System") -> None:
        self._session = session
        self._system_user = system_user

    # --- CRUD ---

    async def get_by_id(self, id: int) -> Tag | None:
        """Get a tag by ID with its contents loaded transitively."""
        model = await self._get_model(id)
        if not model:
            return None
        return (await self._hydrate([model]))[0]

    async def get_by_number_and_type(self, tag_number: int, tag_type: TagType) -> Tag | None:
        """Get a tag by its type-scoped number."""
        stmt = select(TagModel).where(
            TagModel.tag_number == tag_number,
            TagModel.tag_type == tag_type.value,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if not model:
            return None
        return (await self._hydrate([model]))[0]

    async def get_all(self) -> list[Tag]:
        """Get all tags ordered by ID."""
        return await self._fetch(select(TagModel).order_by(TagModel.id))

    async def get_paged(self, page: int, page_size: int) -> list[Tag]:
        """Get one 1-indexed page of tags ordered by ID."""
        stmt = (
            select(TagModel)
            .order_by(TagModel.id)
            .offset(max(page - 1, 0) * page_size)
            .limit(page_size)
        )
        return await self._fetch(stmt)

    async def add(self, tag: Tag) -> Tag:
        """Persist a new tag and return it with its assigned ID."""
        tag.created_at = datetime.utcnow()
        if not tag.created_by:
            tag.created_by = self._system_user
        model = self._to_model(tag)
        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)
        return self._to_entity(model)

    async def update(self, tag: Tag) -> Tag:
        """Persist a tag's own fields. Contents are never written here."""
        model = await self._get_model(tag.id) if tag.id is not None else None
        if not model:
            raise TagNotFoundError(str(tag.id))

        model.tag_number = tag.tag_number
        model.tag_type = tag.tag_type.value
        model.is_auto = tag.is_auto
        model.status = tag.status.value
        model.location_key_id = tag.location_key_id
        model.location_time = tag.location_time
        model.has_auto_reservation = tag.has_auto_reservation
        model.holds_items = bool(tag.holds_items)
        model.in_tag_group_key_id = tag.in_tag_group_key_id
        model.updated_at = datetime.utcnow()
        model.updated_by = tag.updated_by or self._system_user

        await self._session.flush()
        return (await self._hydrate([model]))[0]

    async def delete(self, id: int) -> bool:
        """Delete a tag, its content rows and its placement inside a parent."""
        model = await self._get_model(id)
        if not model:
            return False

        await self._session.execute(
            delete(TagContentModel).where(
                or_(
                    TagContentModel.parent_tag_id == id,
                    TagContentModel.child_tag_id == id,
                )
            )
        )
        await self._session.delete(model)
        await self._session.flush()
        return True

    async def get_next_tag_number(self, tag_type: TagType) -> int:
        """Highest number in use for the type plus one; 1 for a new type."""
        stmt = select(func.max(TagModel.tag_number)).where(TagModel.tag_type == tag_type.value)
        result = await self._session.execute(stmt)
        return (result.scalar() or 0) + 1

    # --- Queries ---

    async def get_tags_by_type(self, tag_type: TagType) -> list[Tag]:
        stmt = select(TagModel).where(TagModel.tag_type == tag_type.value).order_by(TagModel.id)
        return await self._fetch(stmt)

    async def get_tags_by_location(self, location_key_id: int) -> list[Tag]:
        stmt = (
            select(TagModel)
            .where(TagModel.location_key_id == location_key_id)
            .order_by(TagModel.id)
        )
        return await self._fetch(stmt)

    async def get_auto_tags(self) -> list[Tag]:
        stmt = select(TagModel).where(TagModel.is_auto.is_(True)).order_by(TagModel.id)
        return await self._fetch(stmt)

    async def get_tags_containing_unit(self, unit_id: int) -> list[Tag]:
        holders = select(TagContentModel.parent_tag_id).where(
            TagContentModel.content_type == TagContentType.UNIT.value,
            TagContentModel.unit_id == unit_id,
        )
        return await self._fetch(select(TagModel).where(TagModel.id.in_(holders)).order_by(TagModel.id))

    async def get_tags_containing_item(self, item_key_id: int, serial_key_id: int) -> list[Tag]:
        holders = select(TagContentModel.parent_tag_id).where(
            TagContentModel.content_type == TagContentType.ITEM.value,
            TagContentModel.item_key_id == item_key_id,
            TagContentModel.serial_key_id == serial_key_id,
        )
        return await self._fetch(select(TagModel).where(TagModel.id.in_(holders)).order_by(TagModel.id))

    async def get_tags_containing_indicator(self, indicator_id: int) -> list[Tag]:
        holders = select(TagContentModel.parent_tag_id).where(
            TagContentModel.content_type == TagContentType.INDICATOR.value,
            TagContentModel.indicator_id == indicator_id,
        )
        return await self._fetch(select(TagModel).where(TagModel.id.in_(holders)).order_by(TagModel.id))

    async def is_unit_in_any_tag(self, unit_id: int) -> bool:
        stmt = select(
            select(TagContentModel.id)
            .where(
                TagContentModel.content_type == TagContentType.UNIT.value,
                TagContentModel.unit_id == unit_id,
            )
            .exists()
        )
        result = await self._session.execute(stmt)
        return bool(result.scalar())

    async def is_item_in_any_tag(self, item_key_id: int, serial_key_id: int) -> bool:
        stmt = select(
            select(TagContentModel.id)
            .where(
                TagContentModel.content_type == TagContentType.ITEM.value,
                TagContentModel.item_key_id == item_key_id,
                TagContentModel.serial_key_id == serial_key_id,
            )
            .exists()
        )
        result = await self._session.execute(stmt)
        return bool(result.scalar())

    async def get_tag_content_count(self, tag_id: int) -> int:
        """Number of unit, item, nested tag and indicator rows in the tag."""
        stmt = (
            select(func.count())
            .select_from(TagContentModel)
            .where(TagContentModel.parent_tag_id == tag_id)
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def is_tag_empty(self, tag_id: int) -> bool:
        return await self.get_tag_content_count(tag_id) == 0

    # --- Hierarchy ---

    async def get_child_tags(self, parent_tag_id: int) -> list[Tag]:
        """Direct children in the order they were nested."""
        stmt = (
            select(TagModel)
            .join(TagContentModel, TagContentModel.child_tag_id == TagModel.id)
            .where(TagContentModel.parent_tag_id == parent_tag_id)
            .order_by(TagContentModel.id)
        )
        return await self._fetch(stmt)

    async def get_parent_tag(self, child_tag_id: int) -> Tag | None:
        stmt = (
            select(TagModel)
            .join(TagContentModel, TagContentModel.parent_tag_id == TagModel.id)
            .where(TagContentModel.child_tag_id == child_tag_id)
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        if not model:
            return None
        return (await self._hydrate([model]))[0]

    async def get_root_tags(self) -> list[Tag]:
        """Tags that are not nested in any other tag."""
        nested = (
            select(TagContentModel.id)
            .where(TagContentModel.child_tag_id == TagModel.id)
            .exists()
        )
        return await self._fetch(select(TagModel).where(~nested).order_by(TagModel.id))

    async def get_root_tag_id(self, tag_id: int) -> int:
        """ID of the outermost tag containing ``tag_id`` (itself if not nested)."""
        ancestors = await self._ancestor_ids(tag_id)
        return ancestors[-1] if ancestors else tag_id

    # --- Split tracking ---

    async def get_linked_split_tags(self, tag_id: int) -> list[Tag]:
        """Other tags sharing a split unit with ``tag_id``."""
        split_units = select(TagContentModel.unit_id).where(
            TagContentModel.parent_tag_id == tag_id,
            TagContentModel.content_type == TagContentType.UNIT.value,
            TagContentModel.is_split.is_(True),
        )
        linked = select(TagContentModel.parent_tag_id).where(
            TagContentModel.unit_id.in_(split_units),
            TagContentModel.is_split.is_(True),
            TagContentModel.parent_tag_id != tag_id,
        )
        return await self._fetch(select(TagModel).where(TagModel.id.in_(linked)).order_by(TagModel.id))

    async def get_split_unit_serial_number_split_tag(self, unit_id: int) -> int | None:
        """ID of the first tag holding a split placement of the unit."""
        stmt = (
            select(TagContentModel.parent_tag_id)
            .where(
                TagContentModel.content_type == TagContentType.UNIT.value,
                TagContentModel.unit_id == unit_id,
                TagContentModel.is_split.is_(True),
            )
            .order_by(TagContentModel.id)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    # --- Content mutation ---

    async def add_unit_to_tag(
        self,
        tag_id: int,
        unit_id: int,
        time: datetime,
        location_key_id: int | None,
        mark_as_split: bool = False,
    ) -> bool:
        """Place a unit, evicting it from other tags unless marked as split."""
        if not await self._lock_tags(tag_id):
            return False

        row = TagContentModel(
            parent_tag_id=tag_id,
            content_type=TagContentType.UNIT.value,
            unit_id=unit_id,
            is_split=mark_as_split,
            location_key_id=location_key_id,
            added_at=time,
        )
        evict = None
        if not mark_as_split:
            evict = delete(TagContentModel).where(
                TagContentModel.content_type == TagContentType.UNIT.value,
                TagContentModel.unit_id == unit_id,
            )
        return await self._place(tag_id, row, time, evict, content_id=unit_id)

    async def remove_unit_from_tag(
        self, tag_id: int, unit_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        stmt = select(TagContentModel).where(
            TagContentModel.parent_tag_id == tag_id,
            TagContentModel.content_type == TagContentType.UNIT.value,
            TagContentModel.unit_id == unit_id,
        )
        return await self._remove_first(tag_id, stmt, time)

    async def add_item_to_tag(
        self, tag_id: int, item: TagItem, time: datetime, location_key_id: int | None
    ) -> bool:
        if not await self._lock_tags(tag_id):
            return False

        row = TagContentModel(
            parent_tag_id=tag_id,
            content_type=TagContentType.ITEM.value,
            item_key_id=item.item_key_id,
            serial_key_id=item.serial_key_id,
            lot_info_key_id=item.lot_info_key_id,
            item_count=item.count,
            location_key_id=location_key_id,
            added_at=time,
        )
        evict = delete(TagContentModel).where(
            TagContentModel.content_type == TagContentType.ITEM.value,
            TagContentModel.item_key_id == item.item_key_id,
            TagContentModel.serial_key_id == item.serial_key_id,
            TagContentModel.lot_info_key_id == item.lot_info_key_id,
        )
        return await self._place(tag_id, row, time, evict, content_id=item.key)

    async def remove_item_from_tag(
        self, tag_id: int, item: TagItem, time: datetime, location_key_id: int | None
    ) -> bool:
        stmt = select(TagContentModel).where(
            TagContentModel.parent_tag_id == tag_id,
            TagContentModel.content_type == TagContentType.ITEM.value,
            TagContentModel.item_key_id == item.item_key_id,
            TagContentModel.serial_key_id == item.serial_key_id,
            TagContentModel.lot_info_key_id == item.lot_info_key_id,
        )
        return await self._remove_first(tag_id, stmt, time)

    async def add_tag_to_tag(
        self, parent_tag_id: int, child_tag_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        """Nest a tag under a new parent, detaching it from its old one."""
        if parent_tag_id == child_tag_id:
            raise CircularReferenceError("A tag cannot contain itself")
        if not await self._lock_tags(parent_tag_id, child_tag_id):
            return False
        if child_tag_id in await self._ancestor_ids(parent_tag_id):
            raise CircularReferenceError("Cannot nest a tag inside its own descendant")

        row = TagContentModel(
            parent_tag_id=parent_tag_id,
            content_type=TagContentType.TAG.value,
            child_tag_id=child_tag_id,
            location_key_id=location_key_id,
            added_at=time,
        )
        evict = delete(TagContentModel).where(TagContentModel.child_tag_id == child_tag_id)
        return await self._place(parent_tag_id, row, time, evict, content_id=child_tag_id)

    async def remove_tag_from_tag(
        self, parent_tag_id: int, child_tag_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        stmt = select(TagContentModel).where(
            TagContentModel.parent_tag_id == parent_tag_id,
            TagContentModel.child_tag_id == child_tag_id,
        )
        return await self._remove_first(parent_tag_id, stmt, time)

    async def add_indicator_to_tag(
        self, tag_id: int, indicator_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        if not await self._lock_tags(tag_id):
            return False

        row = TagContentModel(
            parent_tag_id=tag_id,
            content_type=TagContentType.INDICATOR.value,
            indicator_id=indicator_id,
            location_key_id=location_key_id,
            added_at=time,
        )
        evict = delete(TagContentModel).where(TagContentModel.indicator_id == indicator_id)
        return await self._place(tag_id, row, time, evict, content_id=indicator_id)

    async def remove_indicator_from_tag(
        self, tag_id: int, indicator_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        stmt = select(TagContentModel).where(
            TagContentModel.parent_tag_id == tag_id,
            TagContentModel.indicator_id == indicator_id,
        )
        return await self._remove_first(tag_id, stmt, time)

    # --- Bulk operations ---

    async def dissolve_tag(self, tag_id: int, time: datetime, location_key_id: int | None) -> bool:
        """Remove all content rows of a tag, keeping the tag itself."""
        if not await self._lock_tags(tag_id):
            return False

        await self._session.execute(
            delete(TagContentModel).where(TagContentModel.parent_tag_id == tag_id)
        )
        await self._touch(tag_id, time)
        await self._session.flush()
        return True

    async def clear_tag_contents(
        self, tag_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        return await self.dissolve_tag(tag_id, time, location_key_id)

    async def move_tag_content_to_transport_tag(
        self,
        source_tag_id: int,
        transport_tag_id: int,
        time: datetime,
        location_key_id: int | None,
    ) -> bool:
        """Re-parent every content row of the source onto the transport tag."""
        if source_tag_id == transport_tag_id:
            return False
        if not await self._lock_tags(source_tag_id, transport_tag_id):
            return False

        nested = await self._session.execute(
            select(TagContentModel.child_tag_id).where(
                TagContentModel.parent_tag_id == source_tag_id,
                TagContentModel.child_tag_id.is_not(None),
            )
        )
        moving = set(nested.scalars())
        above_transport = {transport_tag_id, *await self._ancestor_ids(transport_tag_id)}
        if moving & above_transport:
            raise CircularReferenceError("Transport tag is inside the content being moved")

        await self._session.execute(
            update(TagContentModel)
            .where(TagContentModel.parent_tag_id == source_tag_id)
            .values(
                parent_tag_id=transport_tag_id,
                added_at=time,
                location_key_id=location_key_id,
            )
        )
        await self._touch(source_tag_id, time)
        await self._touch(transport_tag_id, time)
        await self._session.flush()
        return True

    # --- Auto tags ---

    async def reserve_auto_tag(self, tag_type: TagType, location_key_id: int | None) -> int:
        """Create a reserved auto tag with the next number and return its ID."""
        tag = Tag(
            tag_type=tag_type,
            tag_number=await self.get_next_tag_number(tag_type),
            is_auto=True,
            status=LifeStatus.ACTIVE,
            location_key_id=location_key_id,
            location_time=datetime.utcnow(),
            has_auto_reservation=True,
            created_by=self._system_user,
        )
        created = await self.add(tag)
        return created.id  # type: ignore[return-value]

    async def release_auto_tag_reservation(self, tag_id: int) -> bool:
        model = await self._get_model(tag_id)
        if not model or not model.has_auto_reservation:
            return False

        model.has_auto_reservation = False
        model.updated_at = datetime.utcnow()
        model.updated_by = self._system_user
        await self._session.flush()
        return True

    async def get_reserved_auto_tags(self) -> list[Tag]:
        stmt = (
            select(TagModel)
            .where(TagModel.has_auto_reservation.is_(True))
            .order_by(TagModel.id)
        )
        return await self._fetch(stmt)

    async def get_empty_auto_tag(
        self, tag_type: TagType, location_key_id: int | None
    ) -> Tag | None:
        """First auto tag of the type at the location with no content."""
        has_content = (
            select(TagContentModel.id)
            .where(TagContentModel.parent_tag_id == TagModel.id)
            .exists()
        )
        stmt = (
            select(TagModel)
            .where(
                TagModel.tag_type == tag_type.value,
                TagModel.is_auto.is_(True),
                TagModel.location_key_id == location_key_id,
                ~has_content,
            )
            .order_by(TagModel.id)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        if not model:
            return None
        return self._to_entity(model)

    # --- Helpers ---

    async def _get_model(self, id: int) -> TagModel | None:
        stmt = select(TagModel).where(TagModel.id == id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _fetch(self, stmt) -> list[Tag]:  # type: ignore[no-untyped-def]
        result = await self._session.execute(stmt)
        return await self._hydrate(result.scalars().all())

    async def _lock_tags(self, *tag_ids: int) -> bool:
        """Row-lock the tags (no-op on SQLite); False if any is missing."""
        wanted = set(tag_ids)
        stmt = (
            select(TagModel.id)
            .where(TagModel.id.in_(wanted))
            .order_by(TagModel.id)
            .with_for_update()
        )
        result = await self._session.execute(stmt)
        return set(result.scalars()) == wanted

    async def _parent_id(self, tag_id: int) -> int | None:
        stmt = select(TagContentModel.parent_tag_id).where(TagContentModel.child_tag_id == tag_id)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def _ancestor_ids(self, tag_id: int) -> list[int]:
        """Parent, grandparent, ... up to the root."""
        ancestors: list[int] = []
        seen = {tag_id}
        parent_id = await self._parent_id(tag_id)
        while parent_id is not None:
            if parent_id in seen:
                raise CircularReferenceError(f"Tag {tag_id} is nested in a cycle")
            ancestors.append(parent_id)
            seen.add(parent_id)
            parent_id = await self._parent_id(parent_id)
        return ancestors

    async def _place(
        self,
        tag_id: int,
        row: TagContentModel,
        time: datetime,
        evict,  # type: ignore[no-untyped-def]
        content_id: object,
    ) -> bool:
        """Evict existing placements and insert ``row`` as one savepoint."""
        try:
            async with self._session.begin_nested():
                if evict is not None:
                    await self._session.execute(evict)
                self._session.add(row)
                await self._touch(tag_id, time)
                await self._session.flush()
        except IntegrityError:
            logger.warning(
                "tag_content_placement_rejected",
                tag_id=tag_id,
                content_type=row.content_type,
                content_id=content_id,
            )
            return False
        return True

    async def _remove_first(self, tag_id: int, stmt, time: datetime) -> bool:  # type: ignore[no-untyped-def]
        result = await self._session.execute(stmt.order_by(TagContentModel.id))
        row = result.scalars().first()
        if not row:
            return False

        await self._session.delete(row)
        await self._touch(tag_id, time)
        await self._session.flush()
        return True

    async def _touch(self, tag_id: int, time: datetime) -> None:
        await self._session.execute(
            update(TagModel)
            .where(TagModel.id == tag_id)
            .values(updated_at=time, updated_by=self._system_user)
        )

    async def _hydrate(self, models: Sequence[TagModel]) -> list[Tag]:
        """Convert models to entities and load contents, one query per nesting level."""
        tags = [self._to_entity(model) for model in models]
        loaded: dict[int, Tag] = {model.id: tag for model, tag in zip(models, tags)}
        pending = list(loaded)

        while pending:
            stmt = (
                select(TagContentModel)
                .where(TagContentModel.parent_tag_id.in_(pending))
                .order_by(TagContentModel.id)
            )
            rows = (await self._session.execute(stmt)).scalars().all()

            child_ids = list(
                dict.fromkeys(
                    row.child_tag_id
                    for row in rows
                    if row.child_tag_id is not None and row.child_tag_id not in loaded
                )
            )
            if child_ids:
                children = await self._session.execute(
                    select(TagModel).where(TagModel.id.in_(child_ids))
                )
                for child in children.scalars():
                    loaded[child.id] = self._to_entity(child)

            for row in rows:
                self._append_content(loaded[row.parent_tag_id], row, loaded)
            pending = child_ids

        return tags

    @staticmethod
    def _append_content(tag: Tag, row: TagContentModel, loaded: dict[int, Tag]) -> None:
        contents = tag.contents
        if row.content_type == TagContentType.UNIT:
            contents.units.append(row.unit_id)  # type: ignore[arg-type]
        elif row.content_type == TagContentType.ITEM:
            contents.items.append(
                TagItem(
                    item_key_id=row.item_key_id,  # type: ignore[arg-type]
                    serial_key_id=row.serial_key_id,  # type: ignore[arg-type]
                    lot_info_key_id=row.lot_info_key_id,  # type: ignore[arg-type]
                    count=row.item_count,
                )
            )
        elif row.content_type == TagContentType.TAG:
            child = loaded.get(row.child_tag_id)  # type: ignore[arg-type]
            if child is not None:
                contents.tags.append(child)
        elif row.content_type == TagContentType.INDICATOR:
            contents.indicators.append(row.indicator_id)  # type: ignore[arg-type]

    def _to_entity(self, model: TagModel) -> Tag:
        """Convert ORM model to domain entity."""
        return Tag(
            id=model.id,
            tag_number=model.tag_number,
            tag_type=TagType(model.tag_type),
            is_auto=bool(model.is_auto),
            status=LifeStatus(model.status),
            location_key_id=model.location_key_id,
            location_time=model.location_time,
            has_auto_reservation=bool(model.has_auto_reservation),
            holds_items=bool(model.holds_items),
            in_tag_group_key_id=model.in_tag_group_key_id,
            created_at=model.created_at,
            created_by=model.created_by,
            updated_at=model.updated_at,
            updated_by=model.updated_by,
        )

    def _to_model(self, entity: Tag) -> TagModel:
        """Convert domain entity to ORM model."""
        return TagModel(
            id=entity.id,
            tag_number=entity.tag_number,
            tag_type=entity.tag_type.value,
            is_auto=entity.is_auto,
            status=entity.status.value,
            location_key_id=entity.location_key_id,
            location_time=entity.location_time,
            has_auto_reservation=entity.has_auto_reservation,
            holds_items=bool(entity.holds_items),
            in_tag_group_key_id=entity.in_tag_group_key_id,
            created_at=entity.created_at,
            created_by=entity.created_by,
        )

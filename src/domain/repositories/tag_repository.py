"""Tag repository protocol."""

from datetime import datetime
from typing import Protocol

from domain.entities.tag import Tag, TagItem
from domain.entities.tag_type import TagType


class ITagRepository(Protocol):
    """Repository interface for Tag entities and their content placements.

    Reads return ``None``/empty/``False`` on a miss. Content mutations return
    ``False`` when they could not be applied, and leave storage unchanged in
    that case.
    """

    # --- CRUD ---

    async def get_by_id(self, id: int) -> Tag | None:
        """Get a tag by ID with its contents loaded transitively."""
        ...

    async def get_by_number_and_type(self, tag_number: int, tag_type: TagType) -> Tag | None:
        """Get a tag by its type-scoped number."""
        ...

    async def get_all(self) -> list[Tag]:
        """Get all tags ordered by ID."""
        ...

    async def get_paged(self, page: int, page_size: int) -> list[Tag]:
        """Get one 1-indexed page of tags ordered by ID."""
        ...

    async def add(self, tag: Tag) -> Tag:
        """Persist a new tag and return it with its assigned ID."""
        ...

    async def update(self, tag: Tag) -> Tag:
        """Persist a tag's own fields. Raises TagNotFoundError if it is gone."""
        ...

    async def delete(self, id: int) -> bool:
        """Delete a tag and its content rows and return success status."""
        ...

    async def get_next_tag_number(self, tag_type: TagType) -> int:
        """Next free number in the tag type's sequence."""
        ...

    # --- Queries ---

    async def get_tags_by_type(self, tag_type: TagType) -> list[Tag]:
        ...

    async def get_tags_by_location(self, location_key_id: int) -> list[Tag]:
        ...

    async def get_auto_tags(self) -> list[Tag]:
        ...

    async def get_tags_containing_unit(self, unit_id: int) -> list[Tag]:
        ...

    async def get_tags_containing_item(self, item_key_id: int, serial_key_id: int) -> list[Tag]:
        ...

    async def get_tags_containing_indicator(self, indicator_id: int) -> list[Tag]:
        ...

    async def is_unit_in_any_tag(self, unit_id: int) -> bool:
        ...

    async def is_item_in_any_tag(self, item_key_id: int, serial_key_id: int) -> bool:
        ...

    async def get_tag_content_count(self, tag_id: int) -> int:
        """Number of unit, item, nested tag and indicator rows in the tag."""
        ...

    async def is_tag_empty(self, tag_id: int) -> bool:
        ...

    # --- Hierarchy ---

    async def get_child_tags(self, parent_tag_id: int) -> list[Tag]:
        """Direct children only."""
        ...

    async def get_parent_tag(self, child_tag_id: int) -> Tag | None:
        ...

    async def get_root_tags(self) -> list[Tag]:
        """Tags that are not nested in any other tag."""
        ...

    async def get_root_tag_id(self, tag_id: int) -> int:
        """ID of the outermost tag containing ``tag_id`` (itself if not nested)."""
        ...

    # --- Split tracking ---

    async def get_linked_split_tags(self, tag_id: int) -> list[Tag]:
        """Other tags sharing a split unit with ``tag_id``."""
        ...

    async def get_split_unit_serial_number_split_tag(self, unit_id: int) -> int | None:
        """ID of the first tag holding a split placement of the unit."""
        ...

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
        ...

    async def remove_unit_from_tag(
        self, tag_id: int, unit_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        ...

    async def add_item_to_tag(
        self, tag_id: int, item: TagItem, time: datetime, location_key_id: int | None
    ) -> bool:
        ...

    async def remove_item_from_tag(
        self, tag_id: int, item: TagItem, time: datetime, location_key_id: int | None
    ) -> bool:
        ...

    async def add_tag_to_tag(
        self, parent_tag_id: int, child_tag_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        """Nest a tag, re-parenting it. Raises CircularReferenceError on a cycle."""
        ...

    async def remove_tag_from_tag(
        self, parent_tag_id: int, child_tag_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        ...

    async def add_indicator_to_tag(
        self, tag_id: int, indicator_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        ...

    async def remove_indicator_from_tag(
        self, tag_id: int, indicator_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        ...

    # --- Bulk operations ---

    async def dissolve_tag(self, tag_id: int, time: datetime, location_key_id: int | None) -> bool:
        """Remove all content rows of a tag, keeping the tag."""
        ...

    async def clear_tag_contents(
        self, tag_id: int, time: datetime, location_key_id: int | None
    ) -> bool:
        ...

    async def move_tag_content_to_transport_tag(
        self,
        source_tag_id: int,
        transport_tag_id: int,
        time: datetime,
        location_key_id: int | None,
    ) -> bool:
        """Move every content row from source to transport in one step."""
        ...

    # --- Auto tags ---

    async def reserve_auto_tag(self, tag_type: TagType, location_key_id: int | None) -> int:
        """Create a reserved auto tag with the next number and return its ID."""
        ...

    async def release_auto_tag_reservation(self, tag_id: int) -> bool:
        ...

    async def get_reserved_auto_tags(self) -> list[Tag]:
        ...

    async def get_empty_auto_tag(
        self, tag_type: TagType, location_key_id: int | None
    ) -> Tag | None:
        """First auto tag of the type at the location with no content."""
        ...

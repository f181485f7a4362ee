"""Tag domain entities: the tag aggregate, its contents and item placements."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum

from domain.entities.tag_type import TagType


class LifeStatus(StrEnum):
    """Lifecycle status of a tag."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    DEAD = "Dead"


class TagContentCondition(StrEnum):
    """Classification of a tag by the units and items it holds."""

    EMPTY = "Empty"
    UNITS = "Units"
    ITEMS = "Items"
    MIXED = "Mixed"


class TagContentType(StrEnum):
    """Kind of object placed in a tag."""

    UNIT = "unit"
    ITEM = "item"
    TAG = "tag"
    INDICATOR = "indicator"


@dataclass(frozen=True, slots=True)
class TagItem:
    """An item placement: item + serial + lot, with a quantity.

    Two placements are equal when their keys match; ``count`` takes no part
    in equality or hashing.
    """

    item_key_id: int
    serial_key_id: int
    lot_info_key_id: int
    count: int = field(default=0, compare=False)

    @property
    def key(self) -> tuple[int, int, int]:
        return (self.item_key_id, self.serial_key_id, self.lot_info_key_id)

    def create_copy(self) -> "TagItem":
        """Return an independent copy with the same field values."""
        return replace(self)


@dataclass
class TagContents:
    """Everything currently placed inside one tag."""

    tags: list["Tag"] = field(default_factory=list)
    units: list[int] = field(default_factory=list)
    items: list[TagItem] = field(default_factory=list)
    indicators: list[int] = field(default_factory=list)

    @property
    def unit_count(self) -> int:
        return len(self.units)

    @property
    def tag_count(self) -> int:
        return len(self.tags)

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def indicator_count(self) -> int:
        return len(self.indicators)

    @property
    def is_empty(self) -> bool:
        return (
            self.unit_count == 0
            and self.tag_count == 0
            and self.item_count == 0
            and self.indicator_count == 0
        )

    @property
    def content_condition(self) -> TagContentCondition:
        """Classify by units and items only; nested tags and indicators are ignored."""
        has_units = bool(self.units)
        has_items = bool(self.items)
        if has_units and has_items:
            return TagContentCondition.MIXED
        if has_units:
            return TagContentCondition.UNITS
        if has_items:
            return TagContentCondition.ITEMS
        return TagContentCondition.EMPTY

    def clear_contents(self) -> None:
        """Detach everything. Nested tags keep their own contents."""
        self.tags.clear()
        self.units.clear()
        self.items.clear()
        self.indicators.clear()

    def remove_unit(self, unit_id: int) -> None:
        """Remove the first occurrence of ``unit_id``, if any."""
        if unit_id in self.units:
            self.units.remove(unit_id)

    def remove_tag(self, tag: "Tag") -> None:
        """Remove the first entry that is ``tag`` itself, if any."""
        for index, nested in enumerate(self.tags):
            if nested is tag:
                del self.tags[index]
                return

    def remove_item(self, item_key_id: int, serial_key_id: int, lot_info_key_id: int) -> None:
        """Remove the first item matching all three keys, if any."""
        key = (item_key_id, serial_key_id, lot_info_key_id)
        for index, item in enumerate(self.items):
            if item.key == key:
                del self.items[index]
                return

    def remove_indicator(self, indicator_id: int) -> None:
        """Remove the first occurrence of ``indicator_id``, if any."""
        if indicator_id in self.indicators:
            self.indicators.remove(indicator_id)

    def get_all_contained_units(self) -> list[int]:
        """Direct units first, then each nested tag's units, depth-first."""
        return self._collect_units(set())

    def _collect_units(self, path: set[int]) -> list[int]:
        units = list(self.units)
        path.add(id(self))
        for nested in self.tags:
            # A tag already on the current path would recurse forever
            if id(nested.contents) in path:
                continue
            units.extend(nested.contents._collect_units(path))
        path.discard(id(self))
        return units


@dataclass(eq=False)
class Tag:
    """Domain entity for a Tag.

    ``contents`` is created empty with the tag and cannot be reassigned.
    """

    tag_type: TagType
    tag_number: int = 0
    id: int | None = None
    is_auto: bool = False
    status: LifeStatus = LifeStatus.ACTIVE
    location_key_id: int | None = None
    location_time: datetime | None = None
    has_auto_reservation: bool = False
    holds_items: bool | None = None
    in_tag_group_key_id: int | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    created_by: str = ""
    updated_at: datetime | None = None
    updated_by: str | None = None
    _contents: TagContents = field(default_factory=TagContents, init=False, repr=False)

    def __post_init__(self) -> None:
        """Default item capability from the tag type."""
        if self.holds_items is None:
            self.holds_items = self.tag_type.holds_items

    @property
    def contents(self) -> TagContents:
        return self._contents

    @property
    def display_string(self) -> str:
        return f"{self.tag_type.display_name} #{self.tag_number}"

    @property
    def full_display_string(self) -> str:
        if self.is_auto:
            return f"[AUTO] {self.display_string}"
        return self.display_string

    @property
    def is_empty(self) -> bool:
        return self.contents.is_empty

    @property
    def content_condition(self) -> TagContentCondition:
        return self.contents.content_condition

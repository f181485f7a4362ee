"""Pydantic schemas for Tag API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from domain.entities.tag import LifeStatus, TagContentCondition, TagItem
from domain.entities.tag_type import TagType


class TagCreate(BaseModel):
    """Schema for creating a Tag."""

    tag_type: TagType
    location_key_id: int | None = None
    is_auto: bool = False
    tag_number: int | None = Field(None, ge=1, description="Next free number when omitted")
    holds_items: bool | None = Field(None, description="Defaults from the tag type")
    in_tag_group_key_id: int | None = None


class StartAutoTagRequest(BaseModel):
    """Schema for starting automatic tagging."""

    tag_type: TagType
    location_key_id: int | None = None
    user_key_id: int | None = None


class InsertUnitRequest(BaseModel):
    """Schema for placing a unit in a tag."""

    unit_id: int
    time: datetime | None = None
    mark_as_split: bool = False


class TagItemSchema(BaseModel):
    """An item placement: item, serial and lot with a quantity."""

    model_config = ConfigDict(from_attributes=True)

    item_key_id: int
    serial_key_id: int
    lot_info_key_id: int
    count: int = Field(0, ge=0)

    def to_entity(self) -> TagItem:
        return TagItem(
            item_key_id=self.item_key_id,
            serial_key_id=self.serial_key_id,
            lot_info_key_id=self.lot_info_key_id,
            count=self.count,
        )


class TagContentsResponse(BaseModel):
    """Contents of a tag; nested tags carry their own contents."""

    model_config = ConfigDict(from_attributes=True)

    units: list[int]
    items: list[TagItemSchema]
    tags: list["TagResponse"]
    indicators: list[int]


class TagResponse(BaseModel):
    """Schema for Tag response."""

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 12,
                "tag_number": 3,
                "tag_type": "Bundle",
                "is_auto": False,
                "status": "Active",
                "location_key_id": 7,
                "display_string": "Bundle #3",
                "full_display_string": "Bundle #3",
                "content_condition": "Units",
                "contents": {"units": [101, 102], "items": [], "tags": [], "indicators": []},
            }
        },
    )

    id: int
    tag_number: int
    tag_type: TagType
    is_auto: bool
    status: LifeStatus
    location_key_id: int | None = None
    location_time: datetime | None = None
    has_auto_reservation: bool = False
    holds_items: bool = False
    in_tag_group_key_id: int | None = None
    created_at: datetime
    created_by: str = ""
    updated_at: datetime | None = None
    updated_by: str | None = None
    display_string: str
    full_display_string: str
    content_condition: TagContentCondition
    contents: TagContentsResponse


TagContentsResponse.model_rebuild()


class TagListResponse(BaseModel):
    """Schema for list of Tags."""

    data: list[TagResponse]


class TagDetailResponse(BaseModel):
    """Schema for single Tag."""

    data: TagResponse


class TagParentResponse(BaseModel):
    """Parent of a tag, ``null`` for a root tag."""

    data: TagResponse | None


class TagEmpty(BaseModel):
    tag_id: int
    is_empty: bool


class TagEmptyResponse(BaseModel):
    data: TagEmpty


class TagContentCount(BaseModel):
    tag_id: int
    content_count: int


class TagContentCountResponse(BaseModel):
    data: TagContentCount


class TagRoot(BaseModel):
    tag_id: int
    root_tag_id: int


class TagRootResponse(BaseModel):
    data: TagRoot

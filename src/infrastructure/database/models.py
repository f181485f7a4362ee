"""SQLAlchemy ORM models."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class TagModel(Base):
    """Tag model."""

    __tablename__ = "tags"
    __table_args__ = (
        UniqueConstraint("tag_number", "tag_type", name="uq_tags_number_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tag_number: Mapped[int] = mapped_column(Integer, nullable=False)
    tag_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    is_auto: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    status: Mapped[str] = mapped_column(
        String(16),
        CheckConstraint("status IN ('Active', 'Inactive', 'Dead')"),
        nullable=False,
        default="Active",
    )
    location_key_id: Mapped[int | None] = mapped_column(Integer, index=True)
    location_time: Mapped[datetime | None] = mapped_column(DateTime)
    has_auto_reservation: Mapped[bool] = mapped_column(Boolean, default=False)
    holds_items: Mapped[bool] = mapped_column(Boolean, default=False)
    in_tag_group_key_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    created_by: Mapped[str] = mapped_column(String(100), default="")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_by: Mapped[str | None] = mapped_column(String(100))

    # Relationships
    contents: Mapped[list["TagContentModel"]] = relationship(
        "TagContentModel",
        back_populates="parent_tag",
        foreign_keys="TagContentModel.parent_tag_id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TagContentModel(Base):
    """One placement of a unit, item, nested tag or indicator inside a tag.

    Exclusive placement is enforced here: a unit has at most one non-split
    row, a tag at most one parent, an indicator and an item triple at most
    one row.
    """

    __tablename__ = "tag_contents"
    __table_args__ = (
        CheckConstraint(
            "content_type IN ('unit', 'item', 'tag', 'indicator')",
            name="ck_tag_contents_content_type",
        ),
        UniqueConstraint("child_tag_id", name="uq_tag_contents_child_tag"),
        UniqueConstraint("indicator_id", name="uq_tag_contents_indicator"),
        UniqueConstraint(
            "item_key_id",
            "serial_key_id",
            "lot_info_key_id",
            name="uq_tag_contents_item",
        ),
        Index(
            "uq_tag_contents_unit_placement",
            "unit_id",
            unique=True,
            postgresql_where=text("content_type = 'unit' AND is_split = false"),
            sqlite_where=text("content_type = 'unit' AND is_split = 0"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    parent_tag_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tags.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    child_tag_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("tags.id", ondelete="CASCADE"),
    )
    unit_id: Mapped[int | None] = mapped_column(Integer, index=True)
    item_key_id: Mapped[int | None] = mapped_column(Integer)
    serial_key_id: Mapped[int | None] = mapped_column(Integer)
    lot_info_key_id: Mapped[int | None] = mapped_column(Integer)
    item_count: Mapped[int] = mapped_column(Integer, default=0)
    indicator_id: Mapped[int | None] = mapped_column(Integer)
    is_split: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    location_key_id: Mapped[int | None] = mapped_column(Integer)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    parent_tag: Mapped["TagModel"] = relationship(
        "TagModel",
        back_populates="contents",
        foreign_keys=[parent_tag_id],
    )

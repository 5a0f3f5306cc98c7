from pathlib import Path
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, BigInteger, Text,
    Table, CheckConstraint, UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base

CATEGORIES = ("general", "photos", "videos", "documents", "music", "other")

# Users who favourited an item
media_favorites = Table(
    "media_favorites",
    Base.metadata,
    Column("media_item_id", Integer, ForeignKey("media_items.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class MediaTag(Base):
    """One tag on one media item; tag names are unique per item."""
    __tablename__ = "media_tags"
    __table_args__ = (
        UniqueConstraint("media_item_id", "name", name="uq_media_tags_item_name"),
    )

    id = Column(Integer, primary_key=True)
    media_item_id = Column(Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False, index=True)


class MediaItem(Base):
    """
    MediaItem model describing an uploaded file and its lifecycle state.

    File content lives on disk under UPLOAD_DIR; `filename` is the only key
    used to locate it. Lifecycle: Active (is_active) -> Trashed (is_active
    False, deleted_at set) -> Active again on restore; hard delete removes
    the row and the file.
    """
    __tablename__ = "media_items"
    __table_args__ = (
        CheckConstraint("is_active OR deleted_at IS NOT NULL", name="ck_media_items_trashed_has_deleted_at"),
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_media_items_rating_range"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    category = Column(String, nullable=False, default="general", index=True)
    location = Column(String, nullable=False, default="")
    date_taken = Column(DateTime(timezone=True), nullable=True)
    # Name the user uploaded (used for display and archive entries)
    original_name = Column(String, nullable=False)
    # Generated unique name on disk
    filename = Column(String, nullable=False, unique=True)
    mime_type = Column(String, nullable=False)
    size = Column(BigInteger, nullable=False)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    is_shared = Column(Boolean, nullable=False, default=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    download_count = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)
    # 0 means unrated
    rating = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", backref="media_items")
    tag_rows = relationship(
        "MediaTag",
        order_by=MediaTag.id,
        cascade="all, delete-orphan",
    )
    favorited_by = relationship("User", secondary=media_favorites)

    @property
    def tags(self) -> list[str]:
        return [row.name for row in self.tag_rows]

    def set_tags(self, names: list[str]):
        """Replace tags, keeping rows for names that survive"""
        existing = {row.name: row for row in self.tag_rows}
        self.tag_rows = [existing.get(name) or MediaTag(name=name) for name in names]

    @property
    def extension(self) -> str:
        return Path(self.original_name).suffix.lstrip(".").lower()

    @property
    def size_formatted(self) -> str:
        return format_size(self.size)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def is_audio(self) -> bool:
        return self.mime_type.startswith("audio/")

    @property
    def is_document(self) -> bool:
        markers = ("pdf", "word", "excel", "powerpoint", "spreadsheet", "presentation", "text/")
        return any(marker in self.mime_type for marker in markers)

    @property
    def url(self) -> str:
        return f"/uploads/{self.filename}"

    @property
    def favorite_count(self) -> int:
        return len(self.favorited_by)


def format_size(size: int) -> str:
    """Human readable byte size, e.g. 1536 -> '1.5 KB'"""
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    if size <= 0:
        return "0 Bytes"
    i = 0
    while size >= 1024 ** (i + 1) and i < len(units) - 1:
        i += 1
    value = round(size / 1024 ** i, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[i]}"

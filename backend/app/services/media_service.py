import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, Iterable, List, Optional, Union
from fastapi import UploadFile
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from app.core.exceptions import (
    Forbidden, NoItems, NotFound, PayloadTooLarge, ValidationError,
)
from app.models.media_item import MediaItem, MediaTag
from app.models.user import User
from app.services import policy
from app.storage.local_storage import LocalStorage, StoredFile, storage
from app.utils.export_utils import create_zip_archive

logger = logging.getLogger(__name__)

MEDIA_NOT_FOUND_MESSAGE = "Media item not found"
BULK_ACCESS_DENIED_MESSAGE = "Some items not found or access denied"

SORT_FIELDS = {
    "created_at", "updated_at", "title", "size", "original_name",
    "view_count", "download_count", "rating", "date_taken",
}

# Fields an owner may change on an Active item
UPDATABLE_FIELDS = {
    "title", "description", "tags", "is_shared", "category", "location", "date_taken", "rating",
}
# A null for these means "leave unchanged"; for the others it clears the field
NON_NULLABLE_FIELDS = {"is_shared", "category", "rating"}


def normalize_tags(tags: Union[str, Iterable[str], None]) -> List[str]:
    """
    Trimmed, de-duplicated tag list from a comma-separated string or a list.

    "a, b, b, c" -> ["a", "b", "c"]; first occurrence wins, empties dropped.
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        parts = tags.split(",")
    else:
        parts = [part for tag in tags for part in str(tag).split(",")]

    seen = []
    for part in parts:
        tag = part.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


@dataclass
class MediaFilters:
    q: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    category: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    shared_only: bool = False


@dataclass
class MediaPage:
    items: List[MediaItem]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class UploadResult:
    items: List[MediaItem]
    # {"filename": ..., "reason": ...} for every file that was not stored
    skipped: List[Dict[str, str]]


@dataclass
class ArchiveResult:
    # Rewound archive file; closed by whoever streams it
    file: IO[bytes]
    filename: str
    included_ids: List[int]
    skipped_ids: List[int]


class MediaService:
    """Lifecycle of media items: Active -> Trashed -> Active, or Purged."""

    def __init__(self, file_storage: LocalStorage):
        self.storage = file_storage

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _owned_active(db: Session, owner: User, item_id: int) -> MediaItem:
        item = db.query(MediaItem).filter(
            MediaItem.id == item_id,
            MediaItem.user_id == owner.id,
            MediaItem.is_active.is_(True),
        ).first()
        if not item:
            raise NotFound(MEDIA_NOT_FOUND_MESSAGE)
        return item

    @staticmethod
    def _owned_active_batch(db: Session, owner: User, ids: List[int]) -> List[MediaItem]:
        """All-or-nothing: every id must be an Active item of `owner`"""
        if not ids:
            raise NoItems()
        wanted = set(ids)
        items = db.query(MediaItem).filter(
            MediaItem.id.in_(wanted),
            MediaItem.user_id == owner.id,
            MediaItem.is_active.is_(True),
        ).all()
        if len(items) != len(wanted):
            raise Forbidden(BULK_ACCESS_DENIED_MESSAGE)
        return items

    @staticmethod
    def get_visible(db: Session, requester: User, item_id: int) -> MediaItem:
        """Active item the requester owns or that is shared"""
        item = db.query(MediaItem).filter(
            MediaItem.id == item_id,
            MediaItem.is_active.is_(True),
        ).first()
        if not item:
            raise NotFound(MEDIA_NOT_FOUND_MESSAGE)
        policy.require_can_view(requester, item.user_id, item.is_shared)
        return item

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_items(
        self,
        db: Session,
        requester: User,
        filters: MediaFilters,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> MediaPage:
        if sort_by not in SORT_FIELDS:
            raise ValidationError(f"Cannot sort by {sort_by}. Allowed: {', '.join(sorted(SORT_FIELDS))}")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sortOrder must be 'asc' or 'desc'")

        query = db.query(MediaItem).filter(MediaItem.is_active.is_(True))

        if filters.shared_only:
            query = query.filter(MediaItem.is_shared.is_(True))
        else:
            query = query.filter(MediaItem.user_id == requester.id)

        if filters.q:
            query = query.filter(
                MediaItem.title.icontains(filters.q, autoescape=True)
                | MediaItem.description.icontains(filters.q, autoescape=True)
                | MediaItem.original_name.icontains(filters.q, autoescape=True)
            )

        if filters.tags:
            # Any-of match
            query = query.filter(MediaItem.tag_rows.any(MediaTag.name.in_(filters.tags)))

        if filters.category:
            query = query.filter(MediaItem.category == filters.category)

        if filters.date_from:
            query = query.filter(MediaItem.created_at >= filters.date_from)
        if filters.date_to:
            query = query.filter(MediaItem.created_at <= filters.date_to)

        total = query.count()

        column = getattr(MediaItem, sort_by)
        if sort_order == "desc":
            query = query.order_by(column.desc(), MediaItem.id.desc())
        else:
            query = query.order_by(column.asc(), MediaItem.id.asc())

        items = query.offset((page - 1) * limit).limit(limit).all()
        return MediaPage(items=items, page=page, limit=limit, total=total)

    def get_one(self, db: Session, requester: User, item_id: int) -> MediaItem:
        item = self.get_visible(db, requester, item_id)
        item.view_count = (item.view_count or 0) + 1
        db.commit()
        db.refresh(item)
        return item

    @staticmethod
    def list_trashed(db: Session, owner: User) -> List[MediaItem]:
        return db.query(MediaItem).filter(
            MediaItem.user_id == owner.id,
            MediaItem.is_active.is_(False),
        ).order_by(MediaItem.deleted_at.desc(), MediaItem.id.desc()).all()

    @staticmethod
    def stats(db: Session, owner: User) -> Dict[str, Any]:
        """Counts and sizes over the owner's Active items"""
        active = (MediaItem.user_id == owner.id, MediaItem.is_active.is_(True))

        total_items, total_size, avg_size = db.query(
            func.count(MediaItem.id),
            func.coalesce(func.sum(MediaItem.size), 0),
            func.coalesce(func.avg(MediaItem.size), 0),
        ).filter(*active).one()

        categories = [
            row[0] for row in db.query(MediaItem.category).filter(*active).distinct().order_by(MediaItem.category)
        ]
        tags = [
            row[0] for row in db.query(MediaTag.name)
            .join(MediaItem, MediaItem.id == MediaTag.media_item_id)
            .filter(*active)
            .distinct()
            .order_by(MediaTag.name)
        ]

        category_rows = db.query(
            MediaItem.category,
            func.count(MediaItem.id),
            func.coalesce(func.sum(MediaItem.size), 0),
        ).filter(*active).group_by(MediaItem.category).order_by(
            func.count(MediaItem.id).desc(), MediaItem.category
        ).all()

        return {
            "overview": {
                "total_items": int(total_items),
                "total_size": int(total_size),
                "avg_size": float(avg_size),
                "categories": categories,
                "tags": tags,
            },
            "categories": [
                {"category": category, "count": int(count), "total_size": int(size)}
                for category, count, size in category_rows
            ],
        }

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def _build_item(owner: User, stored: StoredFile, metadata: Dict[str, Any]) -> MediaItem:
        title = (metadata.get("title") or "").strip() or Path(stored.original_name).stem
        item = MediaItem(
            user_id=owner.id,
            title=title,
            description=metadata.get("description") or "",
            category=metadata.get("category") or "general",
            location=metadata.get("location") or "",
            date_taken=metadata.get("date_taken"),
            original_name=stored.original_name,
            filename=stored.filename,
            mime_type=stored.mime_type,
            size=stored.size,
            width=metadata.get("width"),
            height=metadata.get("height"),
            is_shared=bool(metadata.get("is_shared", False)),
            is_active=True,
            rating=0,
            view_count=0,
            download_count=0,
        )
        item.set_tags(normalize_tags(metadata.get("tags")))
        return item

    def create(self, db: Session, owner: User, stored: StoredFile, metadata: Dict[str, Any]) -> MediaItem:
        item = self._build_item(owner, stored, metadata)
        db.add(item)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            # The record never existed, so the file would be an orphan
            self.storage.delete_file(stored.filename)
            raise
        db.refresh(item)
        logger.info(f"User {owner.id} created media item {item.id} ({item.original_name})")
        return item

    def create_many(self, db: Session, owner: User, stored_files: List[StoredFile],
                    metadata: Dict[str, Any]) -> UploadResult:
        """
        One item per file with shared metadata.

        Each item is committed on its own; a failure is reported in `skipped`
        and does not roll back items already created.
        """
        result = UploadResult(items=[], skipped=[])
        for stored in stored_files:
            try:
                result.items.append(self.create(db, owner, stored, metadata))
            except SQLAlchemyError as exc:
                logger.error(f"Failed to record {stored.original_name} for user {owner.id}: {exc}")
                result.skipped.append({"filename": stored.original_name, "reason": "Could not save media item"})
        return result

    async def upload(self, db: Session, owner: User, file: UploadFile, metadata: Dict[str, Any],
                     max_size: int) -> MediaItem:
        stored = await self.storage.save_file(file, max_size)
        return self.create(db, owner, stored, metadata)

    async def upload_many(self, db: Session, owner: User, files: List[UploadFile],
                          metadata: Dict[str, Any], max_size: int) -> UploadResult:
        stored_files = []
        rejected = []
        for file in files:
            try:
                stored_files.append(await self.storage.save_file(file, max_size))
            except (ValidationError, PayloadTooLarge) as exc:
                rejected.append({"filename": file.filename or "", "reason": exc.detail})

        result = self.create_many(db, owner, stored_files, metadata)
        result.skipped = rejected + result.skipped
        return result

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    @staticmethod
    def _effective_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
        """Changes that would actually be applied"""
        return {
            name: value for name, value in changes.items()
            if name in UPDATABLE_FIELDS and not (value is None and name in NON_NULLABLE_FIELDS)
        }

    def _apply_changes(self, item: MediaItem, changes: Dict[str, Any]):
        for name, value in self._effective_changes(changes).items():
            if name == "tags":
                item.set_tags(normalize_tags(value))
            elif name in ("title", "description", "location"):
                setattr(item, name, value or "")
            elif name == "date_taken":
                item.date_taken = value
            else:
                setattr(item, name, value)

    def update(self, db: Session, owner: User, item_id: int, changes: Dict[str, Any]) -> MediaItem:
        """Apply only the provided fields"""
        item = self._owned_active(db, owner, item_id)
        self._apply_changes(item, changes)
        db.commit()
        db.refresh(item)
        return item

    def bulk_update(self, db: Session, owner: User, ids: List[int], changes: Dict[str, Any]) -> int:
        changes = self._effective_changes(changes)
        if not changes:
            raise ValidationError("No updates provided")
        items = self._owned_active_batch(db, owner, ids)
        for item in items:
            self._apply_changes(item, changes)
        # Single commit: the whole batch applies or none of it does
        db.commit()
        logger.info(f"User {owner.id} bulk-updated {len(items)} media items")
        return len(items)

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def soft_delete(self, db: Session, owner: User, item_id: int) -> MediaItem:
        item = self._owned_active(db, owner, item_id)
        item.is_active = False
        item.deleted_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(item)
        logger.info(f"User {owner.id} trashed media item {item.id}")
        return item

    def bulk_soft_delete(self, db: Session, owner: User, ids: List[int]) -> int:
        items = self._owned_active_batch(db, owner, ids)
        now = datetime.now(timezone.utc)
        for item in items:
            item.is_active = False
            item.deleted_at = now
        db.commit()
        logger.info(f"User {owner.id} trashed {len(items)} media items")
        return len(items)

    def restore(self, db: Session, owner: User, item_id: int) -> MediaItem:
        item = db.query(MediaItem).filter(
            MediaItem.id == item_id,
            MediaItem.user_id == owner.id,
            MediaItem.is_active.is_(False),
        ).first()
        if not item:
            raise NotFound(MEDIA_NOT_FOUND_MESSAGE)
        item.is_active = True
        item.deleted_at = None
        db.commit()
        db.refresh(item)
        logger.info(f"User {owner.id} restored media item {item.id}")
        return item

    def hard_delete(self, db: Session, owner: User, item_id: int) -> None:
        """Remove record and file permanently; Active or Trashed"""
        item = db.query(MediaItem).filter(
            MediaItem.id == item_id,
            MediaItem.user_id == owner.id,
        ).first()
        if not item:
            raise NotFound(MEDIA_NOT_FOUND_MESSAGE)

        filename = item.filename
        db.delete(item)
        db.commit()
        # Record goes first: a crash here leaves an orphaned file, which the
        # cleanup job reaps, never a record pointing at nothing
        self.storage.delete_file(filename)
        logger.info(f"User {owner.id} permanently deleted media item {item_id}")

    # ------------------------------------------------------------------
    # Viewer actions
    # ------------------------------------------------------------------

    def toggle_favorite(self, db: Session, requester: User, item_id: int) -> MediaItem:
        item = self.get_visible(db, requester, item_id)
        if requester in item.favorited_by:
            item.favorited_by.remove(requester)
        else:
            item.favorited_by.append(requester)
        db.commit()
        db.refresh(item)
        return item

    def record_download(self, db: Session, requester: User, item_id: int) -> tuple[MediaItem, Path]:
        item = self.get_visible(db, requester, item_id)
        path = self.storage.get_file_path(item.filename)
        if not path.is_file():
            raise NotFound("File not found on disk")
        item.download_count = (item.download_count or 0) + 1
        db.commit()
        db.refresh(item)
        return item, path

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def build_archive(self, db: Session, owner: User, ids: List[int]) -> ArchiveResult:
        """
        ZIP of the owner's Active items among `ids`.

        Ids that are missing, foreign or trashed are dropped rather than
        failing the request, as are items whose file is gone from disk; both
        are reported in `skipped_ids`.
        """
        if not ids:
            raise NoItems()

        items = db.query(MediaItem).filter(
            MediaItem.id.in_(set(ids)),
            MediaItem.user_id == owner.id,
            MediaItem.is_active.is_(True),
        ).order_by(MediaItem.id).all()
        if not items:
            raise NotFound("No items found")

        archive, missing_positions = create_zip_archive(
            (item.original_name, self.storage.get_file_path(item.filename)) for item in items
        )
        missing_ids = {items[position].id for position in missing_positions}
        found_ids = {item.id for item in items}
        included = [item.id for item in items if item.id not in missing_ids]
        skipped = sorted((set(ids) - found_ids) | missing_ids)

        logger.info(f"User {owner.id} exported {len(included)} media items ({len(skipped)} skipped)")
        return ArchiveResult(
            file=archive,
            filename=f"media-{int(time.time() * 1000)}.zip",
            included_ids=included,
            skipped_ids=skipped,
        )


media_service = MediaService(storage)

from datetime import datetime
from typing import List, Literal, Optional, Union
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy.orm import Session
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from app.core.database import get_db
from app.core.config import settings
from app.core.exceptions import ValidationError
from app.api.dependencies import get_current_user
from app.models.media_item import MediaItem
from app.models.user import User
from app.services.media_service import MediaFilters, media_service, normalize_tags
from app.utils.export_utils import iter_file_chunks

router = APIRouter(prefix="/media", tags=["media"])

Category = Literal["general", "photos", "videos", "documents", "music", "other"]


class OwnerSummary(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class MediaResponse(BaseModel):
    id: int
    user_id: int
    owner: Optional[OwnerSummary] = Field(None, validation_alias=AliasChoices("owner", "user"))
    title: str
    description: str
    tags: List[str]
    category: str
    location: str
    date_taken: Optional[datetime]
    original_name: str
    filename: str
    url: str
    mime_type: str
    size: int
    size_formatted: str
    extension: str
    width: Optional[int]
    height: Optional[int]
    is_image: bool
    is_video: bool
    is_audio: bool
    is_document: bool
    is_shared: bool
    is_active: bool
    deleted_at: Optional[datetime]
    download_count: int
    view_count: int
    rating: int
    favorite_count: int
    is_favorite: bool = False
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class PaginationInfo(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class MediaListResponse(BaseModel):
    items: List[MediaResponse]
    pagination: PaginationInfo


class SkippedFile(BaseModel):
    filename: str
    reason: str


class MultiUploadResponse(BaseModel):
    message: str
    items: List[MediaResponse]
    skipped: List[SkippedFile]


class MediaUpdate(BaseModel):
    """Partial update: only fields present in the request body are applied"""
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    tags: Union[str, List[str], None] = None
    is_shared: Optional[bool] = None
    category: Optional[Category] = None
    location: Optional[str] = Field(None, max_length=200)
    date_taken: Optional[datetime] = None
    rating: Optional[int] = Field(None, ge=0, le=5)


class BulkUpdateRequest(BaseModel):
    ids: List[int]
    updates: MediaUpdate


class BulkIdsRequest(BaseModel):
    ids: List[int]


class BulkResultResponse(BaseModel):
    message: str
    modified_count: int


class FavoriteResponse(BaseModel):
    is_favorite: bool
    favorite_count: int


class MessageResponse(BaseModel):
    message: str


class RestoreResponse(MessageResponse):
    item: MediaResponse


class CategoryStats(BaseModel):
    category: str
    count: int
    total_size: int


class StatsOverview(BaseModel):
    total_items: int
    total_size: int
    avg_size: float
    categories: List[str]
    tags: List[str]


class StatsResponse(BaseModel):
    overview: StatsOverview
    categories: List[CategoryStats]


def serialize_item(item: MediaItem, requester: User) -> MediaResponse:
    response = MediaResponse.model_validate(item)
    response.is_favorite = any(user.id == requester.id for user in item.favorited_by)
    return response


def media_metadata(
    title: str = Form(""),
    description: str = Form(""),
    tags: str = Form(""),
    is_shared: bool = Form(False),
    category: Category = Form("general"),
    location: str = Form(""),
    date_taken: Optional[datetime] = Form(None),
    width: Optional[int] = Form(None, ge=1),
    height: Optional[int] = Form(None, ge=1),
) -> dict:
    """Metadata fields sent alongside multipart uploads"""
    return {
        "title": title,
        "description": description,
        "tags": normalize_tags(tags),
        "is_shared": is_shared,
        "category": category,
        "location": location,
        "date_taken": date_taken,
        "width": width,
        "height": height,
    }


# ----------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------

@router.get("", response_model=MediaListResponse)
async def list_media(
    q: Optional[str] = None,
    tags: Optional[str] = Query(None, description="Comma separated; matches any"),
    shared: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    category: Optional[Category] = None,
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Own Active items, or every shared Active item with shared=true"""
    filters = MediaFilters(
        q=q,
        tags=normalize_tags(tags),
        category=category,
        date_from=date_from,
        date_to=date_to,
        shared_only=shared,
    )
    result = media_service.list_items(db, current_user, filters, page, limit, sort_by, sort_order)
    return {
        "items": [serialize_item(item, current_user) for item in result.items],
        "pagination": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "pages": result.pages,
        },
    }


@router.get("/stats", response_model=StatsResponse)
async def media_stats(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return media_service.stats(db, current_user)


@router.get("/deleted", response_model=List[MediaResponse])
async def list_deleted(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Trashed items, most recently deleted first"""
    return [serialize_item(item, current_user) for item in media_service.list_trashed(db, current_user)]


@router.get("/{media_id}", response_model=MediaResponse)
async def get_media(media_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    item = media_service.get_one(db, current_user, media_id)
    return serialize_item(item, current_user)


@router.get("/{media_id}/download")
async def download_media(media_id: int, current_user: User = Depends(get_current_user),
                         db: Session = Depends(get_db)):
    """Original file under its original name"""
    item, path = media_service.record_download(db, current_user, media_id)
    return FileResponse(path, media_type=item.mime_type, filename=item.original_name)


# ----------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------

@router.post("", response_model=MediaResponse, status_code=status.HTTP_201_CREATED)
async def upload_media(
    file: UploadFile = File(...),
    metadata: dict = Depends(media_metadata),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Upload a single file (10MB limit)"""
    item = await media_service.upload(db, current_user, file, metadata, settings.MAX_FILE_SIZE)
    return serialize_item(item, current_user)


@router.post("/multiple", response_model=MultiUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_multiple_media(
    files: List[UploadFile] = File(...),
    metadata: dict = Depends(media_metadata),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Upload up to 5 files sharing the same metadata (5MB each)"""
    if not files:
        raise ValidationError("No files uploaded")
    if len(files) > settings.MAX_MULTI_FILES:
        raise ValidationError(f"Too many files (max {settings.MAX_MULTI_FILES})")

    result = await media_service.upload_many(db, current_user, files, metadata, settings.MAX_MULTI_FILE_SIZE)
    if not result.items:
        raise ValidationError("; ".join(entry["reason"] for entry in result.skipped) or "No files uploaded")

    return {
        "message": f"{len(result.items)} files uploaded successfully",
        "items": [serialize_item(item, current_user) for item in result.items],
        "skipped": result.skipped,
    }


@router.post("/large", response_model=MediaResponse, status_code=status.HTTP_201_CREATED)
async def upload_large_media(
    file: UploadFile = File(...),
    metadata: dict = Depends(media_metadata),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Upload a single file (100MB limit)"""
    item = await media_service.upload(db, current_user, file, metadata, settings.MAX_LARGE_FILE_SIZE)
    return serialize_item(item, current_user)


@router.post("/zip")
async def download_zip(request: BulkIdsRequest, current_user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    """Selected own items as one ZIP; unavailable ids are listed in X-Skipped-Items"""
    archive = media_service.build_archive(db, current_user, request.ids)
    headers = {"Content-Disposition": f'attachment; filename="{archive.filename}"'}
    if archive.skipped_ids:
        headers["X-Skipped-Items"] = ",".join(str(item_id) for item_id in archive.skipped_ids)
    return StreamingResponse(iter_file_chunks(archive.file), media_type="application/zip", headers=headers)


@router.post("/{media_id}/favorite", response_model=FavoriteResponse)
async def toggle_favorite(media_id: int, current_user: User = Depends(get_current_user),
                          db: Session = Depends(get_db)):
    item = media_service.toggle_favorite(db, current_user, media_id)
    return {
        "is_favorite": any(user.id == current_user.id for user in item.favorited_by),
        "favorite_count": item.favorite_count,
    }


# ----------------------------------------------------------------------
# Updates (bulk routes are declared before /{media_id} so they match first)
# ----------------------------------------------------------------------

@router.put("/bulk", response_model=BulkResultResponse)
async def bulk_update_media(request: BulkUpdateRequest, current_user: User = Depends(get_current_user),
                            db: Session = Depends(get_db)):
    """Apply the same changes to several items; rejected whole if any id is not an own Active item"""
    modified = media_service.bulk_update(db, current_user, request.ids, request.updates.model_dump(exclude_unset=True))
    return {"message": f"{modified} items updated successfully", "modified_count": modified}


@router.put("/{media_id}", response_model=MediaResponse)
async def update_media(media_id: int, changes: MediaUpdate, current_user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    item = media_service.update(db, current_user, media_id, changes.model_dump(exclude_unset=True))
    return serialize_item(item, current_user)


# ----------------------------------------------------------------------
# Deletion / restore
# ----------------------------------------------------------------------

@router.delete("/bulk", response_model=BulkResultResponse)
async def bulk_delete_media(request: BulkIdsRequest, current_user: User = Depends(get_current_user),
                            db: Session = Depends(get_db)):
    """Move several items to the trash, all or nothing"""
    deleted = media_service.bulk_soft_delete(db, current_user, request.ids)
    return {"message": f"{deleted} items deleted successfully", "modified_count": deleted}


@router.delete("/{media_id}", response_model=MessageResponse)
async def delete_media(media_id: int, current_user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    """Move an item to the trash (recoverable)"""
    media_service.soft_delete(db, current_user, media_id)
    return {"message": "Media item deleted successfully"}


@router.delete("/{media_id}/permanent", response_model=MessageResponse)
async def hard_delete_media(media_id: int, current_user: User = Depends(get_current_user),
                            db: Session = Depends(get_db)):
    """Remove record and file for good"""
    media_service.hard_delete(db, current_user, media_id)
    return {"message": "Media item permanently deleted"}


@router.patch("/{media_id}/restore", response_model=RestoreResponse)
async def restore_media(media_id: int, current_user: User = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    item = media_service.restore(db, current_user, media_id)
    return {"message": "Media item restored successfully", "item": serialize_item(item, current_user)}

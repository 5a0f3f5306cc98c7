import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator
from fastapi import UploadFile
from app.core.config import settings
from app.core.exceptions import PayloadTooLarge, ValidationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

# MIME type is trusted from the client; only membership in this list is checked
ALLOWED_MIME_TYPES = frozenset({
    # Images
    "image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp", "image/svg+xml",
    # Videos
    "video/mp4", "video/avi", "video/mov", "video/wmv", "video/flv", "video/webm",
    # Documents
    "application/pdf", "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain", "text/html", "text/css", "text/javascript",
    # Audio
    "audio/mpeg", "audio/wav", "audio/ogg", "audio/mp3", "audio/aac",
})


@dataclass(frozen=True)
class StoredFile:
    """Descriptor of a file written to storage, consumed by media creation"""
    original_name: str
    filename: str
    mime_type: str
    size: int


class LocalStorage:
    def __init__(self, upload_dir: str):
        self.upload_dir = Path(upload_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    async def save_file(self, file: UploadFile, max_size: int) -> StoredFile:
        """Stream an upload to disk under a collision-resistant name"""
        if not file.filename:
            raise ValidationError("Filename is required")

        mime_type = file.content_type or "application/octet-stream"
        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                f"File type {mime_type} not allowed. Supported types: images, videos, documents, audio."
            )

        original_name = Path(file.filename).name
        unique_filename = f"{uuid.uuid4().hex}{Path(original_name).suffix.lower()}"
        file_path = self.get_file_path(unique_filename)

        size = 0
        with open(file_path, "wb") as f:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_size:
                    break
                f.write(chunk)

        if size > max_size:
            file_path.unlink(missing_ok=True)
            raise PayloadTooLarge(
                f"{original_name} exceeds the {max_size // (1024 * 1024)}MB upload limit"
            )

        return StoredFile(
            original_name=original_name,
            filename=unique_filename,
            mime_type=mime_type,
            size=size,
        )

    def get_file_path(self, filename: str) -> Path:
        """Get full path to a file"""
        # Stored names are generated here and never contain separators
        return self.upload_dir / Path(filename).name

    def delete_file(self, filename: str) -> bool:
        """Delete a file; a missing file is not an error"""
        file_path = self.get_file_path(filename)
        if file_path.exists():
            file_path.unlink()
            return True
        logger.warning(f"File already absent from storage: {filename}")
        return False

    def iter_files(self) -> Iterator[Path]:
        """All regular files currently in the upload directory"""
        for path in self.upload_dir.iterdir():
            if path.is_file():
                yield path


storage = LocalStorage(settings.UPLOAD_DIR)

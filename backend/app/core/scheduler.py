"""
Background scheduler for periodic tasks.

This module manages background jobs that run on a schedule:
- Cleanup orphaned files: files in the upload directory that no media item
  references (left behind by a crash between a file write and its record, or
  between a record delete and its file delete)
"""

import logging
import time
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.database import SessionLocal
from app.models.media_item import MediaItem
from app.storage.local_storage import LocalStorage, storage

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def find_orphaned_files(db: Session, file_storage: LocalStorage, grace_minutes: int,
                        now: Optional[float] = None) -> list:
    """Unreferenced files older than the grace period"""
    now = now if now is not None else time.time()
    cutoff = now - grace_minutes * 60
    referenced = {row[0] for row in db.query(MediaItem.filename).all()}
    return [
        path for path in file_storage.iter_files()
        if path.name not in referenced and path.stat().st_mtime < cutoff
    ]


def cleanup_orphaned_files_job(db: Optional[Session] = None, file_storage: LocalStorage = storage) -> int:
    """
    Background job to delete orphaned upload files.

    Returns the number of files removed.
    """
    owns_session = db is None
    db = db or SessionLocal()
    total_deleted = 0
    try:
        orphaned = find_orphaned_files(db, file_storage, settings.ORPHAN_FILE_GRACE_MINUTES)
        if not orphaned:
            logger.info("Cleanup job completed: No orphaned files found")
            return 0

        for path in orphaned:
            try:
                path.unlink()
                total_deleted += 1
                logger.info(f"Deleted orphaned file: {path.name}")
            except OSError as e:
                logger.error(f"Error deleting orphaned file {path.name}: {str(e)}")

        logger.info(f"Cleanup job completed: Deleted {total_deleted} orphaned files")
        return total_deleted
    finally:
        if owns_session:
            db.close()


def start_scheduler():
    """
    Start the background scheduler.

    Called from the FastAPI lifespan on startup.
    """
    if not scheduler.running:
        scheduler.add_job(
            cleanup_orphaned_files_job,
            trigger=IntervalTrigger(hours=settings.ORPHAN_CLEANUP_INTERVAL_HOURS),
            id="cleanup_orphaned_files",
            name="Cleanup orphaned files",
            replace_existing=True
        )

        scheduler.start()
        logger.info(
            f"Background scheduler started. Cleanup job scheduled every "
            f"{settings.ORPHAN_CLEANUP_INTERVAL_HOURS} hours."
        )


def stop_scheduler():
    """
    Stop the background scheduler.

    Called from the FastAPI lifespan on shutdown.
    """
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped.")

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
from app.core.config import settings
from app.core.database import engine, Base
from app.core.exceptions import register_exception_handlers
from app.core.logging_config import setup_logging
from app.core.scheduler import start_scheduler, stop_scheduler
from app.storage.local_storage import storage
from app.api.routes import admin, auth, contact, media, user

# Model modules register their tables on Base.metadata when imported
from app.models import contact_message, media_item  # noqa: F401

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage app lifecycle events.

    Startup: create missing tables, start the orphaned-file cleanup scheduler
    Shutdown: stop the scheduler
    """
    # In production, use migrations instead of create_all
    Base.metadata.create_all(bind=engine)
    if settings.ENABLE_SCHEDULER:
        start_scheduler()
    logger.info(f"Media Gallery API started; uploads in {storage.upload_dir.resolve()}")
    yield
    stop_scheduler()


app = FastAPI(
    title="Media Gallery API",
    description="Upload, organise, share and export media files",
    version="1.0.0",
    lifespan=lifespan
)

register_exception_handlers(app)

# CORS middleware - allows the frontend to call the backend with credentials
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,  # token cookie
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Authorization", "Content-Disposition", "X-Skipped-Items"],
)

app.include_router(auth.router)
app.include_router(user.router)
app.include_router(media.router, prefix="/api")
app.include_router(contact.router, prefix="/api")
app.include_router(admin.router, prefix="/api")

# Originals are served by stored filename
app.mount("/uploads", StaticFiles(directory=storage.upload_dir), name="uploads")


@app.get("/")
async def root():
    """Root endpoint - API information"""
    return {"message": "Media Gallery API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check endpoint - used by monitoring/deployment tools"""
    return {"status": "healthy"}

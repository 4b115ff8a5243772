"""
Main FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import files_router, uploads_router
from .core import Settings, async_session_maker, build_engine, build_session_maker, engine, settings
from .services import (
    ChunkedUploadOrchestrator,
    FileMetadataStore,
    ObjectStorage,
    SessionRegistry,
    ThumbnailService,
)
from .services.thumbnails import FrameExtractor

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(
    config: Settings = settings,
    storage: Optional[ObjectStorage] = None,
    metadata_store: Optional[FileMetadataStore] = None,
    frame_extractor: Optional[FrameExtractor] = None
) -> FastAPI:
    """
    Build the application and its process-wide services.

    One SessionRegistry per app: upload sessions live in this process only.
    """
    if storage is None:
        storage = ObjectStorage(config)
    if metadata_store is None:
        if config.DATABASE_URL == settings.DATABASE_URL:
            metadata_store = FileMetadataStore(engine, async_session_maker)
        else:
            db_engine = build_engine(config.DATABASE_URL)
            metadata_store = FileMetadataStore(db_engine, build_session_maker(db_engine))

    thumbnails = ThumbnailService(storage, config, frame_extractor=frame_extractor)
    registry = SessionRegistry()
    orchestrator = ChunkedUploadOrchestrator(
        registry,
        storage,
        thumbnails,
        metadata_store,
        chunk_size=config.UPLOAD_CHUNK_SIZE
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown"""
        logger.info("Starting notevault file server...")

        await metadata_store.init_schema()
        await storage.ensure_bucket_exists()

        if config.SWEEP_ORPHANED_UPLOADS:
            aborted = await orchestrator.sweep_orphaned_uploads()
            logger.info(f"Aborted {aborted} orphaned multipart upload(s)")

        logger.info(f"Server ready at http://{config.SERVER_HOST}:{config.SERVER_PORT}")

        yield

        logger.info("Shutting down notevault file server...")
        if len(registry):
            logger.warning(f"{len(registry)} upload session(s) still open; their multipart uploads become orphans")
        await metadata_store.close()

    app = FastAPI(
        title=config.APP_TITLE,
        description=config.APP_DESCRIPTION,
        version=config.APP_VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.storage = storage
    app.state.thumbnails = thumbnails
    app.state.metadata_store = metadata_store
    app.state.registry = registry
    app.state.orchestrator = orchestrator

    app.include_router(uploads_router)
    app.include_router(files_router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": config.APP_TITLE,
            "version": config.APP_VERSION,
            "status": "running",
            "docs": "/docs",
            "health": "/health"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "open_upload_sessions": len(registry)
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )

"""API routers"""
from .files import router as files_router
from .uploads import router as uploads_router

__all__ = ["files_router", "uploads_router"]

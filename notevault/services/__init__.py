"""Services module exports"""
from .storage import ObjectStorage, UploadedPart
from .sessions import SessionRegistry, UploadSession, UploadInitParams
from .thumbnails import ThumbnailService, ThumbnailResult
from .files import FileMetadataStore, NewFileRecord
from .uploads import ChunkedUploadOrchestrator, InitResult, PartReceipt, SessionStatus

__all__ = [
    "ObjectStorage",
    "UploadedPart",
    "SessionRegistry",
    "UploadSession",
    "UploadInitParams",
    "ThumbnailService",
    "ThumbnailResult",
    "FileMetadataStore",
    "NewFileRecord",
    "ChunkedUploadOrchestrator",
    "InitResult",
    "PartReceipt",
    "SessionStatus",
]

"""Schemas module exports"""
from .upload import (
    UploadedPartResponse,
    InitUploadResponse,
    UploadPartResponse,
    SessionStatusResponse,
    AbortUploadResponse,
    FileRecordResponse,
    FileUploadResponse,
    DownloadUrlResponse,
)

__all__ = [
    "UploadedPartResponse",
    "InitUploadResponse",
    "UploadPartResponse",
    "SessionStatusResponse",
    "AbortUploadResponse",
    "FileRecordResponse",
    "FileUploadResponse",
    "DownloadUrlResponse",
]

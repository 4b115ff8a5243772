"""
Pydantic schemas for the upload API

Chunk-protocol payloads use camelCase (what the browser uploader sends and
reads); file records keep the snake_case column names.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadedPartResponse(CamelModel):
    """Part already held by the store (resume)"""
    part_number: int
    checksum: str
    size: int = 0


class InitUploadResponse(CamelModel):
    success: bool = True
    session_id: str
    upload_handle: str  # Keep this with object_key to resume after a lost session
    object_key: str
    chunk_size: int
    total_chunks: int
    already_uploaded_parts: list[UploadedPartResponse]


class UploadPartResponse(CamelModel):
    success: bool = True
    part_number: int
    checksum: str


class SessionStatusResponse(CamelModel):
    session_id: str
    object_key: str
    total_chunks: int
    uploaded_parts: list[int]
    progress_percent: float


class AbortUploadResponse(BaseModel):
    success: bool = True


class FileRecordResponse(BaseModel):
    """Persisted file metadata"""
    id: int
    user_id: str
    filename: str  # Unique storage filename
    original_filename: str
    file_path: str  # Object key
    file_type: str
    file_size: int
    mime_type: Optional[str]
    directory_path: str
    thumbnail_key: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FileUploadResponse(BaseModel):
    """Response after complete (chunked) or a single-shot upload"""
    success: bool = True
    file: FileRecordResponse
    url: str


class DownloadUrlResponse(BaseModel):
    file_id: int
    download_url: str
    expires_in: int

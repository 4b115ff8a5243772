"""
FastAPI endpoints for whole-file uploads and file lookups
"""
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile

from ..core.errors import InvalidInput
from ..schemas import DownloadUrlResponse, FileRecordResponse, FileUploadResponse
from ..services import NewFileRecord, UploadInitParams
from ..services.file_types import get_file_type, get_mime_type, split_extension
from ..services.sessions import normalize_destination_path, validate_init_params
from ..services.uploads import make_unique_filename
from .deps import CurrentUser, MetadataStore, Storage, Thumbnails, require_owner
from .errors import upload_errors

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])

DOWNLOAD_URL_EXPIRY = 3600


@router.post("/upload", response_model=FileUploadResponse)
async def upload_file(
    user: CurrentUser,
    storage: Storage,
    thumbnails: Thumbnails,
    metadata_store: MetadataStore,
    file: Annotated[Optional[UploadFile], File()] = None,
    userId: Annotated[Optional[str], Form()] = None,
    directoryPath: Annotated[Optional[str], Form()] = "/"
):
    """
    Upload a small file in one request.

    Images and videos get a thumbnail from the buffered bytes; a failed
    thumbnail never fails the upload.
    """
    if file is None or not userId:
        raise HTTPException(status_code=400, detail="File and userId are required")
    require_owner(user, userId)

    logger.info(f"Single upload request received: {file.filename}")

    with upload_errors("file upload"):
        data = await file.read()
        if not data:
            raise InvalidInput("Empty file provided")

        filename = file.filename or ""
        _, ext = split_extension(filename)
        content_type = file.content_type or get_mime_type(ext)
        params = UploadInitParams(
            owner_id=userId,
            filename=filename,
            declared_size=len(data),
            content_type=content_type,
            destination_path=directoryPath or "/"
        )
        validate_init_params(params)
        destination = normalize_destination_path(params.destination_path)

        storage_filename = make_unique_filename(filename)
        object_key = storage.generate_storage_key(userId, storage_filename, destination)
        url = await storage.put_object(object_key, data, content_type)

        file_type = get_file_type(content_type, ext)
        thumbnail = await thumbnails.derive_from_bytes(data, file_type, object_key)

        file_record = await metadata_store.create(NewFileRecord(
            user_id=str(userId),
            filename=storage_filename,
            original_filename=filename,
            file_path=object_key,
            file_type=file_type,
            file_size=len(data),
            mime_type=content_type,
            directory_path=destination,
            thumbnail_key=thumbnail.thumbnail_key if thumbnail else None
        ))

    return FileUploadResponse(file=FileRecordResponse.model_validate(file_record), url=url)


@router.get("/by-key", response_model=FileRecordResponse)
async def get_file_by_key(
    user: CurrentUser,
    metadata_store: MetadataStore,
    objectKey: Annotated[str, Query(min_length=1)]
):
    """
    Look up a file record by its object key.

    Clients use this after a retried complete returns "session not found" to
    check whether the first attempt already succeeded.
    """
    file_record = await metadata_store.get_by_path(user.id, objectKey)
    if not file_record:
        raise HTTPException(status_code=404, detail="File not found")
    return FileRecordResponse.model_validate(file_record)


@router.get("/{file_id}/download-url", response_model=DownloadUrlResponse)
async def get_download_url(file_id: int, user: CurrentUser, storage: Storage, metadata_store: MetadataStore):
    """Pre-signed URL to download a file (valid for 1 hour)"""
    file_record = await metadata_store.get(file_id)
    if not file_record or file_record.user_id != user.id:
        raise HTTPException(status_code=404, detail="File not found")

    try:
        url = storage.generate_presigned_url(file_record.file_path, expires_in=DOWNLOAD_URL_EXPIRY)
    except Exception as e:
        logger.error(f"Error generating download URL: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate download URL")

    return DownloadUrlResponse(file_id=file_record.id, download_url=url, expires_in=DOWNLOAD_URL_EXPIRY)

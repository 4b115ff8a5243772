"""
FastAPI endpoints for chunked (multipart) uploads.

Provides:
    - POST /api/files/upload-chunk/init: open a session, get the chunk plan
    - POST /api/files/upload-chunk/upload: upload one chunk (any order, retryable)
    - POST /api/files/upload-chunk/complete: assemble parts and save the file record
    - POST /api/files/upload-chunk/abort: release the multipart upload
    - GET  /api/files/upload-chunk/{session_id}: uploaded parts and progress
    - POST /api/files/upload-chunk: same operations selected by an `action` field
"""
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from starlette.datastructures import UploadFile as StarletteUploadFile

from ..core.errors import InvalidInput
from ..schemas import (
    AbortUploadResponse,
    FileRecordResponse,
    FileUploadResponse,
    InitUploadResponse,
    SessionStatusResponse,
    UploadedPartResponse,
    UploadPartResponse,
)
from ..services import ChunkedUploadOrchestrator, UploadInitParams
from .deps import AuthUser, CurrentUser, Orchestrator, require_owner
from .errors import required_int, upload_errors

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files/upload-chunk", tags=["uploads"])


async def _init(
    orchestrator: ChunkedUploadOrchestrator,
    user: AuthUser,
    owner_id: Optional[str],
    filename: Optional[str],
    content_type: Optional[str],
    declared_total_size: Optional[str],
    destination_path: Optional[str],
    object_key: Optional[str] = None,
    upload_handle: Optional[str] = None
) -> InitUploadResponse:
    require_owner(user, owner_id)

    with upload_errors("chunk upload init"):
        params = UploadInitParams(
            owner_id=owner_id or "",
            filename=filename or "",
            declared_size=required_int(declared_total_size, "declaredTotalSize"),
            content_type=content_type or "",
            destination_path=destination_path or "/"
        )
        result = await orchestrator.init(params, object_key=object_key or None, upload_handle=upload_handle or None)

    return InitUploadResponse(
        session_id=result.session_id,
        upload_handle=result.upload_handle,
        object_key=result.object_key,
        chunk_size=result.chunk_size,
        total_chunks=result.total_chunks,
        already_uploaded_parts=[
            UploadedPartResponse(part_number=p.part_number, checksum=p.checksum, size=p.size)
            for p in result.already_uploaded_parts
        ]
    )


async def _upload(
    orchestrator: ChunkedUploadOrchestrator,
    user: AuthUser,
    session_id: Optional[str],
    part_number: Optional[str],
    chunk: Optional[StarletteUploadFile]
) -> UploadPartResponse:
    with upload_errors("chunk upload"):
        if chunk is None:
            raise InvalidInput("chunk is required")
        number = required_int(part_number, "partNumber")
        data = await chunk.read()
        receipt = await orchestrator.upload_part(session_id or "", number, data, owner_id=user.id)

    return UploadPartResponse(part_number=receipt.part_number, checksum=receipt.checksum)


async def _complete(
    orchestrator: ChunkedUploadOrchestrator,
    user: AuthUser,
    session_id: Optional[str]
) -> FileUploadResponse:
    with upload_errors("chunk upload complete"):
        file_record = await orchestrator.complete(session_id or "", owner_id=user.id)

    return FileUploadResponse(
        file=FileRecordResponse.model_validate(file_record),
        url=orchestrator.storage.object_url(file_record.file_path)
    )


async def _abort(
    orchestrator: ChunkedUploadOrchestrator,
    user: AuthUser,
    session_id: Optional[str]
) -> AbortUploadResponse:
    with upload_errors("chunk upload abort"):
        await orchestrator.abort(session_id or "", owner_id=user.id)
    return AbortUploadResponse()


@router.post("/init", response_model=InitUploadResponse)
async def init_upload(
    user: CurrentUser,
    orchestrator: Orchestrator,
    ownerId: Annotated[Optional[str], Form()] = None,
    filename: Annotated[Optional[str], Form()] = None,
    contentType: Annotated[Optional[str], Form()] = None,
    declaredTotalSize: Annotated[Optional[str], Form()] = None,
    destinationPath: Annotated[Optional[str], Form()] = "/",
    objectKey: Annotated[Optional[str], Form()] = None,
    uploadHandle: Annotated[Optional[str], Form()] = None
):
    """
    Initialize a chunked upload session.

    Returns the chunk size and count the client must use, plus any parts the
    store already holds (when resuming with objectKey + uploadHandle).
    """
    return await _init(
        orchestrator, user, ownerId, filename, contentType,
        declaredTotalSize, destinationPath, objectKey, uploadHandle
    )


@router.post("/upload", response_model=UploadPartResponse)
async def upload_chunk(
    user: CurrentUser,
    orchestrator: Orchestrator,
    sessionId: Annotated[Optional[str], Form()] = None,
    partNumber: Annotated[Optional[str], Form()] = None,
    chunk: Annotated[Optional[UploadFile], File()] = None
):
    """
    Upload one chunk as part `partNumber`.

    Idempotent: uploading the same part twice keeps the latest bytes.
    """
    return await _upload(orchestrator, user, sessionId, partNumber, chunk)


@router.post("/complete", response_model=FileUploadResponse)
async def complete_upload(
    user: CurrentUser,
    orchestrator: Orchestrator,
    sessionId: Annotated[Optional[str], Form()] = None
):
    """Assemble the uploaded parts and save the file record"""
    return await _complete(orchestrator, user, sessionId)


@router.post("/abort", response_model=AbortUploadResponse)
async def abort_upload(
    user: CurrentUser,
    orchestrator: Orchestrator,
    sessionId: Annotated[Optional[str], Form()] = None
):
    """Cancel a session; unknown sessions succeed"""
    return await _abort(orchestrator, user, sessionId)


@router.get("/{session_id}", response_model=SessionStatusResponse)
async def get_upload_status(session_id: str, user: CurrentUser, orchestrator: Orchestrator):
    """Uploaded part numbers and progress for an open session"""
    with upload_errors("chunk upload status"):
        status = await orchestrator.status(session_id, owner_id=user.id)

    return SessionStatusResponse(
        session_id=status.session_id,
        object_key=status.object_key,
        total_chunks=status.total_chunks,
        uploaded_parts=status.uploaded_parts,
        progress_percent=status.progress_percent
    )


@router.post("")
async def chunk_upload_action(request: Request, user: CurrentUser, orchestrator: Orchestrator):
    """
    Single-endpoint form of the chunk protocol, selected by `action`
    (init | upload | complete | abort). Accepts the older field names
    userId, fileType, totalSize and directoryPath.
    """
    form = await request.form()
    action = form.get("action")

    if action == "init":
        return await _init(
            orchestrator,
            user,
            owner_id=form.get("ownerId") or form.get("userId"),
            filename=form.get("filename"),
            content_type=form.get("contentType") or form.get("fileType"),
            declared_total_size=form.get("declaredTotalSize") or form.get("totalSize"),
            destination_path=form.get("destinationPath") or form.get("directoryPath"),
            object_key=form.get("objectKey"),
            upload_handle=form.get("uploadHandle")
        )

    if action == "upload":
        chunk = form.get("chunk")
        return await _upload(
            orchestrator,
            user,
            form.get("sessionId"),
            form.get("partNumber"),
            chunk if isinstance(chunk, StarletteUploadFile) else None
        )

    if action == "complete":
        return await _complete(orchestrator, user, form.get("sessionId"))

    if action == "abort":
        return await _abort(orchestrator, user, form.get("sessionId"))

    raise HTTPException(status_code=400, detail="Invalid action")

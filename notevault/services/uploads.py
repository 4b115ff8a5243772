"""
Chunked upload orchestration with resumable multipart sessions.

Per session:  init -> upload_part (any order, repeatable) -> complete | abort

The browser splits a file into chunk_size pieces, uploads the missing parts
(in parallel if it likes) and calls complete. Parts go straight to the
object store's multipart upload; only their ETags are kept in memory.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from ..core.config import settings
from ..core.errors import (
    IncompleteUpload,
    InvalidInput,
    SessionBusy,
    SessionNotFound,
    StorageIntegrityError,
)
from ..models import FileRecord
from .file_types import get_file_type, split_extension
from .files import FileMetadataStore, NewFileRecord
from .sessions import (
    MAX_PART_NUMBER,
    SessionRegistry,
    UploadInitParams,
    UploadSession,
    normalize_destination_path,
    total_chunks_for,
    validate_init_params,
)
from .storage import ObjectStorage, UploadedPart
from .thumbnails import ThumbnailService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitResult:
    session_id: str
    upload_handle: str
    object_key: str
    chunk_size: int
    total_chunks: int
    already_uploaded_parts: list[UploadedPart]


@dataclass(frozen=True)
class PartReceipt:
    part_number: int
    checksum: str


@dataclass(frozen=True)
class SessionStatus:
    session_id: str
    object_key: str
    total_chunks: int
    uploaded_parts: list[int]
    progress_percent: float


def make_unique_filename(filename: str) -> str:
    """
    report.pdf -> report_1700000000000_9f86d081.pdf

    Timestamp plus random suffix, so re-uploading the same name (even in the
    same millisecond) never lands on an existing key.
    """
    stem, ext = split_extension(filename)
    timestamp = int(time.time() * 1000)
    return f"{stem}_{timestamp}_{uuid.uuid4().hex[:8]}{ext}"


class ChunkedUploadOrchestrator:
    """Drives upload sessions against the object store and metadata store"""

    def __init__(
        self,
        registry: SessionRegistry,
        storage: ObjectStorage,
        thumbnails: ThumbnailService,
        metadata_store: FileMetadataStore,
        chunk_size: int = settings.UPLOAD_CHUNK_SIZE
    ):
        self.registry = registry
        self.storage = storage
        self.thumbnails = thumbnails
        self.metadata_store = metadata_store
        self.chunk_size = chunk_size

    async def init(
        self,
        params: UploadInitParams,
        object_key: Optional[str] = None,
        upload_handle: Optional[str] = None
    ) -> InitResult:
        """
        Open a session and return its chunk plan.

        With object_key + upload_handle from an earlier init, the existing
        multipart upload is reused and its stored parts are reported back so
        the client can skip them.
        """
        validate_init_params(params)
        destination = normalize_destination_path(params.destination_path)
        _, ext = split_extension(params.filename)
        file_type = get_file_type(params.content_type, ext)

        resuming = bool(object_key or upload_handle)
        if resuming:
            if not (object_key and upload_handle):
                raise InvalidInput("objectKey and uploadHandle must be provided together")
            storage_filename = object_key.rsplit("/", 1)[-1]
            expected_key = self.storage.generate_storage_key(params.owner_id, storage_filename, destination)
            if object_key != expected_key:
                raise InvalidInput("objectKey does not belong to this owner and destinationPath")
            logger.info(f"Resuming multipart upload {upload_handle} for {object_key}")
        else:
            storage_filename = make_unique_filename(params.filename)
            object_key = self.storage.generate_storage_key(params.owner_id, storage_filename, destination)
            upload_handle = await self.storage.initiate_multipart_upload(object_key, params.content_type)

        try:
            uploaded_parts = await self.storage.list_uploaded_parts(object_key, upload_handle)

            session_id = await self.registry.create(
                params,
                object_key=object_key,
                upload_handle=upload_handle,
                storage_filename=storage_filename,
                file_type=file_type,
                chunk_size=self.chunk_size,
                parts=uploaded_parts
            )
        except BaseException:
            # A fresh upload no session points at would stay open on the store;
            # a resumed one still belongs to the client
            if not resuming:
                await self._release_unowned_upload(object_key, upload_handle)
            raise

        total_chunks = total_chunks_for(params.declared_size, self.chunk_size)
        logger.info(
            f"Initialized upload session {session_id} for {params.filename} "
            f"({total_chunks} chunks, {len(uploaded_parts)} already uploaded)"
        )

        return InitResult(
            session_id=session_id,
            upload_handle=upload_handle,
            object_key=object_key,
            chunk_size=self.chunk_size,
            total_chunks=total_chunks,
            already_uploaded_parts=sorted(uploaded_parts, key=lambda p: p.part_number)
        )

    async def upload_part(
        self,
        session_id: str,
        part_number: int,
        data: bytes,
        owner_id: Optional[str] = None
    ) -> PartReceipt:
        """
        Upload one chunk. Idempotent: re-sending a part number overwrites it.

        The store call runs outside the session lock so parallel chunks of
        one session upload concurrently; only the bookkeeping is serialized.
        """
        session = await self._get_session(session_id, owner_id)

        if isinstance(part_number, bool) or not isinstance(part_number, int):
            raise InvalidInput("partNumber must be an integer")
        if part_number < 1 or part_number > MAX_PART_NUMBER:
            raise InvalidInput(f"partNumber must be between 1 and {MAX_PART_NUMBER}")
        if not data:
            raise InvalidInput("chunk is empty")

        async with session.condition:
            self._ensure_open(session)
            session.in_flight += 1

        checksum = None
        try:
            checksum = await self.storage.upload_part(
                session.object_key,
                session.upload_handle,
                part_number,
                data
            )
        finally:
            async with session.condition:
                if checksum is not None:
                    session.parts[part_number] = checksum
                session.in_flight -= 1
                session.condition.notify_all()

        logger.info(f"Uploaded part {part_number}/{session.total_chunks} for session {session_id} ({len(data)} bytes)")
        return PartReceipt(part_number=part_number, checksum=checksum)

    async def complete(self, session_id: str, owner_id: Optional[str] = None) -> FileRecord:
        """
        Assemble the parts, derive a thumbnail for videos and persist the record.

        On any error the session stays registered so the client can upload
        missing parts and retry.
        """
        session = await self._get_session(session_id, owner_id)
        await self._begin_finalize(session)

        try:
            if session.completed_url is None:
                if not session.parts:
                    raise IncompleteUpload(f"Upload session {session_id} has no uploaded parts")

                ordered_parts = session.ordered_parts()
                await self._verify_parts(session, ordered_parts)
                session.completed_url = await self.storage.complete_multipart_upload(
                    session.object_key,
                    session.upload_handle,
                    ordered_parts
                )

            if session.thumbnail_key is None:
                session.thumbnail_key = await self._derive_thumbnail(session)

            file_record = await self.metadata_store.create(NewFileRecord(
                user_id=session.owner_id,
                filename=session.storage_filename,
                original_filename=session.original_filename,
                file_path=session.object_key,
                file_type=session.file_type,
                file_size=session.declared_total_size,
                mime_type=session.mime_type,
                directory_path=session.destination_path,
                thumbnail_key=session.thumbnail_key
            ))
        except BaseException:
            await self._end_finalize(session, closed=False)
            raise

        await self.registry.delete(session_id)
        await self._end_finalize(session, closed=True)

        logger.info(f"Completed upload session {session_id}: {session.object_key} ({session.declared_total_size} bytes)")
        return file_record

    async def abort(self, session_id: str, owner_id: Optional[str] = None) -> None:
        """
        Release everything the session put on the store; unknown sessions are a no-op.

        If an earlier complete already assembled the object but never recorded
        it, the object and its thumbnail are deleted instead.
        """
        try:
            session = await self._get_session(session_id, owner_id)
            await self._begin_finalize(session)
        except SessionNotFound:
            logger.info(f"Abort for unknown session {session_id}, nothing to do")
            return

        try:
            if session.completed_url is None:
                await self.storage.abort_multipart_upload(session.object_key, session.upload_handle)
            else:
                await self._discard_unrecorded_object(session)
        except BaseException:
            await self._end_finalize(session, closed=False)
            raise

        await self.registry.delete(session_id)
        await self._end_finalize(session, closed=True)
        logger.info(f"Aborted upload session {session_id}")

    async def status(self, session_id: str, owner_id: Optional[str] = None) -> SessionStatus:
        session = await self._get_session(session_id, owner_id)
        async with session.condition:
            uploaded = sorted(session.parts)

        total = session.total_chunks
        progress = min(len(uploaded) / total * 100, 100.0)
        return SessionStatus(
            session_id=session.session_id,
            object_key=session.object_key,
            total_chunks=total,
            uploaded_parts=uploaded,
            progress_percent=round(progress, 2)
        )

    async def sweep_orphaned_uploads(self) -> int:
        """Abort store-side multipart uploads that no live session owns"""
        active = [s.upload_handle for s in await self.registry.sessions()]
        return await self.storage.abort_orphaned_uploads(active)

    # ==================== Internals ====================

    async def _get_session(self, session_id: str, owner_id: Optional[str]) -> UploadSession:
        if not session_id:
            raise InvalidInput("sessionId is required")
        session = await self.registry.get(session_id)
        # Someone else's session is reported exactly like a missing one
        if owner_id is not None and session.owner_id != str(owner_id):
            raise SessionNotFound(f"Upload session {session_id} not found")
        return session

    @staticmethod
    def _ensure_open(session: UploadSession) -> None:
        if session.closed:
            raise SessionNotFound(f"Upload session {session.session_id} not found")
        if session.finalizing:
            raise SessionBusy(f"Upload session {session.session_id} is being finalized")

    async def _begin_finalize(self, session: UploadSession) -> None:
        """Block new parts, then wait for in-flight parts to be recorded"""
        async with session.condition:
            self._ensure_open(session)
            session.finalizing = True
            try:
                await session.condition.wait_for(lambda: session.in_flight == 0)
            except BaseException:
                session.finalizing = False
                raise

    @staticmethod
    async def _end_finalize(session: UploadSession, closed: bool) -> None:
        async with session.condition:
            session.finalizing = False
            session.closed = closed
            session.condition.notify_all()

    async def _release_unowned_upload(self, object_key: str, upload_handle: str) -> None:
        """Abort a multipart upload after init failed; the init error is what the caller sees"""
        try:
            await self.storage.abort_multipart_upload(object_key, upload_handle)
            logger.info(f"Released multipart upload {upload_handle} after failed init")
        except Exception as e:
            logger.error(f"Could not release multipart upload {upload_handle} for {object_key}: {e}")

    async def _discard_unrecorded_object(self, session: UploadSession) -> None:
        keys = [session.object_key]
        if session.thumbnail_key:
            keys.append(session.thumbnail_key)
        for key in keys:
            await self.storage.delete_object(key)
        session.completed_url = None
        session.thumbnail_key = None
        logger.info(f"Discarded unrecorded object {session.object_key} for session {session.session_id}")

    async def _verify_parts(self, session: UploadSession, ordered_parts: list[UploadedPart]) -> None:
        """
        Compare recorded parts with what the store holds before assembling.

        Checked before completion so a mismatch leaves the multipart upload
        open and the client can re-send the offending parts.
        """
        stored = {
            p.part_number: p
            for p in await self.storage.list_uploaded_parts(session.object_key, session.upload_handle)
        }

        missing = [p.part_number for p in ordered_parts if p.part_number not in stored]
        if missing:
            raise StorageIntegrityError(f"Parts not present on the object store: {missing}")

        stale = [p.part_number for p in ordered_parts if stored[p.part_number].checksum != p.checksum]
        if stale:
            raise StorageIntegrityError(f"Parts changed on the object store, re-upload: {stale}")

        assembled_size = sum(stored[p.part_number].size for p in ordered_parts)
        if assembled_size != session.declared_total_size:
            raise StorageIntegrityError(
                f"Uploaded parts total {assembled_size} bytes, "
                f"declared size is {session.declared_total_size}"
            )

    async def _derive_thumbnail(self, session: UploadSession) -> Optional[str]:
        # Images are skipped here: a thumbnail would need the full object
        if session.file_type != "video":
            return None

        try:
            result = await self.thumbnails.derive_from_object_partial(session.object_key, session.file_type)
        except Exception as e:
            logger.warning(f"Thumbnail derivation raised for {session.object_key}: {e}")
            result = None

        if result is None:
            logger.warning(f"Completing {session.object_key} without a thumbnail")
            return None
        return result.thumbnail_key

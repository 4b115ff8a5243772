"""
In-process registry of open chunked-upload sessions.

Sessions are not persisted: a restart drops them and leaves their multipart
uploads open on the store until the orphan sweep aborts them.
"""
import asyncio
import logging
import math
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..core.errors import InvalidInput, SessionNotFound
from .storage import UploadedPart

logger = logging.getLogger(__name__)

# S3 allows part numbers 1..10000
MAX_PART_NUMBER = 10000

UNSAFE_KEY_CHARS = re.compile(r'[/\\\x00-\x1f\x7f]')


@dataclass(frozen=True)
class UploadInitParams:
    """Client-supplied parameters of an init call"""
    owner_id: str
    filename: str
    declared_size: int
    content_type: str
    destination_path: str = "/"


def normalize_destination_path(path: Optional[str]) -> str:
    """'' -> '/', 'docs//2024/' -> '/docs/2024'"""
    segments = [s for s in (path or "/").split("/") if s]
    if any(s in (".", "..") for s in segments):
        raise InvalidInput("destinationPath must not contain '.' or '..' segments")
    if any(UNSAFE_KEY_CHARS.search(s) for s in segments):
        raise InvalidInput("destinationPath contains unsafe characters")
    return "/" + "/".join(segments)


def validate_init_params(params: UploadInitParams) -> None:
    if not params.owner_id:
        raise InvalidInput("ownerId is required")
    if not params.filename:
        raise InvalidInput("filename is required")
    if not params.content_type:
        raise InvalidInput("contentType is required")
    if isinstance(params.declared_size, bool) or not isinstance(params.declared_size, int):
        raise InvalidInput("declaredTotalSize must be an integer")
    if params.declared_size <= 0:
        raise InvalidInput("declaredTotalSize must be positive")

    filename = params.filename
    if filename.strip() != filename or filename in (".", "..") or UNSAFE_KEY_CHARS.search(filename):
        raise InvalidInput("filename contains characters that are unsafe in a storage key")
    if UNSAFE_KEY_CHARS.search(str(params.owner_id)):
        raise InvalidInput("ownerId contains unsafe characters")
    normalize_destination_path(params.destination_path)


def total_chunks_for(declared_size: int, chunk_size: int) -> int:
    return max(1, math.ceil(declared_size / chunk_size))


@dataclass
class UploadSession:
    """
    Mutable state of one in-flight chunked upload.

    parts maps part_number -> checksum and only ever holds parts the store
    acknowledged. Mutate it only while holding `condition`.
    """
    session_id: str
    object_key: str
    upload_handle: str
    owner_id: str
    original_filename: str
    storage_filename: str
    file_type: str
    mime_type: str
    declared_total_size: int
    destination_path: str
    chunk_size: int
    parts: dict[int, str] = field(default_factory=dict)

    # Part uploads currently talking to the store
    in_flight: int = 0
    # Set while complete/abort runs; blocks new part uploads
    finalizing: bool = False
    # Set once complete/abort succeeded; the session is gone from the registry
    closed: bool = False
    # Object URL once the store assembled the parts; a retried complete skips the store
    completed_url: Optional[str] = None
    # Thumbnail stored by a complete that has not yet been recorded
    thumbnail_key: Optional[str] = None
    condition: asyncio.Condition = field(default_factory=asyncio.Condition, repr=False)

    @property
    def total_chunks(self) -> int:
        return total_chunks_for(self.declared_total_size, self.chunk_size)

    def ordered_parts(self) -> list[UploadedPart]:
        return [UploadedPart(part_number=n, checksum=self.parts[n]) for n in sorted(self.parts)]


class SessionRegistry:
    """
    Session id -> UploadSession map, safe for concurrent tasks.

    One instance per process, owned by the application and injected into the
    orchestrator.
    """

    def __init__(self):
        self._sessions: dict[str, UploadSession] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def generate_session_id() -> str:
        """Millisecond timestamp plus 128 random bits"""
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex}"

    async def create(
        self,
        params: UploadInitParams,
        *,
        object_key: str,
        upload_handle: str,
        storage_filename: str,
        file_type: str,
        chunk_size: int,
        parts: Iterable[UploadedPart] = ()
    ) -> str:
        validate_init_params(params)

        session = UploadSession(
            session_id=self.generate_session_id(),
            object_key=object_key,
            upload_handle=upload_handle,
            owner_id=str(params.owner_id),
            original_filename=params.filename,
            storage_filename=storage_filename,
            file_type=file_type,
            mime_type=params.content_type,
            declared_total_size=params.declared_size,
            destination_path=normalize_destination_path(params.destination_path),
            chunk_size=chunk_size,
            parts={p.part_number: p.checksum for p in parts}
        )

        async with self._lock:
            while session.session_id in self._sessions:
                session.session_id = self.generate_session_id()
            self._sessions[session.session_id] = session

        logger.info(f"Registered upload session {session.session_id} for {object_key}")
        return session.session_id

    async def get(self, session_id: str) -> UploadSession:
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Upload session {session_id} not found")
        return session

    async def delete(self, session_id: str) -> Optional[UploadSession]:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session:
            logger.info(f"Removed upload session {session_id}")
        return session

    async def sessions(self) -> list[UploadSession]:
        async with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

"""Shared fixtures: in-memory object store, metadata store and a fake frame extractor."""
import asyncio
import hashlib
from dataclasses import asdict
from datetime import datetime
from io import BytesIO
from typing import Optional

import pytest
from PIL import Image

from notevault.core.config import Settings
from notevault.core.errors import SessionNotFound, StorageIntegrityError, StorageUnavailable
from notevault.models import FileRecord
from notevault.services import (
    ChunkedUploadOrchestrator,
    NewFileRecord,
    ObjectStorage,
    SessionRegistry,
    ThumbnailService,
    UploadedPart,
)
from notevault.services.storage import PendingMultipartUpload

MiB = 1024 * 1024


def make_image_bytes(size=(1200, 600), mode="RGB", fmt="PNG") -> bytes:
    image = Image.new(mode, size, color=(200, 30, 30) if mode == "RGB" else (200, 30, 30, 128))
    output = BytesIO()
    image.save(output, format=fmt)
    return output.getvalue()


def write_test_frame(video_path: str, output_path: str) -> None:
    """Stands in for FFmpeg: writes a 640x360 JPEG frame"""
    Image.new("RGB", (640, 360), color=(10, 120, 200)).save(output_path, format="JPEG")


def failing_frame_extractor(video_path: str, output_path: str) -> None:
    raise RuntimeError("Invalid data found when processing input")


class FakeObjectStorage:
    """In-memory stand-in for ObjectStorage with call recording"""

    generate_storage_key = staticmethod(ObjectStorage.generate_storage_key)

    def __init__(self):
        self.uploads: dict[str, dict] = {}
        # key -> list of byte chunks; joined lazily so large uploads aren't copied
        self.objects: dict[str, list[bytes]] = {}
        self.calls: list[tuple] = []
        self.completed_orders: list[list[int]] = []
        self.range_requests: list[tuple[str, int, int]] = []
        self.fail_operations: set[str] = set()
        self.complete_error: Optional[Exception] = None
        self.part_gate: Optional[asyncio.Event] = None
        self.list_gate: Optional[asyncio.Event] = None
        self.range_delay: float = 0
        self._counter = 0

    def _record(self, operation: str, *args):
        self.calls.append((operation, *args))
        if operation in self.fail_operations:
            raise StorageUnavailable(f"Object store {operation} failed: ServiceUnavailable")

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def object_bytes(self, key: str) -> bytes:
        return b"".join(self.objects[key])

    def object_url(self, key: str) -> str:
        return f"http://storage.test/bucket/{key}"

    def generate_presigned_url(self, key: str, expires_in: int = 3600) -> str:
        return f"http://storage.test/bucket/{key}?X-Amz-Expires={expires_in}"

    async def ensure_bucket_exists(self) -> None:
        self._record("ensure_bucket")

    async def put_object(self, key: str, data: bytes, content_type: str) -> str:
        self._record("put_object", key, content_type)
        self.objects[key] = [data]
        return self.object_url(key)

    async def delete_object(self, key: str) -> None:
        self._record("delete_object", key)
        self.objects.pop(key, None)

    async def get_object_range(self, key: str, start: int, end: int) -> bytes:
        self._record("get_object", key, start, end)
        self.range_requests.append((key, start, end))
        if self.range_delay:
            await asyncio.sleep(self.range_delay)
        collected = bytearray()
        for chunk in self.objects[key]:
            if len(collected) > end:
                break
            collected.extend(chunk)
        return bytes(collected[start:end + 1])

    async def initiate_multipart_upload(self, key: str, content_type: str) -> str:
        self._record("initiate", key, content_type)
        self._counter += 1
        handle = f"upload-{self._counter}"
        self.uploads[handle] = {"key": key, "content_type": content_type, "parts": {}}
        return handle

    def _upload(self, key: str, handle: str) -> dict:
        upload = self.uploads.get(handle)
        if upload is None or upload["key"] != key:
            raise SessionNotFound("Multipart upload no longer exists")
        return upload

    async def upload_part(self, key: str, upload_handle: str, part_number: int, data: bytes) -> str:
        self._record("upload_part", key, upload_handle, part_number)
        if self.part_gate is not None:
            await self.part_gate.wait()
        else:
            await asyncio.sleep(0)
        upload = self._upload(key, upload_handle)
        etag = f'"{hashlib.md5(data).hexdigest()}"'
        upload["parts"][part_number] = (etag, data)
        return etag

    async def list_uploaded_parts(self, key: str, upload_handle: str) -> list[UploadedPart]:
        self._record("list_parts", key, upload_handle)
        if self.list_gate is not None:
            await self.list_gate.wait()
        upload = self._upload(key, upload_handle)
        return [
            UploadedPart(part_number=n, checksum=etag, size=len(data))
            for n, (etag, data) in sorted(upload["parts"].items())
        ]

    async def complete_multipart_upload(self, key: str, upload_handle: str, ordered_parts: list[UploadedPart]) -> str:
        self._record("complete", key, upload_handle, [p.part_number for p in ordered_parts])
        if self.complete_error is not None:
            raise self.complete_error
        upload = self._upload(key, upload_handle)
        numbers = [p.part_number for p in ordered_parts]
        if numbers != sorted(set(numbers)):
            raise StorageIntegrityError("Object store rejected parts: InvalidPartOrder")
        self.completed_orders.append(numbers)
        self.objects[key] = [upload["parts"][n][1] for n in numbers]
        del self.uploads[upload_handle]
        return self.object_url(key)

    async def abort_multipart_upload(self, key: str, upload_handle: str) -> None:
        self._record("abort", key, upload_handle)
        self.uploads.pop(upload_handle, None)

    async def list_multipart_uploads(self, prefix: str = "users/") -> list[PendingMultipartUpload]:
        return [
            PendingMultipartUpload(key=u["key"], upload_handle=h)
            for h, u in self.uploads.items()
            if u["key"].startswith(prefix)
        ]

    async def abort_orphaned_uploads(self, active_handles=(), prefix: str = "users/") -> int:
        active = set(active_handles)
        aborted = 0
        for upload in await self.list_multipart_uploads(prefix):
            if upload.upload_handle not in active:
                await self.abort_multipart_upload(upload.key, upload.upload_handle)
                aborted += 1
        return aborted


class FakeMetadataStore:
    """Keeps FileRecord rows in a list"""

    def __init__(self):
        self.records: list[FileRecord] = []
        self.fail_next: Optional[Exception] = None
        self.schema_ready = False

    async def init_schema(self) -> None:
        self.schema_ready = True

    async def close(self) -> None:
        pass

    async def create(self, new_record: NewFileRecord) -> FileRecord:
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        now = datetime.utcnow()
        record = FileRecord(id=len(self.records) + 1, created_at=now, updated_at=now, **asdict(new_record))
        self.records.append(record)
        return record

    async def get(self, file_id: int) -> Optional[FileRecord]:
        return next((r for r in self.records if r.id == file_id), None)

    async def get_by_path(self, user_id: str, file_path: str) -> Optional[FileRecord]:
        return next((r for r in self.records if r.user_id == user_id and r.file_path == file_path), None)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        UPLOAD_CHUNK_SIZE=40 * MiB,
        THUMBNAIL_PARTIAL_BYTES=10 * MiB,
        THUMBNAIL_FETCH_TIMEOUT=5,
        S3_BUCKET="test-bucket",
    )


@pytest.fixture
def storage() -> FakeObjectStorage:
    return FakeObjectStorage()


@pytest.fixture
def metadata_store() -> FakeMetadataStore:
    return FakeMetadataStore()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def thumbnails(storage, test_settings) -> ThumbnailService:
    return ThumbnailService(storage, test_settings, frame_extractor=write_test_frame)


@pytest.fixture
def orchestrator(registry, storage, thumbnails, metadata_store, test_settings) -> ChunkedUploadOrchestrator:
    return ChunkedUploadOrchestrator(
        registry,
        storage,
        thumbnails,
        metadata_store,
        chunk_size=test_settings.UPLOAD_CHUNK_SIZE
    )

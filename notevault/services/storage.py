"""
S3-compatible object storage adapter (AWS S3 or MinIO via boto3).

Exposes the primitives the upload pipeline needs: single put, ranged get and
the multipart-upload lifecycle. boto3 is blocking, so every call is pushed to
the default executor to keep the event loop free for other requests.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Iterable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..core.config import Settings, settings as default_settings
from ..core.errors import SessionNotFound, StorageIntegrityError, StorageUnavailable

logger = logging.getLogger(__name__)

# Completion errors meaning the supplied part list doesn't match what the store holds
INTEGRITY_ERROR_CODES = {"InvalidPart", "InvalidPartOrder", "EntityTooSmall"}


@dataclass(frozen=True)
class UploadedPart:
    """One part acknowledged by the store"""
    part_number: int
    checksum: str
    size: int = 0


@dataclass(frozen=True)
class PendingMultipartUpload:
    """A multipart upload the store still holds open"""
    key: str
    upload_handle: str
    initiated: Optional[datetime] = None


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class ObjectStorage:
    """
    Object storage service for user files.

    Key layout: users/{user_id}/{directory path}/{unique filename}
    Thumbnails: same key with the extension replaced by _thumb.jpg
    """

    def __init__(self, config: Settings = default_settings, client=None):
        self.bucket = config.S3_BUCKET
        self.endpoint_url = config.S3_ENDPOINT_URL or None
        self.region = config.S3_REGION
        self.public_url = config.S3_PUBLIC_URL.rstrip("/")

        self.client = client or boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=config.S3_ACCESS_KEY,
            aws_secret_access_key=config.S3_SECRET_KEY,
            region_name=self.region,
            config=Config(signature_version="s3v4", retries={"max_attempts": 3})
        )
        logger.info(f"S3 client initialized: {self.endpoint_url or 'aws'}/{self.bucket}")

    @staticmethod
    def generate_storage_key(user_id: str, filename: str, directory_path: str = "/") -> str:
        """
        Build the object key for a user file.

        Example: ("7", "clip_1700000000000_ab12cd34.mp4", "/videos/2024")
                 -> users/7/videos/2024/clip_1700000000000_ab12cd34.mp4
        """
        clean_path = directory_path.strip("/")
        parts = ["users", str(user_id)]
        if clean_path:
            parts.append(clean_path)
        parts.append(filename)
        return "/".join(parts)

    def object_url(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def _call(self, operation: str, func, **kwargs):
        """Run a blocking boto3 call in the executor and translate its errors"""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, **kwargs))
        except ClientError as e:
            code = _error_code(e)
            logger.error(f"S3 {operation} failed ({code}): {e}")
            if code == "NoSuchUpload":
                raise SessionNotFound(f"Multipart upload no longer exists ({operation})") from e
            if code in INTEGRITY_ERROR_CODES:
                raise StorageIntegrityError(f"Object store rejected parts: {code}") from e
            raise StorageUnavailable(f"Object store {operation} failed: {code or e}") from e
        except BotoCoreError as e:
            logger.error(f"S3 {operation} failed: {e}")
            raise StorageUnavailable(f"Object store {operation} failed: {e}") from e

    async def ensure_bucket_exists(self) -> None:
        """Create bucket if it doesn't exist"""
        def _ensure() -> bool:
            try:
                self.client.head_bucket(Bucket=self.bucket)
                return False
            except ClientError as e:
                if _error_code(e) not in ("404", "NoSuchBucket", "NotFound"):
                    raise
            self.client.create_bucket(Bucket=self.bucket)
            return True

        created = await self._call("ensure_bucket", _ensure)
        if created:
            logger.info(f"Created bucket: {self.bucket}")
        else:
            logger.info(f"Bucket exists: {self.bucket}")

    # ==================== Single objects ====================

    async def put_object(self, key: str, data: bytes, content_type: str) -> str:
        await self._call(
            "put_object",
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=BytesIO(data),
            ContentLength=len(data),
            ContentType=content_type
        )
        logger.info(f"Uploaded {len(data)} bytes to {key}")
        return self.object_url(key)

    async def get_object_range(self, key: str, start: int, end: int) -> bytes:
        """
        Fetch bytes [start, end] (inclusive) of an object.

        The read is bounded to end - start + 1 bytes even if the server
        ignores the Range header.
        """
        limit = end - start + 1

        def _read_range() -> bytes:
            response = self.client.get_object(Bucket=self.bucket, Key=key, Range=f"bytes={start}-{end}")
            body = response["Body"]
            try:
                return body.read(limit)
            finally:
                body.close()

        data = await self._call("get_object", _read_range)
        logger.info(f"Fetched {len(data)} bytes from {key} (range {start}-{end})")
        return data

    async def delete_object(self, key: str) -> None:
        """Delete an object; a key that is already gone is not an error on S3"""
        await self._call("delete_object", self.client.delete_object, Bucket=self.bucket, Key=key)
        logger.info(f"Deleted {key}")

    def generate_presigned_url(self, key: str, expires_in: int = 3600) -> str:
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in
        )

    # ==================== Multipart uploads ====================

    async def initiate_multipart_upload(self, key: str, content_type: str) -> str:
        response = await self._call(
            "create_multipart_upload",
            self.client.create_multipart_upload,
            Bucket=self.bucket,
            Key=key,
            ContentType=content_type
        )
        upload_handle = response["UploadId"]
        logger.info(f"Initiated multipart upload {upload_handle} for {key}")
        return upload_handle

    async def upload_part(self, key: str, upload_handle: str, part_number: int, data: bytes) -> str:
        response = await self._call(
            "upload_part",
            self.client.upload_part,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_handle,
            PartNumber=part_number,
            Body=data,
            ContentLength=len(data)
        )
        return response["ETag"]

    async def list_uploaded_parts(self, key: str, upload_handle: str) -> list[UploadedPart]:
        def _list() -> list[UploadedPart]:
            paginator = self.client.get_paginator("list_parts")
            parts = []
            for page in paginator.paginate(Bucket=self.bucket, Key=key, UploadId=upload_handle):
                for part in page.get("Parts", []):
                    parts.append(UploadedPart(
                        part_number=part["PartNumber"],
                        checksum=part["ETag"],
                        size=part.get("Size", 0)
                    ))
            return parts

        return await self._call("list_parts", _list)

    async def complete_multipart_upload(self, key: str, upload_handle: str, ordered_parts: list[UploadedPart]) -> str:
        await self._call(
            "complete_multipart_upload",
            self.client.complete_multipart_upload,
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_handle,
            MultipartUpload={
                "Parts": [{"PartNumber": p.part_number, "ETag": p.checksum} for p in ordered_parts]
            }
        )
        logger.info(f"Completed multipart upload {upload_handle} for {key} ({len(ordered_parts)} parts)")
        return self.object_url(key)

    async def abort_multipart_upload(self, key: str, upload_handle: str) -> None:
        try:
            await self._call(
                "abort_multipart_upload",
                self.client.abort_multipart_upload,
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_handle
            )
        except SessionNotFound:
            logger.info(f"Multipart upload {upload_handle} for {key} already gone")
            return
        logger.info(f"Aborted multipart upload {upload_handle} for {key}")

    async def list_multipart_uploads(self, prefix: str = "users/") -> list[PendingMultipartUpload]:
        def _list() -> list[PendingMultipartUpload]:
            paginator = self.client.get_paginator("list_multipart_uploads")
            uploads = []
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for upload in page.get("Uploads", []):
                    uploads.append(PendingMultipartUpload(
                        key=upload["Key"],
                        upload_handle=upload["UploadId"],
                        initiated=upload.get("Initiated")
                    ))
            return uploads

        return await self._call("list_multipart_uploads", _list)

    async def abort_orphaned_uploads(self, active_handles: Iterable[str] = (), prefix: str = "users/") -> int:
        """
        Abort every open multipart upload not owned by a live session.

        Sessions are process-local, so after a restart every open upload is
        an orphan and only an explicit abort releases its stored parts.
        """
        active = set(active_handles)
        aborted = 0
        for upload in await self.list_multipart_uploads(prefix):
            if upload.upload_handle in active:
                continue
            await self.abort_multipart_upload(upload.key, upload.upload_handle)
            aborted += 1
        logger.info(f"Orphan sweep aborted {aborted} multipart upload(s) under {prefix}")
        return aborted

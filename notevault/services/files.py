"""
File metadata persistence (files table)
"""
import logging
from dataclasses import dataclass, asdict
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..models import Base, FileRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewFileRecord:
    """Fixed-shape row written once an upload is durable"""
    user_id: str
    filename: str
    original_filename: str
    file_path: str
    file_type: str
    file_size: int
    mime_type: Optional[str]
    directory_path: str
    thumbnail_key: Optional[str] = None


class FileMetadataStore:
    """Writes and reads FileRecord rows"""

    def __init__(self, engine: AsyncEngine, session_maker: async_sessionmaker[AsyncSession]):
        self.engine = engine
        self.session_maker = session_maker

    async def init_schema(self) -> None:
        """Create tables if missing"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified")

    async def close(self) -> None:
        await self.engine.dispose()

    async def create(self, new_record: NewFileRecord) -> FileRecord:
        async with self.session_maker() as session:
            file_record = FileRecord(**asdict(new_record))
            session.add(file_record)
            await session.commit()
            await session.refresh(file_record)

        logger.info(f"Saved file record {file_record.id} for {file_record.file_path}")
        return file_record

    async def get(self, file_id: int) -> Optional[FileRecord]:
        async with self.session_maker() as session:
            return await session.get(FileRecord, file_id)

    async def get_by_path(self, user_id: str, file_path: str) -> Optional[FileRecord]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(FileRecord).where(
                    FileRecord.user_id == user_id,
                    FileRecord.file_path == file_path
                )
            )
            return result.scalar_one_or_none()

"""
Database models for the file manager.

One row per logical file. Rows are written exactly once, when an upload
finishes (chunked complete or single-shot upload); aborted sessions never
reach this table.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, BigInteger, DateTime, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


class FileRecord(Base):
    """
    Metadata for one stored file.

    file_path holds the object-store key (users/{user_id}/{dir}/{filename});
    thumbnail_key is the derived preview object, NULL when none was produced.
    """
    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    directory_path: Mapped[str] = mapped_column(String(500), nullable=False, default="/", index=True)
    thumbnail_key: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    __table_args__ = (
        Index('idx_files_file_path', 'file_path'),
        Index('idx_files_thumbnail_key', 'thumbnail_key'),
    )

    def __repr__(self):
        return f"<FileRecord id={self.id} user_id={self.user_id} path={self.file_path} size={self.file_size}>"

"""Models module exports"""
from .database import Base, FileRecord

__all__ = ["Base", "FileRecord"]

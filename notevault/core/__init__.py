"""Core module exports"""
from .config import settings, Settings
from .database import engine, async_session_maker, build_engine, build_session_maker

__all__ = [
    "settings",
    "Settings",
    "engine",
    "async_session_maker",
    "build_engine",
    "build_session_maker",
]

"""
Database Package

SQLAlchemy models and engine/session helpers for the market data store.
"""

from src.database.connection import build_engine, get_engine, dispose_engine, session_scope
from src.database.models import Base, create_tables

__all__ = [
    "build_engine",
    "get_engine",
    "dispose_engine",
    "session_scope",
    "Base",
    "create_tables",
]

"""Database package"""

from casenotify.db.session import AsyncSessionLocal, engine, get_db, create_tables
from casenotify.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db", "create_tables"]

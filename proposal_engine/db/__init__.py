"""Database package"""

from proposal_engine.db.session import AsyncSessionLocal, engine, get_db
from proposal_engine.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]

"""Database package."""

from taskhub.db.base import Base, BaseModel
from taskhub.db.session import get_db_session

__all__ = ["Base", "BaseModel", "get_db_session"]

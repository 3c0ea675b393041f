from querychat.db.base import Base
from querychat.db.session import engine, SessionLocal
from querychat.db.tables import ALL_TABLE_NAMES

__all__ = ["engine", "SessionLocal", "Base", "ALL_TABLE_NAMES"]

"""
Key-value entry: one JSON document per storage key (chat sessions, saved visualizations, access token).
"""
from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from querychat.db.base import Base


class KVEntry(Base):
    __tablename__ = "kv_entries"

    id = Column(Integer, primary_key=True)
    key = Column(String(128), unique=True, nullable=False, index=True)
    value = Column(Text, nullable=True)  # JSON text as written by the stores
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

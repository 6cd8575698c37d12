"""Key-value entry model (flat namespace shared by every project)."""
from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.sql import func
from tasksync.database import Base


class KeyValueEntry(Base):
    """One string value under a namespaced key, e.g. ``tasksync:tasks:<hash>``."""

    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

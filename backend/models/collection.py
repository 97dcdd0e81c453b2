"""Stored collection model definitions."""

from sqlalchemy import Column, DateTime, String, Text, func
from backend.database import Base


class StoredCollection(Base):
    """One JSON-encoded entity collection, keyed by collection name."""
    __tablename__ = "stored_collections"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False, default="[]")
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

from sqlalchemy import Column, String, Text
from .base import Base, TimestampMixin


class StoredValue(Base, TimestampMixin):
    """One persisted key-value entry (offline queue, cached session, reference data)."""
    __tablename__ = "kv_store"

    key = Column(String(200), primary_key=True)
    value = Column(Text, nullable=False)  # JSON document, written whole on every change

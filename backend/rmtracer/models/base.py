import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, create_engine
from sqlalchemy.orm import declarative_base


def _connect_args(url: str) -> dict:
    # SQLite connections are shared between the event loop and worker threads
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def make_engine(url: str):
    return create_engine(url, connect_args=_connect_args(url))


Base = declarative_base()


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

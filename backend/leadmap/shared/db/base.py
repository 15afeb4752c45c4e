"""
Base class for all SQLAlchemy ORM models.
Alembic reads Base.metadata to detect schema changes.
"""
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import Column, DateTime
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """
    Adds created_at / updated_at columns.
    Usage: class ScrapingResult(Base, TimestampMixin):
    """
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        onupdate=func.now()
    )


def sync_database_url(url: str) -> str:
    """asyncpg / bare postgres URL -> psycopg2 URL, for Alembic."""
    if url.startswith("postgresql+asyncpg://"):
        return "postgresql+psycopg2://" + url[len("postgresql+asyncpg://"):]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg2://" + url[len("postgresql://"):]
    return url

"""
Scraping Session ORM Model
One configured Google Maps search and its lifecycle, driven by worker callbacks.
"""
import uuid

from sqlalchemy import Column, Text, Integer, Boolean, DateTime, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from leadmap.shared.db.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class ScrapingSession(Base):
    """
    ORM Model for the scraping_sessions table.

    status moves pending → in_progress → completed|failed and never backwards.
    version is bumped on every write and used for compare-and-set updates.
    """
    __tablename__ = "scraping_sessions"

    id = Column(Text, primary_key=True, default=_new_id)
    user_id = Column(Text, nullable=False)

    # ============================================
    # SEARCH PARAMETERS
    # ============================================
    google_maps_url = Column(Text, nullable=True)
    sector = Column(Text, nullable=False)
    location = Column(Text, nullable=True)
    limit_results = Column(Integer, nullable=False, default=10)
    email_notification = Column(Text, nullable=True)

    # ============================================
    # SPREADSHEET DESTINATION
    # ============================================
    new_file = Column(Boolean, nullable=False, default=False)
    file_name = Column(Text, nullable=True)
    sheet_name = Column(Text, nullable=True)
    sheet_url = Column(Text, nullable=True)

    # ============================================
    # LIFECYCLE
    # ============================================
    status = Column(Text, nullable=False, default='pending')
    progress_percentage = Column(Integer, nullable=False, default=0)
    current_step = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    # ============================================
    # RESULT COUNTERS
    # ============================================
    actual_results = Column(Integer, nullable=False, default=0)
    emails_found = Column(Integer, nullable=False, default=0)
    scraped_data = Column(JSONB, nullable=True)  # Last raw batch from the worker

    # ============================================
    # TIMESTAMPS
    # ============================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index('idx_scraping_sessions_user', 'user_id'),
        Index('idx_scraping_sessions_user_status', 'user_id', 'status'),
        Index('idx_scraping_sessions_created', 'created_at'),
    )

    def __repr__(self):
        return f"<ScrapingSession(id={self.id}, status='{self.status}', results={self.actual_results})>"

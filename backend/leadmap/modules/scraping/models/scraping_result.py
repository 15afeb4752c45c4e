"""
Scraping Result ORM Model
One lead (business) extracted by the worker and attached to a session.
"""
import uuid

from sqlalchemy import Column, Text, Integer, Float, DateTime, Index, ForeignKey
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from leadmap.shared.db.base import Base, TimestampMixin


def _new_id() -> str:
    return str(uuid.uuid4())


class ScrapingResult(Base, TimestampMixin):
    """
    ORM Model for the scraping_results table.

    owner_id duplicates the session owner so the natural key
    (owner_id, natural_key) can be enforced by a unique index.
    """
    __tablename__ = "scraping_results"

    id = Column(Text, primary_key=True, default=_new_id)
    session_id = Column(
        Text,
        ForeignKey('scraping_sessions.id', ondelete='CASCADE'),
        nullable=False
    )
    owner_id = Column(Text, nullable=False)
    natural_key = Column(Text, nullable=False)  # "name|address", normalized

    # ============================================
    # BUSINESS DATA
    # ============================================
    business_name = Column(Text, nullable=False)
    address = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    website = Column(Text, nullable=True)
    rating = Column(Float, nullable=True)
    reviews_count = Column(Integer, nullable=True)
    category = Column(Text, nullable=True)
    maps_url = Column(Text, nullable=True)
    opening_hours = Column(JSONB, nullable=True)
    info = Column(JSONB, nullable=True)
    summary = Column(Text, nullable=True)
    raw_data = Column(JSONB, nullable=True)

    # ============================================
    # PROSPECTING WORKFLOW
    # ============================================
    status = Column(Text, nullable=False, default='to_contact')
    notes = Column(Text, nullable=True)
    last_action_at = Column(DateTime(timezone=True), nullable=True)

    # ============================================
    # EMAIL VERIFICATION
    # ============================================
    email_status = Column(Text, nullable=False, default='unverified')
    email_last_verified_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('uq_scraping_results_owner_key', 'owner_id', 'natural_key', unique=True),
        Index('idx_scraping_results_session', 'session_id'),
        Index('idx_scraping_results_status', 'status'),
    )

    def __repr__(self):
        return f"<ScrapingResult(id={self.id}, name='{self.business_name}', session={self.session_id})>"

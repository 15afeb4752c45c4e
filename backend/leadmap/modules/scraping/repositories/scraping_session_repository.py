"""
Scraping Session Repository
Database operations for the scraping_sessions table.

OPTIMISTIC LOCKING: every lifecycle write goes through apply_changes(),
which only succeeds when the row still carries the version that was read.

NOTE: Methods here do NOT commit. The calling service owns the transaction.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import select, update, delete, func, cast, extract, literal, Integer, DateTime
from sqlalchemy.ext.asyncio import AsyncSession

from leadmap.modules.scraping.models.scraping_session import ScrapingSession
from leadmap.modules.scraping.constants import SessionStatus
from leadmap.shared.core.constants import DEFAULT_PAGE_SIZE
from leadmap.shared.utils.exceptions import ConcurrentModificationError


class ScrapingSessionRepository:
    """Repository for scraping session CRUD and compare-and-set transitions."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    @staticmethod
    def _to_dict(session: ScrapingSession) -> Dict[str, Any]:
        return {k: v for k, v in session.__dict__.items() if not k.startswith('_')}

    # ============================================
    # CREATE
    # ============================================

    async def create_session(self, session_data: dict) -> Dict[str, Any]:
        """Insert a new pending session. Flushes to get server defaults."""
        session = ScrapingSession(**session_data)
        self.db.add(session)
        await self.db.flush()
        await self.db.refresh(session)
        return self._to_dict(session)

    # ============================================
    # READ OPERATIONS
    # ============================================

    async def get_by_id(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a session by ID, bypassing the identity map.
        Retried transitions need the row as it is now, not as first loaded.
        """
        query = (
            select(ScrapingSession)
            .where(ScrapingSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        session = result.scalar_one_or_none()
        return self._to_dict(session) if session else None

    async def get_for_user(self, session_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a session only if it belongs to user_id."""
        query = (
            select(ScrapingSession)
            .where(
                ScrapingSession.id == session_id,
                ScrapingSession.user_id == user_id
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        session = result.scalar_one_or_none()
        return self._to_dict(session) if session else None

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> List[Dict[str, Any]]:
        """Sessions of one user, newest first. scraped_data is left out of list views."""
        query = select(
            ScrapingSession.id,
            ScrapingSession.user_id,
            ScrapingSession.google_maps_url,
            ScrapingSession.sector,
            ScrapingSession.location,
            ScrapingSession.limit_results,
            ScrapingSession.sheet_name,
            ScrapingSession.sheet_url,
            ScrapingSession.status,
            ScrapingSession.progress_percentage,
            ScrapingSession.current_step,
            ScrapingSession.error_message,
            ScrapingSession.version,
            ScrapingSession.actual_results,
            ScrapingSession.emails_found,
            ScrapingSession.created_at,
            ScrapingSession.started_at,
            ScrapingSession.completed_at,
            ScrapingSession.duration_seconds,
        ).where(ScrapingSession.user_id == user_id)

        if status:
            query = query.where(ScrapingSession.status == status)

        query = query.order_by(ScrapingSession.created_at.desc()).offset(skip).limit(limit)

        result = await self.db.execute(query)
        return [dict(row._mapping) for row in result.all()]

    async def count_for_user(self, user_id: str, status: Optional[str] = None) -> int:
        """Total sessions of one user, for pagination."""
        query = select(func.count()).select_from(ScrapingSession).where(
            ScrapingSession.user_id == user_id
        )
        if status:
            query = query.where(ScrapingSession.status == status)

        result = await self.db.execute(query)
        return result.scalar() or 0

    # ============================================
    # UPDATE OPERATIONS
    # ============================================

    async def apply_changes(
        self,
        session_id: str,
        expected_version: int,
        changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Compare-and-set write of a computed transition.

        Raises:
            ConcurrentModificationError: the row was written (or deleted)
                since expected_version was read.
        """
        stmt = (
            update(ScrapingSession)
            .where(
                ScrapingSession.id == session_id,
                ScrapingSession.version == expected_version
            )
            .values(
                **changes,
                version=ScrapingSession.version + 1,
                updated_at=func.now()
            )
            .returning(ScrapingSession)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        session = result.scalar_one_or_none()

        if session is None:
            raise ConcurrentModificationError(
                entity_type="ScrapingSession",
                entity_id=session_id
            )
        return self._to_dict(session)

    async def fail_in_progress_for_user(
        self,
        user_id: str,
        reason: str,
        now: datetime,
        exclude_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Force every in_progress session of a user to failed.
        duration_seconds is computed in SQL the way the reducer computes it
        (whole seconds since started_at, never negative).
        The status predicate makes this a no-op for sessions that reached a
        terminal state in the meantime.
        """
        stmt = (
            update(ScrapingSession)
            .where(
                ScrapingSession.user_id == user_id,
                ScrapingSession.status == SessionStatus.IN_PROGRESS.value
            )
            .values(
                status=SessionStatus.FAILED.value,
                error_message=reason,
                completed_at=now,
                duration_seconds=func.greatest(
                    0,
                    cast(
                        func.floor(extract("epoch", literal(now, DateTime(timezone=True)) - ScrapingSession.started_at)),
                        Integer
                    )
                ),
                version=ScrapingSession.version + 1,
                updated_at=func.now()
            )
            .returning(ScrapingSession)
            .execution_options(synchronize_session=False)
        )
        if exclude_id:
            stmt = stmt.where(ScrapingSession.id != exclude_id)

        result = await self.db.execute(stmt)
        return [self._to_dict(session) for session in result.scalars().all()]

    # ============================================
    # DELETE OPERATIONS
    # ============================================

    async def delete_session(self, session_id: str, user_id: str) -> bool:
        """Delete a user's session; results go with it (ON DELETE CASCADE)."""
        stmt = (
            delete(ScrapingSession)
            .where(
                ScrapingSession.id == session_id,
                ScrapingSession.user_id == user_id
            )
            .returning(ScrapingSession.id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

"""
Scraping Result Repository
Database operations for the scraping_results table (the user's leads).

Key patterns:
- INSERT ... ON CONFLICT DO NOTHING on (owner_id, natural_key)
- Batch operations with chunking
- No commits; the service layer manages the transaction
"""
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable, Set

from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects.postgresql import insert

from leadmap.modules.scraping.models.scraping_result import ScrapingResult
from leadmap.modules.scraping.constants import ContactFilter
from leadmap.shared.core.constants import DEFAULT_PAGE_SIZE, INGESTION_CHUNK_SIZE


class ScrapingResultRepository:
    """Repository for scraped leads."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    @staticmethod
    def _to_dict(result: ScrapingResult) -> Dict[str, Any]:
        return {k: v for k, v in result.__dict__.items() if not k.startswith('_')}

    # ============================================
    # INGESTION
    # ============================================

    async def get_natural_keys_for_owner(self, owner_id: str, keys: Iterable[str]) -> Set[str]:
        """Which of the given natural keys the owner already has."""
        keys = list(set(keys))
        if not keys:
            return set()

        existing: Set[str] = set()
        for i in range(0, len(keys), INGESTION_CHUNK_SIZE):
            chunk = keys[i:i + INGESTION_CHUNK_SIZE]
            query = select(ScrapingResult.natural_key).where(
                ScrapingResult.owner_id == owner_id,
                ScrapingResult.natural_key.in_(chunk)
            )
            result = await self.db.execute(query)
            existing.update(row[0] for row in result.all())
        return existing

    async def insert_new_results(
        self,
        rows: List[Dict[str, Any]],
        chunk_size: int = INGESTION_CHUNK_SIZE
    ) -> int:
        """
        Insert rows, silently skipping natural keys that already exist.
        A concurrent delivery of the same batch loses the race here instead
        of raising, so both deliveries converge on one set of rows.

        Returns:
            Number of rows actually inserted.
        """
        if not rows:
            return 0

        inserted = 0
        for i in range(0, len(rows), chunk_size):
            chunk = rows[i:i + chunk_size]
            stmt = (
                insert(ScrapingResult)
                .values(chunk)
                .on_conflict_do_nothing(index_elements=["owner_id", "natural_key"])
                .returning(ScrapingResult.id)
            )
            result = await self.db.execute(stmt)
            inserted += len(result.all())
        return inserted

    # ============================================
    # READ OPERATIONS
    # ============================================

    def _apply_filters(
        self,
        query,
        owner_id: str,
        status: Optional[str],
        contact_filter: Optional[str],
        search: Optional[str],
        session_id: Optional[str]
    ):
        query = query.where(ScrapingResult.owner_id == owner_id)

        if session_id:
            query = query.where(ScrapingResult.session_id == session_id)
        if status:
            query = query.where(ScrapingResult.status == status)

        has_email = and_(ScrapingResult.email.isnot(None), ScrapingResult.email != "")
        has_website = and_(ScrapingResult.website.isnot(None), ScrapingResult.website != "")
        if contact_filter == ContactFilter.EMAIL:
            query = query.where(has_email)
        elif contact_filter == ContactFilter.WEBSITE:
            query = query.where(has_website)
        elif contact_filter == ContactFilter.EMAIL_AND_WEBSITE:
            query = query.where(has_email, has_website)

        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(
                ScrapingResult.business_name.ilike(pattern),
                ScrapingResult.address.ilike(pattern),
                ScrapingResult.category.ilike(pattern),
                ScrapingResult.email.ilike(pattern),
            ))
        return query

    async def list_for_owner(
        self,
        owner_id: str,
        status: Optional[str] = None,
        contact_filter: Optional[str] = None,
        search: Optional[str] = None,
        session_id: Optional[str] = None,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> List[Dict[str, Any]]:
        """Leads of one owner, newest first."""
        query = self._apply_filters(
            select(ScrapingResult), owner_id, status, contact_filter, search, session_id
        )
        query = query.order_by(ScrapingResult.created_at.desc()).offset(skip).limit(limit)

        result = await self.db.execute(query)
        return [self._to_dict(lead) for lead in result.scalars().all()]

    async def count_for_owner(
        self,
        owner_id: str,
        status: Optional[str] = None,
        contact_filter: Optional[str] = None,
        search: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> int:
        """Total leads matching the same filters, for pagination."""
        query = self._apply_filters(
            select(func.count()).select_from(ScrapingResult),
            owner_id, status, contact_filter, search, session_id
        )
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def get_by_id(self, result_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a lead only if it belongs to owner_id."""
        query = select(ScrapingResult).where(
            ScrapingResult.id == result_id,
            ScrapingResult.owner_id == owner_id
        )
        result = await self.db.execute(query)
        lead = result.scalar_one_or_none()
        return self._to_dict(lead) if lead else None

    # ============================================
    # UPDATE OPERATIONS
    # ============================================

    async def update_workflow(
        self,
        result_id: str,
        owner_id: str,
        update_data: Dict[str, Any],
        now: datetime
    ) -> Optional[Dict[str, Any]]:
        """Update status/notes of a lead and stamp last_action_at."""
        stmt = (
            update(ScrapingResult)
            .where(
                ScrapingResult.id == result_id,
                ScrapingResult.owner_id == owner_id
            )
            .values(**update_data, last_action_at=now, updated_at=func.now())
            .returning(ScrapingResult)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        lead = result.scalar_one_or_none()
        return self._to_dict(lead) if lead else None

    async def update_email_status(
        self,
        result_id: str,
        owner_id: str,
        email_status: str,
        verified_at: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """Set the email verification status of a lead."""
        values = {"email_status": email_status, "updated_at": func.now()}
        if verified_at is not None:
            values["email_last_verified_at"] = verified_at

        stmt = (
            update(ScrapingResult)
            .where(
                ScrapingResult.id == result_id,
                ScrapingResult.owner_id == owner_id
            )
            .values(**values)
            .returning(ScrapingResult)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        lead = result.scalar_one_or_none()
        return self._to_dict(lead) if lead else None

"""
Lead Service
Business logic for the leads produced by scraping sessions: listing with
filters, manual prospecting workflow, email verification.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from leadmap.modules.scraping.constants import EmailStatus
from leadmap.modules.scraping.repositories.scraping_result_repository import ScrapingResultRepository
from leadmap.modules.scraping.services.email_verification import verify_email_address
from leadmap.shared.core.constants import DEFAULT_PAGE_SIZE
from leadmap.shared.utils.exceptions import EntityNotFoundError

logger = logging.getLogger("lead_service")


class LeadService:
    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.result_repo = ScrapingResultRepository(db)
        self.clock = clock

    async def list_leads(
        self,
        owner_id: str,
        status: Optional[str] = None,
        contact_filter: Optional[str] = None,
        search: Optional[str] = None,
        session_id: Optional[str] = None,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> Dict[str, Any]:
        filters = dict(status=status, contact_filter=contact_filter, search=search, session_id=session_id)
        results = await self.result_repo.list_for_owner(owner_id, skip=skip, limit=limit, **filters)
        total = await self.result_repo.count_for_owner(owner_id, **filters)
        return {"results": results, "total": total, "skip": skip, "limit": limit}

    async def update_lead(self, result_id: str, owner_id: str, update_data: Dict[str, Any]) -> Dict[str, Any]:
        """Change workflow status and/or notes; always stamps last_action_at."""
        lead = await self.result_repo.update_workflow(result_id, owner_id, update_data, self.clock())
        if lead is None:
            raise EntityNotFoundError("ScrapingResult", result_id)
        await self.db.commit()
        logger.info(f"Lead {result_id} updated: {sorted(update_data)}")
        return lead

    async def verify_lead_email(self, result_id: str, owner_id: str) -> Dict[str, Any]:
        """
        Verify the lead's email address.
        The lead is marked 'verifying' (and committed) while the check runs.
        """
        lead = await self.result_repo.get_by_id(result_id, owner_id)
        if lead is None:
            raise EntityNotFoundError("ScrapingResult", result_id)

        await self.result_repo.update_email_status(result_id, owner_id, EmailStatus.VERIFYING.value)
        await self.db.commit()

        status = await verify_email_address(lead.get("email"))

        lead = await self.result_repo.update_email_status(
            result_id, owner_id, status.value, verified_at=self.clock()
        )
        await self.db.commit()
        logger.info(f"Lead {result_id} email verified: {status.value}")
        return lead

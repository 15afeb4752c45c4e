"""
Scraping Session Service
High-level business logic for scraping sessions.

Orchestrates:
- Session creation and job dispatch to the worker
- Worker callbacks: state transition, then batch ingestion
- Cancellation (plus cleanup of the user's other stuck sessions)
- Publishing committed session rows to observers

Transaction boundaries: the state transition is committed before the batch
is ingested. A failed ingestion therefore never undoes a transition, and a
re-delivered callback finds the transition already applied and only
re-runs the (idempotent) ingestion.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadmap.modules.scraping.constants import (
    SessionStatus,
    CANCELLED_BY_USER_REASON,
    STALE_SESSION_REASON,
    DISPATCH_FAILURE_REASON,
    MAX_TRANSITION_ATTEMPTS,
)
from leadmap.modules.scraping.repositories.scraping_session_repository import ScrapingSessionRepository
from leadmap.modules.scraping.repositories.scraping_result_repository import ScrapingResultRepository
from leadmap.modules.scraping.services.ingestion import IngestionReport, plan_ingestion
from leadmap.modules.scraping.services.progress_estimator import estimate_for_session
from leadmap.modules.scraping.services.session_events import SessionEventHub, session_event_hub
from leadmap.modules.scraping.services.session_state_machine import (
    CallbackUpdate,
    SessionSnapshot,
    Transition,
    apply_callback,
    cancel_transition,
    parse_callback_payload,
)
from leadmap.modules.scraping.services.worker_client import ScrapingWorkerClient, scraping_worker_client
from leadmap.shared.core.constants import DEFAULT_PAGE_SIZE
from leadmap.shared.core.logging import bind_scraping_session
from leadmap.shared.db.session import AsyncSessionLocal
from leadmap.shared.utils.exceptions import (
    ConcurrentModificationError,
    EntityNotFoundError,
    InvalidCallbackError,
    WorkerDispatchError,
)

logger = logging.getLogger("scraping_service")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_session_fetcher(user_id: str, session_factory=AsyncSessionLocal):
    """
    Fetch function for ObservableSession.
    Each call uses its own short-lived DB session, since an event stream
    outlives the request that opened it.
    """
    async def fetch(session_id: str) -> Optional[Dict[str, Any]]:
        async with session_factory() as db:
            return await ScrapingSessionRepository(db).get_for_user(session_id, user_id)
    return fetch


def session_view(row: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Session row plus its progress estimate at `now`."""
    return {"session": row, "progress": estimate_for_session(row, now).to_dict()}


class ScrapingSessionService:
    """
    High-level service for scraping sessions.

    Provides:
    - Create + dispatch
    - Worker callback handling (idempotent, order-insensitive)
    - Cancel / delete
    - Session views with progress estimates
    """

    def __init__(
        self,
        db: AsyncSession,
        worker_client: Optional[ScrapingWorkerClient] = None,
        hub: Optional[SessionEventHub] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.session_repo = ScrapingSessionRepository(db)
        self.result_repo = ScrapingResultRepository(db)
        self.worker_client = worker_client or scraping_worker_client
        self.hub = hub or session_event_hub
        self.clock = clock

    def is_configured(self) -> bool:
        return self.worker_client.is_configured()

    # ============================================
    # TRANSITIONS
    # ============================================

    async def _transition(
        self,
        session_id: str,
        compute: Callable[[SessionSnapshot], Transition]
    ) -> Tuple[Transition, Dict[str, Any]]:
        """
        Read, reduce, compare-and-set; re-read and retry on version conflicts.

        Returns:
            (transition, row) where row is the updated row when applied,
            else the current row.
        """
        for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
            row = await self.session_repo.get_by_id(session_id)
            if row is None:
                raise EntityNotFoundError("ScrapingSession", session_id)

            snapshot = SessionSnapshot.from_row(row)
            transition = compute(snapshot)
            if not transition.applied:
                return transition, row

            try:
                updated = await self.session_repo.apply_changes(
                    session_id, snapshot.version, transition.changes
                )
                return transition, updated
            except ConcurrentModificationError:
                logger.warning(
                    f"Version conflict on session {session_id} (v{snapshot.version}), "
                    f"attempt {attempt}/{MAX_TRANSITION_ATTEMPTS}"
                )

        raise ConcurrentModificationError(
            "ScrapingSession",
            session_id,
            message=f"ScrapingSession {session_id} kept changing after {MAX_TRANSITION_ATTEMPTS} attempts."
        )

    def _publish(self, row: Dict[str, Any]) -> None:
        self.hub.publish(row["id"], row)

    # ============================================
    # CREATE + DISPATCH
    # ============================================

    async def create_session(self, user_id: str, request_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a pending session and hand it to the worker.

        A dispatch failure fails the session (it is still returned). If the
        worker answers synchronously with a callback body, that body is
        processed like any webhook delivery.

        Raises:
            WorkerDispatchError: the worker is not configured at all.
        """
        if not self.is_configured():
            raise WorkerDispatchError("Scraping worker is not configured")

        now = self.clock()
        row = await self.session_repo.create_session({
            **request_data,
            "user_id": user_id,
            "status": SessionStatus.PENDING.value,
            "started_at": now,
        })
        await self.db.commit()
        bind_scraping_session(row["id"])
        logger.info(f"Session {row['id']} created for user {user_id} (limit={row.get('limit_results')})")

        try:
            response = await self.worker_client.dispatch(row)
        except WorkerDispatchError as e:
            reason = f"{DISPATCH_FAILURE_REASON}: {e.message}"
            transition, row = await self._transition(
                row["id"], lambda snapshot: cancel_transition(snapshot, reason, self.clock())
            )
            await self.db.commit()
            if transition.applied:
                self._publish(row)
            logger.error(f"Session {row['id']} failed at dispatch: {e.message}")
            return session_view(row, self.clock())

        if self._is_inline_callback(response):
            try:
                await self.handle_worker_callback(self._with_session_id(response, row["id"]))
            except InvalidCallbackError as e:
                logger.warning(f"Ignoring malformed inline worker answer for {row['id']}: {e.message}")

        return await self.get_session_view(row["id"], user_id)

    @staticmethod
    def _is_inline_callback(response: Any) -> bool:
        body = response[0] if isinstance(response, list) and response else response
        return isinstance(body, dict) and ("statut" in body or "json_donnee_scrappe" in body)

    @staticmethod
    def _with_session_id(response: Any, session_id: str) -> Any:
        body = response[0] if isinstance(response, list) else response
        if not body.get("session_id"):
            body = {**body, "session_id": session_id}
        return body

    # ============================================
    # WORKER CALLBACKS
    # ============================================

    async def handle_worker_callback(self, payload: Any) -> Dict[str, Any]:
        """
        Apply one worker callback delivery.

        Safe to call any number of times with the same payload and in any
        order relative to other callbacks of the session.

        Raises:
            InvalidCallbackError: malformed payload.
            EntityNotFoundError: unknown session.
            SQLAlchemyError: the transition could not be stored.
        """
        update = parse_callback_payload(payload)
        bind_scraping_session(update.session_id)
        now = self.clock()

        try:
            transition, row = await self._transition(
                update.session_id, lambda snapshot: apply_callback(snapshot, update, now)
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        if transition.applied:
            self._publish(row)
            logger.info(
                f"Session {update.session_id} → {transition.target.value} "
                f"(raw={update.raw_status!r}, v{row.get('version')})"
            )
        else:
            logger.info(
                f"Callback for session {update.session_id} not applied ({transition.reason}): "
                f"{row.get('status')} stays, got {transition.target.value}"
            )

        report = await self._ingest(row, update)

        return {
            "session_id": update.session_id,
            "status": row.get("status"),
            "transition_applied": transition.applied,
            "reason": transition.reason,
            "results_count": update.results_count,
            "emails_found": update.emails_found,
            "inserted": report.inserted,
            "skipped_duplicates": report.skipped_duplicates,
            "ingestion": report.to_dict(),
        }

    async def _ingest(self, row: Dict[str, Any], update: CallbackUpdate) -> IngestionReport:
        """
        Store the callback's batch as leads of the session owner.
        Runs even when the session is already terminal: that is how a
        retried delivery completes a previously failed ingestion.
        """
        if update.batch_error:
            logger.error(f"Batch for session {update.session_id} rejected: {update.batch_error}")
            return IngestionReport(status="rejected", error=update.batch_error)

        if not update.batch:
            return IngestionReport(status="skipped")

        owner_id = row["user_id"]
        plan = plan_ingestion(update.session_id, owner_id, update.batch, existing_keys=set())

        try:
            existing = await self.result_repo.get_natural_keys_for_owner(
                owner_id, [r["natural_key"] for r in plan.rows]
            )
            new_rows = [r for r in plan.rows if r["natural_key"] not in existing]
            inserted = await self.result_repo.insert_new_results(new_rows)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Ingestion failed for session {update.session_id}: {e}")
            return IngestionReport(
                status="failed",
                invalid_items=plan.invalid_items,
                error=f"Could not store scraped results: {e.__class__.__name__}"
            )

        skipped = len(plan.rows) - inserted + plan.skipped_duplicates
        logger.info(
            f"Ingested batch for session {update.session_id}: "
            f"{inserted} new, {skipped} duplicate(s), {plan.invalid_items} invalid"
        )
        return IngestionReport(
            status="ingested",
            inserted=inserted,
            skipped_duplicates=skipped,
            invalid_items=plan.invalid_items,
        )

    # ============================================
    # CANCEL / DELETE
    # ============================================

    async def cancel_session(self, session_id: str, user_id: str) -> Dict[str, Any]:
        """
        Stop a session on the user's behalf.

        The session goes to failed unless it already reached a terminal
        state (then nothing changes). Any other in_progress session of the
        same user is force-failed as well.
        """
        if await self.session_repo.get_for_user(session_id, user_id) is None:
            raise EntityNotFoundError("ScrapingSession", session_id)

        bind_scraping_session(session_id)
        now = self.clock()
        transition, row = await self._transition(
            session_id, lambda snapshot: cancel_transition(snapshot, CANCELLED_BY_USER_REASON, now)
        )
        stale = await self.session_repo.fail_in_progress_for_user(
            user_id, STALE_SESSION_REASON, now, exclude_id=session_id
        )
        await self.db.commit()

        if transition.applied:
            self._publish(row)
            logger.info(f"Session {session_id} stopped by user {user_id}")
        else:
            logger.info(f"Cancel of session {session_id} ignored: already {row.get('status')}")

        for stale_row in stale:
            self._publish(stale_row)
        if stale:
            logger.warning(f"Force-failed {len(stale)} stale in_progress session(s) of user {user_id}")

        return {
            **session_view(row, self.clock()),
            "cancelled": transition.applied,
            "stale_sessions_failed": [r["id"] for r in stale],
        }

    async def delete_session(self, session_id: str, user_id: str) -> None:
        """Delete a session and, by cascade, its results."""
        deleted = await self.session_repo.delete_session(session_id, user_id)
        if not deleted:
            raise EntityNotFoundError("ScrapingSession", session_id)
        await self.db.commit()
        logger.info(f"Session {session_id} deleted by user {user_id}")

    # ============================================
    # READS
    # ============================================

    async def get_session_view(self, session_id: str, user_id: str) -> Dict[str, Any]:
        row = await self.session_repo.get_for_user(session_id, user_id)
        if row is None:
            raise EntityNotFoundError("ScrapingSession", session_id)
        return session_view(row, self.clock())

    async def list_sessions(
        self,
        user_id: str,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> Dict[str, Any]:
        rows = await self.session_repo.list_for_user(user_id, status=status, skip=skip, limit=limit)
        total = await self.session_repo.count_for_user(user_id, status=status)
        now = self.clock()
        sessions: List[Dict[str, Any]] = [session_view(row, now) for row in rows]
        return {"sessions": sessions, "total": total, "skip": skip, "limit": limit}

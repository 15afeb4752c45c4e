"""
Scraping API Endpoints
Session management, live session events and lead management.

Every route acts on behalf of the user given in the X-User-Id header;
authentication itself happens upstream.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query, Header, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from leadmap.shared.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from leadmap.shared.db.session import get_db
from leadmap.shared.utils.exceptions import (
    ConcurrentModificationError,
    EntityNotFoundError,
    WorkerDispatchError,
)
from leadmap.modules.scraping.constants import (
    SessionStatus,
    LeadStatus,
    ContactFilter,
    FALLBACK_POLL_INTERVAL_SECONDS,
)
from leadmap.modules.scraping.schemas.scraping_schemas import (
    CreateSessionRequest,
    UpdateLeadRequest,
    SessionViewResponse,
    SessionsListResponse,
    CancelSessionResponse,
    ScrapingResultItem,
    ScrapingResultsListResponse,
)
from leadmap.modules.scraping.services.lead_service import LeadService
from leadmap.modules.scraping.services.scraping_service import ScrapingSessionService, make_session_fetcher
from leadmap.modules.scraping.services.session_events import ObservableSession, session_event_hub

router = APIRouter()
logger = logging.getLogger("scraping_api")


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, injected by the upstream auth layer."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(jsonable_encoder(data), separators=(',', ':'))}\n\n"


# ============================================
# SESSIONS
# ============================================

@router.post("/sessions", response_model=SessionViewResponse, status_code=201, summary="Create and launch a scraping session")
async def create_session(
    request: CreateSessionRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a session and dispatch it to the worker.
    If dispatch fails the session is returned already failed, with the
    reason in error_message.
    """
    service = ScrapingSessionService(db)
    if not service.is_configured():
        raise HTTPException(status_code=503, detail="Scraping worker not configured")

    try:
        return await service.create_session(user_id, request.model_dump())
    except WorkerDispatchError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.get("/sessions", response_model=SessionsListResponse, summary="List my scraping sessions")
async def list_sessions(
    status: Optional[SessionStatus] = Query(None, description="Filter by lifecycle status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = ScrapingSessionService(db)
    return await service.list_sessions(
        user_id, status=status.value if status else None, skip=skip, limit=limit
    )


@router.get("/sessions/{session_id}", response_model=SessionViewResponse, summary="Get a session with its progress")
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = ScrapingSessionService(db)
    try:
        return await service.get_session_view(session_id, user_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")


@router.get("/sessions/{session_id}/events", summary="Stream session changes (Server-Sent Events)")
async def stream_session_events(
    session_id: str,
    poll_interval: float = Query(FALLBACK_POLL_INTERVAL_SECONDS, ge=0.5, le=60),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    One `session` event per observed change (push or fallback poll), then
    an `end` event once the session is terminal or deleted.
    """
    service = ScrapingSessionService(db)
    try:
        await service.get_session_view(session_id, user_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")

    observable = ObservableSession(
        session_id,
        fetch=make_session_fetcher(user_id),
        hub=session_event_hub,
        poll_interval=poll_interval,
    )

    async def event_stream():
        async for view in observable.updates():
            yield _sse("session", view.to_dict())
        yield _sse("end", {"session_id": session_id})

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    )


@router.post("/sessions/{session_id}/cancel", response_model=CancelSessionResponse, summary="Stop a running session")
async def cancel_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = ScrapingSessionService(db)
    try:
        return await service.cancel_session(session_id, user_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    except ConcurrentModificationError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.delete("/sessions/{session_id}", status_code=204, summary="Delete a session and its leads")
async def delete_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = ScrapingSessionService(db)
    try:
        await service.delete_session(session_id, user_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    return Response(status_code=204)


# ============================================
# RESULTS (LEADS)
# ============================================

@router.get("/results", response_model=ScrapingResultsListResponse, summary="List my leads")
async def list_results(
    status: Optional[LeadStatus] = Query(None, description="Prospecting status"),
    contact_filter: ContactFilter = Query(ContactFilter.ALL, description="Required contact channels"),
    search: Optional[str] = Query(None, description="Matches name, address, category or email"),
    session_id: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = LeadService(db)
    return await service.list_leads(
        user_id,
        status=status.value if status else None,
        contact_filter=contact_filter.value,
        search=search or None,
        session_id=session_id,
        skip=skip,
        limit=limit,
    )


@router.patch("/results/{result_id}", response_model=ScrapingResultItem, summary="Update a lead's status or notes")
async def update_result(
    result_id: str,
    request: UpdateLeadRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = LeadService(db)
    try:
        return await service.update_lead(result_id, user_id, request.to_update_data())
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Lead not found")


@router.post("/results/{result_id}/verify-email", response_model=ScrapingResultItem, summary="Verify a lead's email")
async def verify_result_email(
    result_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = LeadService(db)
    try:
        return await service.verify_lead_email(result_id, user_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail="Lead not found")

"""
Scraping Schemas

Pydantic models for API request/response validation.
"""

from .scraping_schemas import (
    # Request schemas
    CreateSessionRequest,
    UpdateLeadRequest,
    # Response schemas
    ProgressInfo,
    ScrapingSessionSummary,
    ScrapingSessionDetail,
    SessionViewResponse,
    SessionListItem,
    SessionsListResponse,
    CancelSessionResponse,
    ScrapingResultItem,
    ScrapingResultsListResponse,
    WebhookProcessed,
    WebhookResponse,
)

__all__ = [
    "CreateSessionRequest",
    "UpdateLeadRequest",
    "ProgressInfo",
    "ScrapingSessionSummary",
    "ScrapingSessionDetail",
    "SessionViewResponse",
    "SessionListItem",
    "SessionsListResponse",
    "CancelSessionResponse",
    "ScrapingResultItem",
    "ScrapingResultsListResponse",
    "WebhookProcessed",
    "WebhookResponse",
]

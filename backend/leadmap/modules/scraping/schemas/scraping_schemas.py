"""
Scraping - Pydantic Schemas
Request and Response models for API endpoints.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime

from leadmap.modules.scraping.constants import (
    LeadStatus,
    EmailStatus,
    DEFAULT_LIMIT_RESULTS,
)
from leadmap.shared.core.constants import MAX_LIMIT_RESULTS


# ============================================
# REQUEST MODELS
# ============================================

class CreateSessionRequest(BaseModel):
    """Configure and launch a Google Maps scraping session"""
    google_maps_url: Optional[str] = Field(
        default=None,
        description="Google Maps search URL to scrape"
    )
    sector: str = Field(
        ...,
        min_length=1,
        description="Business sector searched (e.g. 'plombier')"
    )
    location: Optional[str] = None
    limit_results: int = Field(
        default=DEFAULT_LIMIT_RESULTS,
        ge=1,
        le=MAX_LIMIT_RESULTS,
        description="Maximum number of businesses to scrape"
    )
    email_notification: Optional[str] = Field(
        default=None,
        description="Address notified by the worker when the job ends"
    )
    new_file: bool = Field(
        default=False,
        description="Create a new spreadsheet instead of appending to sheet_url"
    )
    file_name: Optional[str] = None
    sheet_name: Optional[str] = None
    sheet_url: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "google_maps_url": "https://www.google.com/maps/search/plombier+lyon",
                "sector": "plombier",
                "location": "Lyon",
                "limit_results": 20,
                "new_file": True,
                "file_name": "Plombiers Lyon",
                "sheet_name": "Leads"
            }
        }

    @field_validator("google_maps_url")
    @classmethod
    def validate_maps_url(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("google_maps_url must be an http(s) URL")
        return v

    @model_validator(mode="after")
    def validate_destination(self):
        if self.new_file and not self.file_name:
            raise ValueError("file_name is required when new_file is true")
        return self


class UpdateLeadRequest(BaseModel):
    """Manual prospecting update on a lead"""
    status: Optional[LeadStatus] = None
    notes: Optional[str] = None

    def to_update_data(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        if data.get("status") is None:
            data.pop("status", None)
        else:
            data["status"] = data["status"].value
        return data


# ============================================
# RESPONSE MODELS
# ============================================

class ProgressInfo(BaseModel):
    """What an observer displays for a session"""
    display_percentage: int
    step_index: int
    current_step: str
    remaining_seconds: int
    remaining_label: str
    is_complete: bool


class ScrapingSessionSummary(BaseModel):
    """Session row as listed to its owner"""
    id: str
    user_id: str
    google_maps_url: Optional[str] = None
    sector: str
    location: Optional[str] = None
    limit_results: int
    sheet_name: Optional[str] = None
    sheet_url: Optional[str] = None
    status: str
    progress_percentage: int = 0
    current_step: Optional[str] = None
    error_message: Optional[str] = None
    version: int
    actual_results: int = 0
    emails_found: int = 0
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None


class ScrapingSessionDetail(ScrapingSessionSummary):
    """Full session including the request parameters"""
    email_notification: Optional[str] = None
    new_file: bool = False
    file_name: Optional[str] = None
    updated_at: Optional[datetime] = None


class SessionViewResponse(BaseModel):
    session: ScrapingSessionDetail
    progress: ProgressInfo


class SessionListItem(BaseModel):
    session: ScrapingSessionSummary
    progress: ProgressInfo


class SessionsListResponse(BaseModel):
    sessions: List[SessionListItem]
    total: int
    skip: int
    limit: int


class CancelSessionResponse(SessionViewResponse):
    cancelled: bool
    stale_sessions_failed: List[str] = []


class ScrapingResultItem(BaseModel):
    """A lead"""
    id: str
    session_id: str
    business_name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[float] = None
    reviews_count: Optional[int] = None
    category: Optional[str] = None
    maps_url: Optional[str] = None
    opening_hours: Optional[Any] = None
    info: Optional[Any] = None
    summary: Optional[str] = None
    status: LeadStatus = LeadStatus.TO_CONTACT
    notes: Optional[str] = None
    last_action_at: Optional[datetime] = None
    email_status: EmailStatus = EmailStatus.UNVERIFIED
    email_last_verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ScrapingResultsListResponse(BaseModel):
    results: List[ScrapingResultItem]
    total: int
    skip: int
    limit: int


class WebhookProcessed(BaseModel):
    session_id: str
    status: Optional[str] = None
    transition_applied: bool
    reason: Optional[str] = None
    results_count: Optional[int] = None
    emails_found: Optional[int] = None
    inserted: int = 0
    skipped_duplicates: int = 0
    ingestion: Dict[str, Any]


class WebhookResponse(BaseModel):
    """Response to the worker callback"""
    success: bool
    message: str
    processed: WebhookProcessed

"""
Scraping Services

Business logic layer for the scraping module.
"""

from .worker_client import ScrapingWorkerClient, scraping_worker_client
from .session_events import SessionEventHub, ObservableSession, session_event_hub
from .scraping_service import ScrapingSessionService
from .lead_service import LeadService

__all__ = [
    "ScrapingWorkerClient",
    "scraping_worker_client",
    "SessionEventHub",
    "ObservableSession",
    "session_event_hub",
    "ScrapingSessionService",
    "LeadService",
]

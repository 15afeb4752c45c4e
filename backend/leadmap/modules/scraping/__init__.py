"""
Scraping Module

Google Maps lead scraping driven by an external worker:
- Session lifecycle driven by worker callbacks (rank-ordered, idempotent)
- Deduplicated ingestion of scraped batches
- Progress estimation for observers
- Push + polling change propagation
"""

from .models.scraping_session import ScrapingSession
from .models.scraping_result import ScrapingResult

__all__ = [
    "ScrapingSession",
    "ScrapingResult",
]

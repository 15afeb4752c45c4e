"""
Scraping Repositories

Database access layer for the scraping module.
"""

from .scraping_session_repository import ScrapingSessionRepository
from .scraping_result_repository import ScrapingResultRepository

__all__ = [
    "ScrapingSessionRepository",
    "ScrapingResultRepository",
]

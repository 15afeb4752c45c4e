"""
Scraping Models

Exports all ORM models for the scraping module.
"""

from .scraping_session import ScrapingSession
from .scraping_result import ScrapingResult

__all__ = [
    "ScrapingSession",
    "ScrapingResult",
]

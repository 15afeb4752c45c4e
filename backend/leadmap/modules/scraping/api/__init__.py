"""
Scraping Module - API Router
Combines all routes from this module for easy registration in main.py
"""
from fastapi import APIRouter
from leadmap.modules.scraping.api import scraping_endpoints
from leadmap.modules.scraping.api import webhook_endpoints

# Create module router
router = APIRouter()

# Sessions, events and leads
router.include_router(
    scraping_endpoints.router,
    prefix="/scraping",
    tags=["Scraping Sessions"]
)

# Worker callbacks
router.include_router(
    webhook_endpoints.router,
    prefix="/scraping",
    tags=["Scraping Worker Webhook"]
)

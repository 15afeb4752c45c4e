"""
Scraping Worker Webhook
Receives progress/completion callbacks from the scraping worker.

Status codes are part of the contract with the worker, which retries on
anything but 2xx/4xx:
- 200: processed (including stale or duplicate deliveries and batches
  that cannot be decoded)
- 400: unreadable JSON or missing session_id
- 401: failed webhook authentication
- 404: unknown session
- 500: transition or ingestion could not be stored; retry is safe
"""
import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadmap.shared.core.config import settings
from leadmap.shared.db.session import get_db
from leadmap.shared.utils.exceptions import (
    ConcurrentModificationError,
    EntityNotFoundError,
    InvalidCallbackError,
)
from leadmap.modules.scraping.schemas.scraping_schemas import WebhookResponse
from leadmap.modules.scraping.services.scraping_service import ScrapingSessionService

router = APIRouter()
logger = logging.getLogger("scraping_webhook")


# ============================================
# WEBHOOK SECURITY
# ============================================

def _get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs; first is the client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else ""


def _is_ip_allowed(client_ip: str) -> bool:
    """Check if client IP is in the whitelist (if configured)."""
    whitelist = [ip.strip() for ip in settings.SCRAPING_WEBHOOK_ALLOWED_IPS.split(",") if ip.strip()]
    if not whitelist:
        return True
    return client_ip in whitelist


def verify_scraping_webhook(request: Request) -> bool:
    """
    Verify a worker callback.

    Security layers:
    1. IP whitelist (if SCRAPING_WEBHOOK_ALLOWED_IPS is configured)
    2. Secret token (if SCRAPING_WEBHOOK_SECRET is configured), sent as
       X-Webhook-Secret or Authorization: Bearer <secret>
    """
    client_ip = _get_client_ip(request)

    if not _is_ip_allowed(client_ip):
        logger.warning(f"Webhook rejected: IP {client_ip} not in whitelist")
        return False

    webhook_secret = settings.SCRAPING_WEBHOOK_SECRET
    if not webhook_secret:
        logger.debug("SCRAPING_WEBHOOK_SECRET not configured - webhook authentication disabled")
        return True

    provided_token = request.headers.get("X-Webhook-Secret") or request.headers.get("Authorization")
    if not provided_token:
        logger.warning(f"Webhook rejected: Missing authentication header from {client_ip}")
        return False

    if provided_token.startswith("Bearer "):
        provided_token = provided_token[7:]

    if not secrets.compare_digest(provided_token, webhook_secret):
        logger.warning(f"Webhook rejected: Invalid secret token from {client_ip}")
        return False

    return True


def _error(status_code: int, error: str, details: Optional[Any] = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# ============================================
# WEBHOOK ENDPOINT
# ============================================

@router.post("/webhook", response_model=WebhookResponse, summary="Scraping worker callback")
async def scraping_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Handle a worker callback (object or one-element list).

    Deliveries are idempotent: a repeated or late callback never moves a
    session backwards and never duplicates leads.
    """
    if not verify_scraping_webhook(request):
        return _error(401, "Unauthorized webhook request")

    try:
        payload = await request.json()
    except ValueError as e:
        logger.error(f"Invalid webhook JSON payload: {str(e)}")
        return _error(400, "Invalid JSON payload", str(e))

    service = ScrapingSessionService(db)
    try:
        processed = await service.handle_worker_callback(payload)
    except InvalidCallbackError as e:
        logger.warning(f"Rejected callback: {e.message}")
        return _error(400, e.message, e.details)
    except EntityNotFoundError as e:
        logger.warning(f"Callback for unknown session: {e.entity_id}")
        return _error(404, "Session not found", {"session_id": e.entity_id})
    except ConcurrentModificationError as e:
        return _error(500, "Session is being modified concurrently, retry later", e.message)
    except SQLAlchemyError as e:
        logger.error(f"Database error while handling callback: {e}")
        return _error(500, "Could not store callback", e.__class__.__name__)

    if processed["ingestion"]["status"] == "failed":
        logger.error(
            f"Partial processing for session {processed['session_id']}: "
            f"transition stored, ingestion failed ({processed['ingestion']['error']})"
        )
        return _error(500, "Scraped results could not be ingested", {"processed": processed})

    if processed["ingestion"]["status"] == "rejected":
        message = "Callback processed, scraped batch rejected"
    elif processed["transition_applied"]:
        message = "Callback processed"
    else:
        message = "Callback acknowledged, session unchanged"

    return WebhookResponse(
        success=True,
        message=message,
        processed=processed,
    )

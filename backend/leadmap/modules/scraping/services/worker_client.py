"""
Scraping Worker Client
Outbound job dispatch to the external scraping worker (an n8n webhook).

The worker receives one JSON job per session, scrapes Google Maps, and
reports back through POST /api/v1/scraping/webhook. Some worker setups
answer the dispatch call synchronously with the final callback payload;
that body is returned to the caller so it can be fed through the same
callback path.

Retry Strategy:
- Max 3 attempts with exponential backoff (2s, 4s, 8s)
- Only retries on: Timeout, Connection errors, 5xx server errors
- Does NOT retry on: 4xx client errors
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from leadmap.shared.core.config import settings
from leadmap.shared.core.constants import TIMEOUT_WORKER_DISPATCH
from leadmap.shared.utils.exceptions import WorkerDispatchError
from leadmap.shared.utils.http_client import http_client_manager

logger = logging.getLogger("scraping_worker_client")

# Retry settings
MAX_RETRY_ATTEMPTS = 3
RETRY_MIN_WAIT_SECONDS = 2
RETRY_MAX_WAIT_SECONDS = 10


class WorkerRetryableError(Exception):
    """Exception that indicates the dispatch should be retried."""
    pass


def worker_retry():
    """
    Retry decorator for worker dispatch.

    Retries on WorkerRetryableError (5xx) and httpx timeouts/connection
    errors. WorkerDispatchError (4xx) is raised immediately.
    """
    return retry(
        stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
        wait=wait_exponential(
            multiplier=1,
            min=RETRY_MIN_WAIT_SECONDS,
            max=RETRY_MAX_WAIT_SECONDS
        ),
        retry=retry_if_exception_type((
            WorkerRetryableError,
            httpx.TimeoutException,
            httpx.ConnectError,
        )),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


class ScrapingWorkerClient:
    """HTTP client for the scraping worker."""

    def __init__(self, webhook_url: Optional[str] = None, secret: Optional[str] = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.WORKER_WEBHOOK_URL
        self.secret = secret if secret is not None else settings.WORKER_WEBHOOK_SECRET

        if not self.webhook_url:
            logger.warning("WORKER_WEBHOOK_URL not configured in .env")

    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.secret:
            headers["X-Webhook-Secret"] = self.secret
        return headers

    @staticmethod
    def build_payload(session: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """Job payload in the worker's field naming."""
        now = now or datetime.now(timezone.utc)
        return {
            "session_id": session["id"],
            "lien_google_maps": session.get("google_maps_url"),
            "secteur_activite": session.get("sector"),
            "limit_resultats": session.get("limit_results"),
            "email_notification": session.get("email_notification"),
            "nouveau_fichier": bool(session.get("new_file")),
            "nom_fichier": session.get("file_name"),
            "nom_feuille": session.get("sheet_name"),
            "url_fichier": session.get("sheet_url"),
            "timestamp": now.isoformat(),
        }

    async def dispatch(self, session: Dict[str, Any]) -> Any:
        """
        Send a session to the worker.

        Returns:
            The worker's JSON answer ({} when it has no JSON body).

        Raises:
            WorkerDispatchError: not configured, 4xx, or retries exhausted.
        """
        if not self.is_configured():
            raise WorkerDispatchError("Scraping worker is not configured")

        payload = self.build_payload(session)
        try:
            return await self._dispatch_with_retry(payload)
        except WorkerDispatchError:
            raise
        except (WorkerRetryableError, httpx.HTTPError) as e:
            logger.error(f"Dispatch failed after {MAX_RETRY_ATTEMPTS} attempts for session {session['id']}: {e}")
            raise WorkerDispatchError(f"Worker unreachable: {e}")

    @worker_retry()
    async def _dispatch_with_retry(self, payload: Dict[str, Any]) -> Any:
        """Internal method with retry decorator. Raises for retry logic to work."""
        client = http_client_manager.get_client()
        response = await client.post(
            self.webhook_url,
            json=payload,
            headers=self._get_headers(),
            timeout=TIMEOUT_WORKER_DISPATCH
        )

        if response.status_code >= 500:
            logger.warning(f"Worker server error {response.status_code}, will retry...")
            raise WorkerRetryableError(f"Server error: {response.status_code}")

        if response.status_code >= 400:
            logger.error(f"Worker rejected job {payload['session_id']}: {response.status_code} {response.text}")
            raise WorkerDispatchError(
                f"Worker rejected the job: {response.status_code}",
                status_code=response.status_code
            )

        logger.info(f"Job dispatched to worker for session {payload['session_id']}")
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, (dict, list)) else {}


# Singleton instance
scraping_worker_client = ScrapingWorkerClient()

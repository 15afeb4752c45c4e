"""
Lead Email Verification

Single-address verification through the ZeroBounce validate API. Without
ZEROBOUNCE_API_KEY a local heuristic is used so the feature keeps working
in development.
"""
import logging
from typing import Optional

import httpx

from leadmap.modules.scraping.constants import EmailStatus
from leadmap.shared.core.config import settings
from leadmap.shared.core.constants import ZEROBOUNCE_VALIDATE_URL, TIMEOUT_ZEROBOUNCE_INDIVIDUAL
from leadmap.shared.utils.http_client import http_client_manager

logger = logging.getLogger("email_verification")


# ZeroBounce status → lead email status. Unlisted statuses are risky.
ZEROBOUNCE_STATUS_MAP = {
    "valid": EmailStatus.VALID,
    "invalid": EmailStatus.INVALID,
    "spamtrap": EmailStatus.INVALID,
    "abuse": EmailStatus.INVALID,
    "do_not_mail": EmailStatus.INVALID,
    "catch-all": EmailStatus.RISKY,
    "unknown": EmailStatus.RISKY,
}


def heuristic_status(email: str) -> EmailStatus:
    """Offline fallback: 'error' → invalid, 'test' → risky, else valid."""
    lowered = email.lower()
    if "error" in lowered:
        return EmailStatus.INVALID
    if "test" in lowered:
        return EmailStatus.RISKY
    return EmailStatus.VALID


async def verify_email_address(email: Optional[str], api_key: Optional[str] = None) -> EmailStatus:
    """
    Verify one address.

    A lead without an address is invalid. API failures are logged and
    reported as risky rather than failing the request.
    """
    if not email or "@" not in email:
        return EmailStatus.INVALID

    email = email.strip()
    api_key = api_key if api_key is not None else settings.ZEROBOUNCE_API_KEY
    if not api_key:
        return heuristic_status(email)

    params = {"api_key": api_key, "email": email, "ip_address": ""}
    try:
        client = http_client_manager.get_client()
        response = await client.get(
            ZEROBOUNCE_VALIDATE_URL,
            params=params,
            timeout=TIMEOUT_ZEROBOUNCE_INDIVIDUAL
        )
    except httpx.HTTPError as e:
        logger.error(f"ZeroBounce request failed for {email}: {e}")
        return EmailStatus.RISKY

    if response.status_code != 200:
        logger.error(f"ZeroBounce API error for {email}: {response.status_code} {response.text}")
        return EmailStatus.RISKY

    try:
        data = response.json()
    except ValueError:
        logger.error(f"ZeroBounce returned a non-JSON body for {email}")
        return EmailStatus.RISKY

    zb_status = str(data.get("status") or "").lower()
    return ZEROBOUNCE_STATUS_MAP.get(zb_status, EmailStatus.RISKY)

"""
Scraping Module Constants
Centralized enums and policy values for the scraping session lifecycle.
"""
from enum import Enum
from typing import Optional


class SessionStatus(str, Enum):
    """
    Lifecycle of a scraping session.

    Flow: PENDING → IN_PROGRESS → COMPLETED
                              ↘ FAILED

    COMPLETED and FAILED are terminal and share the highest rank.
    """
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in (cls.COMPLETED, cls.FAILED)


_STATUS_RANK = {
    SessionStatus.PENDING: 0,
    SessionStatus.IN_PROGRESS: 1,
    SessionStatus.COMPLETED: 2,
    SessionStatus.FAILED: 2,
}


class WorkerStatusToken(str, Enum):
    """`statut` values sent by the n8n worker."""
    DONE = "termine"
    RUNNING = "en_cours"
    FAILED = "echoue"


# Worker tokens (plus English aliases) → session status.
# Anything else, including a missing token, means the job is running.
_TOKEN_TO_STATUS = {
    WorkerStatusToken.DONE.value: SessionStatus.COMPLETED,
    "done": SessionStatus.COMPLETED,
    "completed": SessionStatus.COMPLETED,
    WorkerStatusToken.FAILED.value: SessionStatus.FAILED,
    "failed": SessionStatus.FAILED,
    "error": SessionStatus.FAILED,
    WorkerStatusToken.RUNNING.value: SessionStatus.IN_PROGRESS,
    "in_progress": SessionStatus.IN_PROGRESS,
    "running": SessionStatus.IN_PROGRESS,
}


def status_from_token(token: Optional[str]) -> SessionStatus:
    if not token:
        return SessionStatus.IN_PROGRESS
    return _TOKEN_TO_STATUS.get(str(token).strip().lower(), SessionStatus.IN_PROGRESS)


class LeadStatus(str, Enum):
    """Manual prospecting workflow status of a lead."""
    TO_CONTACT = "to_contact"
    IN_PROGRESS = "in_progress"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    REJECTED = "rejected"


class EmailStatus(str, Enum):
    """Email verification status of a lead."""
    UNVERIFIED = "unverified"
    VERIFYING = "verifying"
    VALID = "valid"
    RISKY = "risky"
    INVALID = "invalid"


class ContactFilter(str, Enum):
    """Lead list filter on available contact channels."""
    ALL = "all"
    EMAIL = "email"
    WEBSITE = "website"
    EMAIL_AND_WEBSITE = "email_and_website"


# ============================================
# INGESTION
# ============================================
NO_EMAIL_SENTINEL = "aucun_mail"
UNNAMED_BUSINESS = "Sans nom"

# ============================================
# CANCELLATION REASONS
# ============================================
CANCELLED_BY_USER_REASON = "Stopped by user"
STALE_SESSION_REASON = "Stale session cleanup"
WORKER_FAILURE_REASON = "Worker reported failure"
DISPATCH_FAILURE_REASON = "Worker dispatch failed"

# ============================================
# PROGRESS ESTIMATION
# ============================================
SECONDS_PER_RESULT = 16          # Observed average worker time per lead
DEFAULT_LIMIT_RESULTS = 10
MAX_ESTIMATED_PERCENTAGE = 99    # Only a completed session shows 100

# (threshold, label) from highest to lowest; must stay sorted
PROGRESS_STEPS = [
    (90, "Finalisation"),
    (60, "Recherche des emails"),
    (20, "Extraction des données"),
    (0, "Connexion à Google Maps"),
]

# ============================================
# CHANGE PROPAGATION
# ============================================
FALLBACK_POLL_INTERVAL_SECONDS = 3.0
SUBSCRIBER_QUEUE_SIZE = 16

# Session write retries on optimistic-lock conflicts
MAX_TRANSITION_ATTEMPTS = 3

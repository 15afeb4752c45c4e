"""
Session State Machine
Pure reducer for the scraping session lifecycle.

Worker callbacks are delivered at least once and possibly out of order, so a
transition is accepted only when its target status ranks at least as high
as the current one:

    pending (0) < in_progress (1) < completed | failed (2)

A terminal session never changes again. Persisting the result is the
repository's job (compare-and-set on the row version); this module only
decides what the new field values are.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from leadmap.modules.scraping.constants import (
    SessionStatus,
    status_from_token,
    PROGRESS_STEPS,
    WORKER_FAILURE_REASON,
)
from leadmap.modules.scraping.services.ingestion import count_emails
from leadmap.shared.utils.exceptions import InvalidCallbackError
from leadmap.shared.utils.json_utils import strict_json_list


REJECTED_TERMINAL = "terminal"
REJECTED_STALE = "stale"


@dataclass(frozen=True)
class SessionSnapshot:
    """The fields of a persisted session the reducer needs."""
    id: str
    status: SessionStatus
    version: int
    progress_percentage: int = 0
    actual_results: int = 0
    emails_found: int = 0
    started_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SessionSnapshot":
        return cls(
            id=row["id"],
            status=SessionStatus(row["status"]),
            version=row.get("version") or 1,
            progress_percentage=row.get("progress_percentage") or 0,
            actual_results=row.get("actual_results") or 0,
            emails_found=row.get("emails_found") or 0,
            started_at=row.get("started_at"),
        )

    @property
    def is_terminal(self) -> bool:
        return SessionStatus.is_terminal(self.status)


@dataclass(frozen=True)
class CallbackUpdate:
    """A decoded worker callback."""
    session_id: str
    status: SessionStatus
    raw_status: Optional[str] = None
    sheet_url: Optional[str] = None
    sheet_name: Optional[str] = None
    count: Optional[int] = None
    progress_percentage: Optional[int] = None
    current_step: Optional[str] = None
    error_message: Optional[str] = None
    batch: Optional[List[Any]] = None
    batch_error: Optional[str] = None
    emails_found: Optional[int] = None

    @property
    def results_count(self) -> Optional[int]:
        """Worker-supplied count wins when positive, else the batch length."""
        if self.count:
            return self.count
        if self.batch is not None:
            return len(self.batch)
        return None


@dataclass
class Transition:
    applied: bool
    target: SessionStatus
    changes: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    """True when moving from current to target respects the lifecycle rank."""
    if SessionStatus.is_terminal(current):
        return False
    return target.rank >= current.rank


def _optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidCallbackError(f"{field_name} must be a number", details=repr(value))


def parse_callback_payload(payload: Any) -> CallbackUpdate:
    """
    Decode a worker callback envelope (an object or a one-element list).

    Raises:
        InvalidCallbackError: missing/invalid session_id or malformed numbers.
    A batch that cannot be decoded does not raise: it is reported through
    batch_error so the status transition can still be applied.
    """
    if isinstance(payload, list):
        if not payload:
            raise InvalidCallbackError("Empty callback batch")
        payload = payload[0]

    if not isinstance(payload, dict):
        raise InvalidCallbackError("Callback payload must be a JSON object")

    session_id = payload.get("session_id")
    if not session_id or not isinstance(session_id, str) or not session_id.strip():
        raise InvalidCallbackError("session_id is required")

    raw_status = payload.get("statut") or payload.get("status")

    batch = None
    batch_error = None
    raw_batch = payload.get("json_donnee_scrappe")
    if raw_batch not in (None, ""):
        try:
            batch = strict_json_list(raw_batch)
        except ValueError as e:
            batch_error = f"Could not decode json_donnee_scrappe: {e}"

    progress = _optional_int(payload.get("progress_percentage"), "progress_percentage")
    if progress is not None:
        progress = max(0, min(100, progress))

    count = _optional_int(payload.get("count"), "count")
    if count is not None:
        count = max(0, count)

    return CallbackUpdate(
        session_id=session_id.strip(),
        status=status_from_token(raw_status),
        raw_status=raw_status,
        sheet_url=payload.get("lien_google_sheet"),
        sheet_name=payload.get("nom_feuille_google_sheet"),
        count=count,
        progress_percentage=progress,
        current_step=payload.get("current_step"),
        error_message=payload.get("error_message"),
        batch=batch,
        batch_error=batch_error,
        emails_found=count_emails(batch) if batch is not None else None,
    )


def _duration(started_at: Optional[datetime], now: datetime) -> Optional[int]:
    if started_at is None:
        return None
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    return max(0, int((now - started_at).total_seconds()))


def _rejection(snapshot: SessionSnapshot, target: SessionStatus) -> Optional[Transition]:
    if snapshot.is_terminal:
        return Transition(applied=False, target=target, reason=REJECTED_TERMINAL)
    if not can_transition(snapshot.status, target):
        return Transition(applied=False, target=target, reason=REJECTED_STALE)
    return None


def _terminal_changes(snapshot: SessionSnapshot, target: SessionStatus, now: datetime) -> Dict[str, Any]:
    changes = {
        "status": target.value,
        "completed_at": now,
        "duration_seconds": _duration(snapshot.started_at, now),
    }
    if snapshot.started_at is None:
        changes["started_at"] = now
    return changes


def apply_callback(snapshot: SessionSnapshot, update: CallbackUpdate, now: datetime) -> Transition:
    """Compute the transition a callback produces on the given snapshot."""
    target = update.status
    rejected = _rejection(snapshot, target)
    if rejected:
        return rejected

    if target == SessionStatus.FAILED:
        changes = _terminal_changes(snapshot, target, now)
        changes["error_message"] = update.error_message or WORKER_FAILURE_REASON
        return Transition(applied=True, target=target, changes=changes)

    changes: Dict[str, Any] = {"status": target.value}

    if update.results_count is not None:
        changes["actual_results"] = max(snapshot.actual_results, update.results_count)
    if update.emails_found is not None:
        changes["emails_found"] = max(snapshot.emails_found, update.emails_found)
    if update.sheet_url:
        changes["sheet_url"] = update.sheet_url
    if update.sheet_name:
        changes["sheet_name"] = update.sheet_name
    if update.batch:
        changes["scraped_data"] = update.batch

    if target == SessionStatus.COMPLETED:
        changes.update(_terminal_changes(snapshot, target, now))
        changes["progress_percentage"] = 100
        changes["current_step"] = PROGRESS_STEPS[0][1]
        return Transition(applied=True, target=target, changes=changes)

    if snapshot.started_at is None:
        changes["started_at"] = now
    if update.progress_percentage is not None:
        changes["progress_percentage"] = max(snapshot.progress_percentage, update.progress_percentage)
    if update.current_step:
        changes["current_step"] = update.current_step
    return Transition(applied=True, target=target, changes=changes)


def cancel_transition(snapshot: SessionSnapshot, reason: str, now: datetime) -> Transition:
    """Client-issued cancellation: any non-terminal session → failed."""
    rejected = _rejection(snapshot, SessionStatus.FAILED)
    if rejected:
        return rejected

    changes = _terminal_changes(snapshot, SessionStatus.FAILED, now)
    changes["error_message"] = reason
    return Transition(applied=True, target=SessionStatus.FAILED, changes=changes)

"""
Progress Estimator
Turns a persisted session row into what an observer displays.

The worker only reports coarse progress, so the display blends it with a
time-based estimate (elapsed time vs. limit_results * SECONDS_PER_RESULT).
Everything here is a pure function of its arguments: any number of
observers can call it concurrently.
"""
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Union

from leadmap.modules.scraping.constants import (
    SessionStatus,
    SECONDS_PER_RESULT,
    DEFAULT_LIMIT_RESULTS,
    MAX_ESTIMATED_PERCENTAGE,
    PROGRESS_STEPS,
)


@dataclass(frozen=True)
class ProgressEstimate:
    display_percentage: int
    step_index: int
    current_step: str
    remaining_seconds: int
    remaining_label: str
    is_complete: bool

    def to_dict(self) -> dict:
        return {
            "display_percentage": self.display_percentage,
            "step_index": self.step_index,
            "current_step": self.current_step,
            "remaining_seconds": self.remaining_seconds,
            "remaining_label": self.remaining_label,
            "is_complete": self.is_complete,
        }


def step_for_percentage(percentage: int) -> tuple:
    """
    Map a percentage to (step_index, label).
    Index 0 is the first step; a higher percentage never maps to an earlier step.
    """
    last = len(PROGRESS_STEPS) - 1
    for position, (threshold, label) in enumerate(PROGRESS_STEPS):
        if percentage >= threshold:
            return last - position, label
    return 0, PROGRESS_STEPS[-1][1]


def format_remaining(seconds: int) -> str:
    """80 -> '1m 20s', 45 -> '45s', 0 -> '0s'."""
    seconds = max(0, int(seconds))
    minutes, secs = divmod(seconds, 60)
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def _as_utc(value: Optional[Union[datetime, str]]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def estimate_progress(
    status: str,
    authoritative_progress: Optional[int],
    started_at: Optional[Union[datetime, str]],
    limit_results: Optional[int],
    now: datetime,
    seconds_per_result: int = SECONDS_PER_RESULT,
) -> ProgressEstimate:
    """
    Compute the displayed progress of one session at time `now`.

    - completed: 100%.
    - otherwise: max(authoritative, time estimate), the estimate capped at 99%.
    - failed: as above, but with nothing left to wait for.
    """
    now = _as_utc(now)
    started = _as_utc(started_at) or now
    limit = limit_results if limit_results and limit_results > 0 else DEFAULT_LIMIT_RESULTS
    authoritative = max(0, min(100, int(authoritative_progress or 0)))

    total_seconds = limit * seconds_per_result
    elapsed = max(0.0, (now - started).total_seconds())
    remaining = max(0, math.ceil(total_seconds - elapsed))

    if status == SessionStatus.COMPLETED:
        display = 100
        remaining = 0
    else:
        estimated = min(MAX_ESTIMATED_PERCENTAGE, round(elapsed / total_seconds * 100))
        display = max(authoritative, estimated)
        if status == SessionStatus.FAILED:
            remaining = 0

    step_index, label = step_for_percentage(display)
    return ProgressEstimate(
        display_percentage=display,
        step_index=step_index,
        current_step=label,
        remaining_seconds=remaining,
        remaining_label=format_remaining(remaining),
        is_complete=display >= 100,
    )


def estimate_for_session(session: dict, now: datetime) -> ProgressEstimate:
    """
    Convenience wrapper over a session dict as returned by the repository.
    A failed session is estimated as of its failure, so its bar stops moving.
    """
    if session.get("status") == SessionStatus.FAILED and session.get("completed_at"):
        now = min(_as_utc(now), _as_utc(session["completed_at"]))
    return estimate_progress(
        status=session.get("status"),
        authoritative_progress=session.get("progress_percentage"),
        started_at=session.get("started_at") or session.get("created_at"),
        limit_results=session.get("limit_results"),
        now=now,
    )


class ProgressTracker:
    """
    Remembers the highest percentage already shown on one observation stream
    and never lets a later estimate display less.
    """

    def __init__(self):
        self._highest = 0

    @property
    def highest(self) -> int:
        return self._highest

    def observe(self, estimate: ProgressEstimate) -> ProgressEstimate:
        if estimate.display_percentage >= self._highest:
            self._highest = estimate.display_percentage
            return estimate

        step_index, label = step_for_percentage(self._highest)
        return replace(
            estimate,
            display_percentage=self._highest,
            step_index=step_index,
            current_step=label,
            is_complete=self._highest >= 100,
        )

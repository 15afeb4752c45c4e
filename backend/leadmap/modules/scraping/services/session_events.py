"""
Session Change Propagation

Brings session rows to observers as they change.

- SessionEventHub: in-process fan-out. The service publishes each committed
  session row; every subscriber of that session id gets it on its own
  bounded queue. Publishing never blocks: a full queue drops its oldest row.
- ObservableSession: what an observer holds. It merges pushed rows with a
  periodic re-fetch (the fallback when pushes are lost, or when the write
  happened in another process) and yields SessionView objects carrying the
  row and a non-regressing progress estimate.

The server row is the single source of truth. A row older than the last one
seen (lower version) is ignored; nothing is merged on the observer side.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set

from leadmap.modules.scraping.constants import (
    SessionStatus,
    FALLBACK_POLL_INTERVAL_SECONDS,
    SUBSCRIBER_QUEUE_SIZE,
)
from leadmap.modules.scraping.services.progress_estimator import (
    ProgressEstimate,
    ProgressTracker,
    estimate_for_session,
)

logger = logging.getLogger("session_events")

SessionFetcher = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]

# Large columns kept out of streamed frames
STREAM_EXCLUDED_FIELDS = frozenset({"scraped_data"})


class SessionEventHub:
    """Per-session subscriber queues for committed session rows."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, session_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[session_id].add(queue)
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(session_id)
        if not subscribers:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[session_id]

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def publish(self, session_id: str, row: Dict[str, Any]) -> int:
        """
        Deliver a row to every subscriber of session_id.

        Returns:
            Number of subscribers the row was queued for.
        """
        subscribers = list(self._subscribers.get(session_id, ()))
        for queue in subscribers:
            if queue.full():
                # Slow observer: its fallback poll re-reads the row anyway
                queue.get_nowait()
            queue.put_nowait(row)

        if subscribers:
            logger.debug(f"Published session {session_id} v{row.get('version')} to {len(subscribers)} subscriber(s)")
        return len(subscribers)


# Singleton instance
session_event_hub = SessionEventHub()


@dataclass(frozen=True)
class SessionView:
    """One observation of a session: the server row plus its display progress."""
    session: Dict[str, Any]
    progress: ProgressEstimate
    source: str  # "initial" | "push" | "poll" | "refresh"

    @property
    def version(self) -> int:
        return self.session.get("version") or 0

    @property
    def is_terminal(self) -> bool:
        return SessionStatus.is_terminal(self.session.get("status"))

    def to_dict(self) -> Dict[str, Any]:
        """Serializable frame; the raw scraped batch stays out of it."""
        return {
            "session": {k: v for k, v in self.session.items() if k not in STREAM_EXCLUDED_FIELDS},
            "progress": self.progress.to_dict(),
            "source": self.source,
            "is_terminal": self.is_terminal,
        }


class ObservableSession:
    """
    Observation handle for one session.

    refresh() re-fetches on demand; updates() is an async iterator that
    yields an initial view, then a view per pushed row or poll tick, and
    stops after the session reaches a terminal state or disappears.
    """

    def __init__(
        self,
        session_id: str,
        fetch: SessionFetcher,
        hub: Optional[SessionEventHub] = None,
        poll_interval: float = FALLBACK_POLL_INTERVAL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session_id = session_id
        self.poll_interval = poll_interval
        self._fetch = fetch
        self._hub = hub
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tracker = ProgressTracker()
        self._current: Optional[SessionView] = None

    @property
    def current(self) -> Optional[SessionView]:
        return self._current

    def _accept(self, row: Dict[str, Any], source: str) -> Optional[SessionView]:
        """Turn a row into a view, or None when it is older than what was shown."""
        version = row.get("version") or 0
        if self._current is not None and version < self._current.version:
            logger.debug(f"Ignoring stale row v{version} for session {self.session_id}")
            return None

        progress = self._tracker.observe(estimate_for_session(row, self._clock()))
        self._current = SessionView(session=row, progress=progress, source=source)
        return self._current

    async def refresh(self, source: str = "refresh") -> Optional[SessionView]:
        """
        Re-fetch the session now.

        Returns:
            The new view, the previous view if the fetched row was stale,
            or None if the session no longer exists.
        """
        row = await self._fetch(self.session_id)
        if row is None:
            return None
        return self._accept(row, source) or self._current

    async def _next_row(self, queue: Optional[asyncio.Queue]) -> tuple:
        if queue is None:
            await asyncio.sleep(self.poll_interval)
            return None, "poll"
        try:
            row = await asyncio.wait_for(queue.get(), timeout=self.poll_interval)
            return row, "push"
        except asyncio.TimeoutError:
            return None, "poll"

    async def updates(self) -> AsyncIterator[SessionView]:
        # Subscribe before the first fetch so no push falls in between
        queue = self._hub.subscribe(self.session_id) if self._hub else None
        try:
            view = await self.refresh(source="initial")
            if view is None:
                return
            yield view

            while not view.is_terminal:
                row, source = await self._next_row(queue)
                if row is None:
                    row = await self._fetch(self.session_id)
                    if row is None:
                        logger.info(f"Session {self.session_id} disappeared while observed")
                        return

                accepted = self._accept(row, source)
                if accepted is not None:
                    view = accepted
                    yield view
        finally:
            if queue is not None:
                self._hub.unsubscribe(self.session_id, queue)

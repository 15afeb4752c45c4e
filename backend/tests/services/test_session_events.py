import asyncio
from datetime import datetime, timezone

from leadmap.modules.scraping.services.session_events import ObservableSession, SessionEventHub

FIXED_NOW = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)


class RowStore:
    """Stands in for the database: fetch returns whatever row is current."""

    def __init__(self, row):
        self.row = row
        self.fetches = 0

    async def fetch(self, session_id):
        self.fetches += 1
        return dict(self.row) if self.row else None


def observe(store, hub=None, poll_interval=0.01):
    return ObservableSession(
        "sess-1",
        fetch=store.fetch,
        hub=hub,
        poll_interval=poll_interval,
        clock=lambda: FIXED_NOW,
    )


# --- HUB ---

def test_publish_reaches_every_subscriber():
    async def test_logic():
        hub = SessionEventHub()
        first = hub.subscribe("sess-1")
        second = hub.subscribe("sess-1")
        other = hub.subscribe("sess-2")

        delivered = hub.publish("sess-1", {"id": "sess-1", "version": 2})

        assert delivered == 2
        assert (await first.get())["version"] == 2
        assert (await second.get())["version"] == 2
        assert other.empty()

    asyncio.run(test_logic())


def test_full_queue_drops_oldest_row():
    async def test_logic():
        hub = SessionEventHub(queue_size=2)
        queue = hub.subscribe("sess-1")
        for version in (1, 2, 3):
            hub.publish("sess-1", {"id": "sess-1", "version": version})

        assert [(await queue.get())["version"] for _ in range(2)] == [2, 3]

    asyncio.run(test_logic())


def test_unsubscribe_removes_session_entry():
    async def test_logic():
        hub = SessionEventHub()
        queue = hub.subscribe("sess-1")
        hub.unsubscribe("sess-1", queue)

        assert hub.subscriber_count("sess-1") == 0
        assert hub.publish("sess-1", {"id": "sess-1"}) == 0

    asyncio.run(test_logic())


# --- OBSERVABLE SESSION ---

def test_refresh_returns_view_with_progress(session_row):
    async def test_logic():
        store = RowStore(session_row(status="in_progress", version=2))
        view = await observe(store).refresh()

        assert view.source == "refresh"
        assert view.session["version"] == 2
        assert view.progress.display_percentage == 50
        assert view.is_terminal is False

    asyncio.run(test_logic())


def test_refresh_of_deleted_session_returns_none():
    async def test_logic():
        assert await observe(RowStore(None)).refresh() is None

    asyncio.run(test_logic())


def test_stale_row_does_not_replace_newer_view(session_row):
    async def test_logic():
        store = RowStore(session_row(status="in_progress", version=5, progress_percentage=70))
        observable = observe(store)
        await observable.refresh()

        store.row = session_row(status="in_progress", version=4, progress_percentage=10)
        view = await observable.refresh()

        assert view.session["version"] == 5
        assert view.progress.display_percentage == 70

    asyncio.run(test_logic())


def test_updates_follow_pushes_until_terminal(session_row):
    async def test_logic():
        hub = SessionEventHub()
        store = RowStore(session_row(status="in_progress", version=2))
        observable = observe(store, hub=hub, poll_interval=5)

        seen = []

        async def consume():
            async for view in observable.updates():
                seen.append((view.source, view.session["status"]))

        task = asyncio.create_task(consume())
        while hub.subscriber_count("sess-1") == 0 or not seen:
            await asyncio.sleep(0)

        completed = session_row(status="completed", version=3, progress_percentage=100)
        store.row = completed
        hub.publish("sess-1", completed)
        await asyncio.wait_for(task, timeout=1)

        assert seen == [("initial", "in_progress"), ("push", "completed")]
        assert hub.subscriber_count("sess-1") == 0

    asyncio.run(test_logic())


def test_updates_fall_back_to_polling_without_pushes(session_row):
    async def test_logic():
        store = RowStore(session_row(status="in_progress", version=2))
        observable = observe(store, hub=SessionEventHub(), poll_interval=0.01)

        views = []
        async for view in observable.updates():
            views.append(view)
            if len(views) == 3:
                # Written by another process: no push, only the poll sees it
                store.row = session_row(status="failed", version=3, progress_percentage=20)

        assert [v.source for v in views] == ["initial", "poll", "poll", "poll"]
        assert views[-1].is_terminal
        # Never displays less than what was already shown
        assert views[-1].progress.display_percentage == views[-2].progress.display_percentage == 50

    asyncio.run(test_logic())


def test_updates_stop_when_session_is_deleted(session_row):
    async def test_logic():
        store = RowStore(session_row(status="in_progress"))
        observable = observe(store, poll_interval=0.01)

        views = []
        async for view in observable.updates():
            views.append(view)
            store.row = None

        assert len(views) == 1

    asyncio.run(test_logic())


def test_terminal_session_yields_single_view(session_row):
    async def test_logic():
        store = RowStore(session_row(status="completed", version=4))
        views = [view async for view in observe(store, hub=SessionEventHub()).updates()]

        assert len(views) == 1
        assert views[0].progress.display_percentage == 100

    asyncio.run(test_logic())


def test_view_to_dict_is_flat_for_serialization(session_row):
    async def test_logic():
        store = RowStore(session_row(status="in_progress"))
        data = (await observe(store).refresh()).to_dict()

        assert set(data) == {"session", "progress", "source", "is_terminal"}
        assert data["progress"]["current_step"] == "Extraction des données"

    asyncio.run(test_logic())


def test_view_frame_leaves_out_raw_batch(session_row):
    async def test_logic():
        store = RowStore(session_row(status="completed", scraped_data=[{"Titre": "A"}] * 50))
        view = await observe(store).refresh()
        data = view.to_dict()

        assert "scraped_data" not in data["session"]
        assert data["session"]["status"] == "completed"
        # The observed row itself is untouched
        assert view.session["scraped_data"][0] == {"Titre": "A"}

    asyncio.run(test_logic())

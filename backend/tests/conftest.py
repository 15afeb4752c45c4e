# backend/tests/conftest.py
"""
Shared fixtures for all test modules.
Avoids async fixtures to prevent event loop issues: async code is driven
with asyncio.run() inside each test.
"""

import copy
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock, AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from leadmap.main import app
from leadmap.shared.utils.exceptions import ConcurrentModificationError
from leadmap.modules.scraping.services.scraping_service import ScrapingSessionService
from leadmap.modules.scraping.services.session_events import SessionEventHub


FIXED_NOW = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)


# --- TEST CLIENT FIXTURE ---
@pytest.fixture(scope="module")
def test_client():
    """Create a FastAPI test client."""
    return TestClient(app)


# --- SAMPLE DATA FIXTURES ---
def build_session_row(**overrides):
    row = {
        "id": "sess-1",
        "user_id": "user-1",
        "google_maps_url": "https://www.google.com/maps/search/plombier+lyon",
        "sector": "plombier",
        "location": "Lyon",
        "limit_results": 10,
        "email_notification": None,
        "new_file": False,
        "file_name": None,
        "sheet_name": None,
        "sheet_url": None,
        "status": "pending",
        "progress_percentage": 0,
        "current_step": None,
        "error_message": None,
        "version": 1,
        "actual_results": 0,
        "emails_found": 0,
        "scraped_data": None,
        "created_at": FIXED_NOW - timedelta(seconds=80),
        "started_at": FIXED_NOW - timedelta(seconds=80),
        "completed_at": None,
        "duration_seconds": None,
        "updated_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def session_row():
    """Factory for a scraping_sessions row as returned by the repository."""
    return build_session_row


@pytest.fixture
def sample_batch():
    """Two scraped businesses, one without an email."""
    return [
        {
            "Titre": "Plomberie Martin",
            "Rue": "12 Rue de la République",
            "Code postal": "69002",
            "Ville": "Lyon",
            "Email": "contact@plomberie-martin.fr",
            "Site web": "https://plomberie-martin.fr",
            "Téléphone": 33478123456,
            "Score total": 4.7,
            "Nombre d'avis": 128,
            "Nom de catégorie": "Plombier",
            "URL Google Maps": "https://maps.google.com/?cid=1",
            "Heures d'ouverture": '["Lundi: 08:00-18:00"]',
        },
        {
            "Titre": "Dépannage Express",
            "Rue": "3 Cours Gambetta",
            "Code postal": "69003",
            "Ville": "Lyon",
            "Email": "aucun_mail",
            "Téléphone": "+33 4 78 00 00 00",
        },
    ]


# --- IN-MEMORY REPOSITORIES ---
class FakeSessionRepository:
    """Mimics ScrapingSessionRepository, including compare-and-set on version."""

    def __init__(self, rows=None):
        self.rows = {row["id"]: copy.deepcopy(row) for row in rows or []}
        self.before_apply = None  # hook simulating a concurrent writer

    async def create_session(self, data):
        row = build_session_row(id=f"sess-{uuid.uuid4().hex[:8]}")
        row.update(data)
        row["version"] = 1
        self.rows[row["id"]] = row
        return copy.deepcopy(row)

    async def get_by_id(self, session_id):
        row = self.rows.get(session_id)
        return copy.deepcopy(row) if row else None

    async def get_for_user(self, session_id, user_id):
        row = self.rows.get(session_id)
        return copy.deepcopy(row) if row and row["user_id"] == user_id else None

    async def list_for_user(self, user_id, status=None, skip=0, limit=50):
        rows = [r for r in self.rows.values() if r["user_id"] == user_id and (not status or r["status"] == status)]
        return [copy.deepcopy(r) for r in rows[skip:skip + limit]]

    async def count_for_user(self, user_id, status=None):
        return len([r for r in self.rows.values() if r["user_id"] == user_id and (not status or r["status"] == status)])

    async def apply_changes(self, session_id, expected_version, changes):
        if self.before_apply:
            hook, self.before_apply = self.before_apply, None
            hook(self.rows)
        row = self.rows.get(session_id)
        if row is None or row["version"] != expected_version:
            raise ConcurrentModificationError("ScrapingSession", session_id)
        row.update(changes)
        row["version"] += 1
        return copy.deepcopy(row)

    async def fail_in_progress_for_user(self, user_id, reason, now, exclude_id=None):
        failed = []
        for row in self.rows.values():
            if row["user_id"] == user_id and row["status"] == "in_progress" and row["id"] != exclude_id:
                started = row.get("started_at")
                duration = max(0, int((now - started).total_seconds())) if started else None
                row.update(status="failed", error_message=reason, completed_at=now, duration_seconds=duration)
                row["version"] += 1
                failed.append(copy.deepcopy(row))
        return failed

    async def delete_session(self, session_id, user_id):
        row = self.rows.get(session_id)
        if row and row["user_id"] == user_id:
            del self.rows[session_id]
            return True
        return False


class FakeResultRepository:
    """Mimics ScrapingResultRepository with the (owner_id, natural_key) unique index."""

    def __init__(self):
        self.rows = {}
        self.fail_next_insert = False

    async def get_natural_keys_for_owner(self, owner_id, keys):
        return {key for key in keys if (owner_id, key) in self.rows}

    async def insert_new_results(self, rows, chunk_size=500):
        if self.fail_next_insert:
            self.fail_next_insert = False
            raise OperationalError("INSERT INTO scraping_results", {}, Exception("connection lost"))
        inserted = 0
        for row in rows:
            key = (row["owner_id"], row["natural_key"])
            if key not in self.rows:
                self.rows[key] = {**row, "id": uuid.uuid4().hex}
                inserted += 1
        return inserted


@pytest.fixture
def mock_db():
    db = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db


@pytest.fixture
def make_service(mock_db):
    """
    Factory for a ScrapingSessionService wired to in-memory repositories,
    a private event hub and a fixed clock.
    """
    def factory(rows=None, worker_client=None, hub=None):
        worker = worker_client or MagicMock()
        service = ScrapingSessionService(
            mock_db,
            worker_client=worker,
            hub=hub or SessionEventHub(),
            clock=lambda: FIXED_NOW,
        )
        service.session_repo = FakeSessionRepository(rows)
        service.result_repo = FakeResultRepository()
        return service
    return factory

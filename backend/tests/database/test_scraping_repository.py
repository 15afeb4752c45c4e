import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from leadmap.modules.scraping.repositories.scraping_session_repository import ScrapingSessionRepository
from leadmap.modules.scraping.repositories.scraping_result_repository import ScrapingResultRepository
from leadmap.modules.scraping.services.ingestion import normalize_item
from leadmap.shared.utils.exceptions import ConcurrentModificationError

# Load env
load_dotenv()


def get_database_url():
    """Get database URL from environment."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")
    return url


def generate_user_id():
    """Unique owner per test so rows never collide with real data."""
    return f"test-user-{uuid.uuid4().hex[:8]}"


# --- ASYNC HELPER FOR TESTS ---
async def get_test_session():
    engine = create_async_engine(
        get_database_url(),
        echo=False,
        connect_args={"statement_cache_size": 0, "prepared_statement_cache_size": 0}
    )
    async_session = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    return engine, async_session()


async def cleanup(engine, session, user_id):
    """Remove everything the test user owns and close connections."""
    await session.rollback()
    await session.execute(text("DELETE FROM scraping_results WHERE owner_id = :uid"), {"uid": user_id})
    await session.execute(text("DELETE FROM scraping_sessions WHERE user_id = :uid"), {"uid": user_id})
    await session.commit()
    await session.close()
    await engine.dispose()


async def create_session(repo, user_id, **overrides):
    data = {"user_id": user_id, "sector": "plombier", "location": "Lyon", "limit_results": 10}
    data.update(overrides)
    return await repo.create_session(data)


# --- TESTS ---

def test_compare_and_set_rejects_stale_version():
    user_id = generate_user_id()

    async def test_logic():
        engine, session = await get_test_session()
        try:
            repo = ScrapingSessionRepository(session)
            row = await create_session(repo, user_id)
            await session.commit()
            assert row["status"] == "pending"
            assert row["version"] == 1

            updated = await repo.apply_changes(row["id"], 1, {"status": "in_progress", "progress_percentage": 20})
            await session.commit()
            assert updated["version"] == 2
            assert updated["status"] == "in_progress"

            # A writer still holding version 1 must lose
            with pytest.raises(ConcurrentModificationError):
                await repo.apply_changes(row["id"], 1, {"status": "failed"})

            current = await repo.get_by_id(row["id"])
            assert current["status"] == "in_progress"
        finally:
            await cleanup(engine, session, user_id)

    asyncio.run(test_logic())


def test_stale_cleanup_only_touches_in_progress_sessions_of_owner():
    user_id = generate_user_id()

    async def test_logic():
        engine, session = await get_test_session()
        try:
            repo = ScrapingSessionRepository(session)
            keep = await create_session(repo, user_id)
            running = await create_session(
                repo, user_id, status="in_progress", started_at=datetime.now(timezone.utc) - timedelta(seconds=90)
            )
            done = await create_session(repo, user_id, status="completed")
            await session.commit()

            now = datetime.now(timezone.utc)
            failed = await repo.fail_in_progress_for_user(user_id, "Stale session cleanup", now, exclude_id=keep["id"])
            await session.commit()

            assert [r["id"] for r in failed] == [running["id"]]
            assert (await repo.get_by_id(running["id"]))["status"] == "failed"
            assert 90 <= failed[0]["duration_seconds"] < 120
            assert failed[0]["completed_at"] is not None
            assert (await repo.get_by_id(done["id"]))["status"] == "completed"
        finally:
            await cleanup(engine, session, user_id)

    asyncio.run(test_logic())


def test_insert_skips_rows_already_owned(sample_batch):
    user_id = generate_user_id()

    async def test_logic():
        engine, session = await get_test_session()
        try:
            sessions = ScrapingSessionRepository(session)
            results = ScrapingResultRepository(session)
            first = await create_session(sessions, user_id)
            second = await create_session(sessions, user_id)
            await session.commit()

            rows = [normalize_item(item, first["id"], user_id) for item in sample_batch]
            assert await results.insert_new_results(rows) == 2
            await session.commit()

            again = [normalize_item(item, second["id"], user_id) for item in sample_batch]
            assert await results.insert_new_results(again) == 0
            await session.commit()

            keys = await results.get_natural_keys_for_owner(user_id, [r["natural_key"] for r in rows])
            assert keys == {r["natural_key"] for r in rows}

            with_email = await results.list_for_owner(user_id, contact_filter="email")
            assert [lead["business_name"] for lead in with_email] == ["Plomberie Martin"]
            assert await results.count_for_owner(user_id, search="dépannage") == 1
        finally:
            await cleanup(engine, session, user_id)

    asyncio.run(test_logic())

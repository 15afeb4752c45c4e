import asyncio
import os
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from dotenv import load_dotenv

load_dotenv()

async def cleanup():
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        print("DATABASE_URL not found")
        return

    # Use the same engine settings as the app for compatibility
    engine = create_async_engine(
        database_url,
        echo=True,
        connect_args={"statement_cache_size": 0, "prepared_statement_cache_size": 0}
    )

    delete_queries = [
        # 1. Leads owned by repository test users (results first, FK to sessions)
        "DELETE FROM scraping_results WHERE owner_id LIKE 'test-user-%'",

        # 2. Sessions of repository test users
        "DELETE FROM scraping_sessions WHERE user_id LIKE 'test-user-%'",
    ]

    async with engine.begin() as conn:
        for query in delete_queries:
            result = await conn.execute(text(query))
            print(f"Executed: {query[:50]}... | Rows affected: {result.rowcount}")

    await engine.dispose()
    print("Cleanup complete!")

if __name__ == "__main__":
    asyncio.run(cleanup())

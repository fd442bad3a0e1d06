"""
Create all tables from the model metadata.
For local development; production schema changes go through alembic.
"""
import asyncio
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import init_db, close_db


async def main():
    print("Creating tables...")
    await init_db()
    await close_db()
    print("Done.")


if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main())

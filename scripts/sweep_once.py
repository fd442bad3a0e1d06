"""
Run one payment sweep from the command line and print what it did.
"""
import asyncio
import json
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import get_db_context, close_db
from app.logging_config import configure_logging
from app.services.sweep_service import SweepService


async def sweep():
    async with get_db_context() as db:
        summary = await SweepService(db).sweep()

    print(f"{summary.checked} checked, {summary.activated} activated, {summary.expired} expired")
    for entry in summary.results:
        print(json.dumps(entry))

    await close_db()


if __name__ == "__main__":
    configure_logging()
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(sweep())

"""
Re-stamp project roll numbers from their owners

Projects carry a copy of the owner's roll number for the public portfolio
lookup. If a roll number is ever corrected on the user row, run this to
bring the projects back in line.

Run with: python reconcile_roll_numbers.py
"""
import asyncio
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.core.database import Database
from app.core.logging_config import logger
from app.services.project_service import reconcile_roll_numbers


async def main() -> int:
    database = Database.from_settings()
    try:
        await database.create_all()
        async with database.session() as session:
            count = await reconcile_roll_numbers(session)
    finally:
        await database.dispose()

    logger.info(f"[Reconcile] ✓ Re-stamped {count} project(s)")
    return count


if __name__ == "__main__":
    asyncio.run(main())

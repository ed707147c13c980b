"""
Create the catalog sync tables

Usage:
    python scripts/init_db.py
"""

import asyncio
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import create_tables, dispose_engine
from core.logging import setup_logging


async def init_database():
    try:
        await create_tables()
    finally:
        await dispose_engine()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())

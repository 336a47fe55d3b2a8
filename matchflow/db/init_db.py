"""
Initialize database tables
Run this once to create tables
"""

import asyncio

from matchflow.db.database import init_db
from matchflow.logging_config import configure_logging


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init_db())

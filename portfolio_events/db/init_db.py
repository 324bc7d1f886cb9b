"""
Initialize database tables
Run this once to create tables: python -m portfolio_events.db.init_db
"""

import asyncio

from portfolio_events.config import get_settings
from portfolio_events.db.database import init_db
from portfolio_events.logging_config import configure_logging


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    asyncio.run(init_db())

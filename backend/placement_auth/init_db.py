import asyncio
import logging

from placement_auth.services.db import engine, Base
from placement_auth import models  # noqa: F401  registers every table on Base.metadata

logger = logging.getLogger(__name__)

async def init_models():
    """Create all tables."""
    logger.info(f"Initializing database at {engine.url.render_as_string(hide_password=True)}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Created tables: {list(Base.metadata.tables.keys())}")

def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(init_models())

if __name__ == "__main__":
    main()

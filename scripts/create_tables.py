"""Script to initialize database tables."""

import asyncio

from src.tour_booking.infrastructure.database.connection import DatabaseManager
from src.tour_booking.infrastructure.database.models import Base
from src.tour_booking.presentation.api.config import get_settings


async def create_tables():
    """Create all booking tables."""
    database = DatabaseManager(get_settings().database_url, echo=True)
    await database.connect()

    try:
        async with database.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        print("✅ Database tables created successfully!")

    except Exception as e:
        print(f"❌ Error creating tables: {e}")
        raise
    finally:
        await database.disconnect()


if __name__ == "__main__":
    asyncio.run(create_tables())

"""
Create the database schema.
Run once per environment: python -m jobqueue.db.create_tables
"""
import asyncio

from jobqueue.core.setup_logger import db_logger
from jobqueue.core.logger import info
from jobqueue.db.database import create_tables, close_database


async def main():
    info(db_logger, "Creating database tables...")
    try:
        await create_tables()
    finally:
        await close_database()
    info(db_logger, "Database tables created successfully!")


if __name__ == "__main__":
    asyncio.run(main())

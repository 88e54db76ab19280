from jobqueue.db import database
from jobqueue.db.database import Base, get_db, init_database, close_database, create_tables

__all__ = [
    'database',
    'Base',
    'get_db',
    'init_database',
    'close_database',
    'create_tables',
]

"""
Database connection utilities for the API.

Reuses the project configuration for database access and exposes a single
trail store shared by all requests.
"""

import os
import sys

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

# Add parent directory to path to import project modules
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from config.settings import config
from scripts.database.trail_store import DatabaseTrailStore

# Global instances (created once, reused)
_engine = None
_trail_store = None


def get_db_engine() -> Engine:
    """
    Get or create a SQLAlchemy engine for database connections.

    The engine is created once and reused across requests.

    Returns:
        SQLAlchemy Engine instance
    """
    global _engine

    if _engine is None:
        config.validate_for_database_operations()
        # pool_pre_ping=True checks if connections are alive before using them
        _engine = create_engine(config.get_database_url(), pool_pre_ping=True)

    return _engine


def get_trail_store() -> DatabaseTrailStore:
    """
    Get or create the trail store, creating the trails table on first use.

    Returns:
        DatabaseTrailStore bound to the shared engine
    """
    global _trail_store

    if _trail_store is None:
        store = DatabaseTrailStore(get_db_engine())
        store.ensure_table_exists()
        _trail_store = store

    return _trail_store

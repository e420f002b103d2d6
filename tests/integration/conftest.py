"""
Integration test fixtures and configuration.

This module provides pytest fixtures for integration testing with a real
PostgreSQL database. The fixtures handle database lifecycle management,
table creation, and cleanup.

Key fixtures:
- test_db_engine: SQLAlchemy engine connected to test database
- test_trail_store: DatabaseTrailStore with a fresh trails table per test

Running integration tests:
    pytest tests/integration -v -m integration
"""

import os
import time

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from scripts.database.trail_store import DatabaseTrailStore
from utils.logging import setup_logging


def wait_for_db(
    engine: Engine, max_retries: int = 30, retry_delay: float = 1.0
) -> None:
    """
    Wait for database to be ready by attempting connections.

    Args:
        engine: SQLAlchemy engine to test
        max_retries: Maximum number of connection attempts
        retry_delay: Delay between retries in seconds

    Raises:
        RuntimeError: If database doesn't become ready within max_retries
    """
    for attempt in range(max_retries):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            print(f"✅ Database ready after {attempt + 1} attempt(s)")
            return
        except Exception as e:
            if attempt < max_retries - 1:
                print(
                    f"⏳ Waiting for database (attempt {attempt + 1}/{max_retries})..."
                )
                time.sleep(retry_delay)
            else:
                raise RuntimeError(
                    f"Database not ready after {max_retries} attempts: {e}"
                ) from e


@pytest.fixture(scope="session")
def test_db_engine() -> Engine:
    """
    Create a SQLAlchemy engine for the test database.

    Environment Variables:
        POSTGRES_TEST_HOST: Test database host (default: localhost)
        POSTGRES_TEST_PORT: Test database port (default: 5434)
        POSTGRES_TEST_DB: Test database name (default: trail_data_test)
        POSTGRES_TEST_USER: Test database user (default: postgres)
        POSTGRES_TEST_PASSWORD: Test database password (default: test_password)
    """
    host = os.getenv("POSTGRES_TEST_HOST", "localhost")
    port = os.getenv("POSTGRES_TEST_PORT", "5434")
    db = os.getenv("POSTGRES_TEST_DB", "trail_data_test")
    user = os.getenv("POSTGRES_TEST_USER", "postgres")
    password = os.getenv("POSTGRES_TEST_PASSWORD", "test_password")

    engine = create_engine(f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{db}")
    wait_for_db(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def test_trail_store(test_db_engine: Engine) -> DatabaseTrailStore:
    """
    Provide a DatabaseTrailStore with a clean trails table for each test.

    The table is created before the test and dropped afterwards so tests
    cannot pollute each other.
    """
    logger = setup_logging(logger_name="test_db", log_level="INFO")
    store = DatabaseTrailStore(test_db_engine, logger, table_name="trails_test")

    logger.info("📦 Creating test trails table...")
    store.ensure_table_exists()

    yield store

    logger.info("🧹 Cleaning up test trails table...")
    store.drop_table()

"""
Configuration settings for the Trail Ingest project.

This module centralizes all configuration values and provides a single source of truth for all
configurable parameters.
"""

import os
from typing import Optional


class Config:
    """
    Central configuration class for the Trail Ingest project.

    This class consolidates all configuration values including upstream query
    settings, database connections, normalization constants, and logging.
    """

    # Application identity (sent as User-Agent to the Overpass API)
    APP_NAME: str = "TrailIngest"
    APP_VERSION: str = "1.0"
    USER_CONTACT: str = "https://github.com/trailequip/trail-ingest"

    # Overpass API Configuration
    OVERPASS_API_URL: str = "https://overpass-api.de/api/interpreter"
    OVERPASS_QUERY_TIMEOUT: int = 60
    REQUEST_TIMEOUT: int = 90

    # Rate limiting and retries
    OVERPASS_REQUEST_DELAY_SECONDS: float = 3.0
    OVERPASS_MAX_RETRIES: int = 3
    OVERPASS_ROUTE_KINDS: list = ["hiking", "foot", "alpine_hiking"]

    # Geometry constants
    KM_PER_DEGREE: float = 111.0
    EARTH_RADIUS_KM: float = 6371.0
    FRAGMENT_ENDPOINT_TOLERANCE_DEG: float = 1e-4  # ~11 m

    # Normalization
    TRAIL_SOURCE_LABEL: str = "openstreetmap"
    UNNAMED_TRAIL_NAME: str = "Unnamed Trail"
    MAX_INTERMEDIATE_WAYPOINTS: int = 10
    REGION_HAZARD_RULES: dict = {
        "bucegi": ["bears", "limited_water_sources"],
    }

    # Named regions for bulk ingestion: (south, west, north, east)
    INGEST_REGIONS: dict = {
        "bucegi": (45.20, 25.40, 45.50, 25.70),
    }

    # Database Configuration
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "trail_data"
    DB_USER: str = "postgres"
    DB_PASSWORD: Optional[str] = None
    TRAILS_TABLE: str = "trails"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_MAX_BYTES: int = 5 * 1024 * 1024  # 5MB
    LOG_BACKUP_COUNT: int = 3
    INGESTION_LOG_FILE: str = "logs/ingestion.log"
    API_LOG_FILE: str = "logs/api.log"

    def __init__(self):
        """Initialize configuration by loading from environment variables."""
        self._load_from_env()
        self._validate()

    def _load_from_env(self):
        """Load configuration values from environment variables."""
        # Upstream settings
        overpass_url = os.getenv("OVERPASS_API_URL")
        if overpass_url:
            self.OVERPASS_API_URL = overpass_url

        user_contact = os.getenv("USER_CONTACT")
        if user_contact:
            self.USER_CONTACT = user_contact

        request_delay = os.getenv("OVERPASS_REQUEST_DELAY_SECONDS")
        if request_delay:
            self.OVERPASS_REQUEST_DELAY_SECONDS = float(request_delay)

        max_retries = os.getenv("OVERPASS_MAX_RETRIES")
        if max_retries:
            self.OVERPASS_MAX_RETRIES = int(max_retries)

        request_timeout = os.getenv("REQUEST_TIMEOUT")
        if request_timeout:
            self.REQUEST_TIMEOUT = int(request_timeout)

        # Database settings
        db_host = os.getenv("POSTGRES_HOST")
        if db_host:
            self.DB_HOST = db_host

        db_port = os.getenv("POSTGRES_PORT")
        if db_port:
            self.DB_PORT = int(db_port)

        db_name = os.getenv("POSTGRES_DB")
        if db_name:
            self.DB_NAME = db_name

        db_user = os.getenv("POSTGRES_USER")
        if db_user:
            self.DB_USER = db_user

        db_password = os.getenv("POSTGRES_PASSWORD")
        if db_password:
            self.DB_PASSWORD = db_password

        log_level = os.getenv("LOG_LEVEL")
        if log_level:
            self.LOG_LEVEL = log_level

    def _validate(self):
        """
        Validate configuration values.

        Raises:
            ValueError: If a rate-limit or retry setting is out of range.
        """
        if self.OVERPASS_REQUEST_DELAY_SECONDS < 0:
            raise ValueError(
                "OVERPASS_REQUEST_DELAY_SECONDS must be zero or positive, "
                f"got {self.OVERPASS_REQUEST_DELAY_SECONDS}"
            )

        if self.OVERPASS_MAX_RETRIES < 1:
            raise ValueError(
                f"OVERPASS_MAX_RETRIES must be at least 1, got {self.OVERPASS_MAX_RETRIES}"
            )

        if self.REQUEST_TIMEOUT <= 0:
            raise ValueError(
                f"REQUEST_TIMEOUT must be positive, got {self.REQUEST_TIMEOUT}"
            )

    def validate_for_database_operations(self):
        """
        Validate that database credentials are available.

        Raises:
            ValueError: If POSTGRES_PASSWORD is not configured.
        """
        if not self.DB_PASSWORD:
            raise ValueError(
                "POSTGRES_PASSWORD environment variable is required for database operations. "
                "Please set it in your .env file or environment."
            )

    def get_database_url(self) -> str:
        """
        Generate database connection URL.

        Returns:
            str: PostgreSQL connection URL
        """
        return f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    def get_user_agent(self) -> str:
        """Build the User-Agent header identifying this application upstream."""
        return f"{self.APP_NAME}/{self.APP_VERSION} ({self.USER_CONTACT})"


# Global configuration instance
config = Config()

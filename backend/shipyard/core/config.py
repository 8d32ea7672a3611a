"""
Application configuration using Pydantic Settings.
"""
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "Shipyard"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "info"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./shipyard.db"
    # Empty means the default schema (required for SQLite)
    DB_SCHEMA: str = ""

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost"

    # Port allocation
    PORT_RANGE_START: int = 3000
    PORT_RANGE_END: int = 9999
    PORT_ALLOCATION_ATTEMPTS: int = 50
    PORT_PROBE_HOST: str = "0.0.0.0"

    # Container runtime
    DOCKER_BIN: str = "docker"
    IMAGE_PREFIX: str = "shipyard"
    CONTAINER_PREFIX: str = "shipyard"
    BUILD_WORKDIR: str = "/tmp/shipyard_builds"
    DEFAULT_LANGUAGE: str = "go"
    BUILD_TIMEOUT_SECONDS: int = 900  # 15 minutes max per image build
    RUN_TIMEOUT_SECONDS: int = 60
    STOP_TIMEOUT_SECONDS: int = 30
    REMOVE_IMAGE_ON_DELETE: bool = True

    # Maintenance
    PRUNE_INTERVAL_HOURS: int = 24
    SHUTDOWN_GRACE_SECONDS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    def get_cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


settings = Settings()

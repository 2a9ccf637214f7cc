"""Configuration settings for the team-to-club migration tool."""

import json
import os
from pathlib import Path
from typing import Dict, Optional, TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

if TYPE_CHECKING:
    from config.database import DatabaseConfig


DEFAULT_TEAM_CLUB_MAPPING: Dict[str, str] = {
    "1. Mannschaft": "SV Viktoria Wertheim",
    "2. Mannschaft": "SV Viktoria Wertheim II",
    "3. Mannschaft": "SpG Vikt. Wertheim 3/Grünenwort",
}


class Settings(BaseSettings):
    """Application settings."""

    # Logging
    log_level: str = Field("INFO", env="LOG_LEVEL")
    log_file: Optional[str] = Field("migration.log", env="LOG_FILE")

    # Database settings
    database_url: str = Field(
        "postgresql+asyncpg://localhost/club_migration",
        env="DATABASE_URL"
    )
    db_environment: str = Field("production", env="DB_ENVIRONMENT")
    db_pool_size: int = Field(10, env="DB_POOL_SIZE")
    db_pool_overflow: int = Field(20, env="DB_POOL_OVERFLOW")
    db_pool_timeout: int = Field(30, env="DB_POOL_TIMEOUT")
    db_max_retries: int = Field(3, env="DB_MAX_RETRIES")
    db_echo_sql: bool = Field(False, env="DB_ECHO_SQL")

    # Backups
    backup_dir: str = Field("backups/migrations", env="BACKUP_DIR")

    # Team -> club mapping (JSON object in env, or a JSON file)
    team_club_mapping: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_TEAM_CLUB_MAPPING),
        env="TEAM_CLUB_MAPPING"
    )
    mapping_file: Optional[str] = Field(None, env="MAPPING_FILE")
    mapping_name_fallback: bool = Field(True, env="MAPPING_NAME_FALLBACK")

    # Run tuning
    migration_batch_size: int = Field(50, env="MIGRATION_BATCH_SIZE")
    migration_max_concurrent: int = Field(5, env="MIGRATION_MAX_CONCURRENT")
    retry_max_attempts: int = Field(3, env="RETRY_MAX_ATTEMPTS")
    retry_base_delay: float = Field(0.5, env="RETRY_BASE_DELAY")
    retry_max_delay: float = Field(8.0, env="RETRY_MAX_DELAY")
    stale_run_timeout_minutes: int = Field(60, env="STALE_RUN_TIMEOUT_MINUTES")

    @field_validator("migration_batch_size", "migration_max_concurrent", "retry_max_attempts")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    def load_team_club_mapping(self) -> Dict[str, str]:
        """Return the mapping table, preferring MAPPING_FILE when it is set."""
        if not self.mapping_file:
            return dict(self.team_club_mapping)

        path = Path(self.mapping_file)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Cannot read mapping file {path}: {e}") from e

        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise ValueError(f"Mapping file {path} must contain a JSON object of strings")
        return data

    def get_database_config(self) -> "DatabaseConfig":
        """Get database configuration from main settings."""
        from config.database import DatabaseConfig, DatabaseEnvironment

        env_mapping = {
            "development": DatabaseEnvironment.DEVELOPMENT,
            "testing": DatabaseEnvironment.TESTING,
            "staging": DatabaseEnvironment.STAGING,
            "production": DatabaseEnvironment.PRODUCTION,
        }
        environment = env_mapping.get(self.db_environment.lower(), DatabaseEnvironment.PRODUCTION)

        return DatabaseConfig(
            environment=environment,
            database_url=self.database_url or os.getenv("DATABASE_URL", ""),
            pool_size=self.db_pool_size,
            pool_overflow=self.db_pool_overflow,
            pool_timeout=self.db_pool_timeout,
            max_retries=self.db_max_retries,
            echo_sql=self.db_echo_sql,
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()


def validate_settings(current: Optional[Settings] = None) -> None:
    """Validate required settings."""
    current = current or settings
    if not current.database_url:
        raise ValueError("DATABASE_URL is required")

    current.get_database_config()
    mapping = current.load_team_club_mapping()
    if not mapping and not current.mapping_name_fallback:
        raise ValueError("Team to club mapping is empty and name fallback is disabled")

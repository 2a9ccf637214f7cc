"""
Database-specific configuration for the migration record store.

This module provides:
- Environment-based database configuration
- Connection pooling settings
- Retry settings for connection establishment
- PostgreSQL (asyncpg) and SQLite (aiosqlite) URL handling
"""

import os
from typing import Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum


class DatabaseEnvironment(str, Enum):
    """Database environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class DatabaseConfig(BaseModel):
    """Database configuration with environment-specific optimizations."""

    # Connection settings
    database_url: str = Field(..., description="Database connection URL")
    environment: DatabaseEnvironment = Field(
        default=DatabaseEnvironment.PRODUCTION,
        description="Database environment"
    )

    # Connection pool settings
    pool_size: int = Field(default=10, ge=1, le=100, description="Connection pool size")
    pool_overflow: int = Field(default=20, ge=0, le=100, description="Pool overflow connections")
    pool_timeout: int = Field(default=30, ge=1, le=300, description="Pool checkout timeout (seconds)")
    pool_recycle: int = Field(default=3600, ge=300, le=86400, description="Connection recycle time (seconds)")
    enable_connection_pooling: bool = Field(default=True, description="Enable connection pooling")

    # Performance settings
    echo_sql: bool = Field(default=False, description="Log SQL statements")
    command_timeout: int = Field(default=60, ge=1, le=600, description="Command timeout (seconds)")

    # Retry settings
    max_retries: int = Field(default=3, ge=1, le=10, description="Maximum connection retries")
    retry_interval: float = Field(default=1.0, ge=0.0, le=30.0, description="Retry interval (seconds)")

    # Monitoring settings
    log_slow_queries: bool = Field(default=True, description="Log slow queries")
    slow_query_threshold: float = Field(default=1.0, ge=0.1, le=60.0, description="Slow query threshold (seconds)")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Normalize the URL to an async driver."""
        if v.startswith('postgres://'):
            return v.replace('postgres://', 'postgresql+asyncpg://', 1)
        if v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        if v.startswith('sqlite://'):
            return v.replace('sqlite://', 'sqlite+aiosqlite://', 1)
        if v.startswith(('postgresql+asyncpg://', 'sqlite+aiosqlite://')):
            return v
        raise ValueError(
            "DATABASE_URL must start with postgresql://, postgresql+asyncpg:// or sqlite+aiosqlite://"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith('sqlite')

    def get_connection_params(self) -> Dict[str, Any]:
        """Get connection parameters for the SQLAlchemy engine."""
        params: Dict[str, Any] = {'echo': self.echo_sql}

        if self.is_sqlite:
            # SQLite keeps no server pool; every session gets its own connection
            params['connect_args'] = {'timeout': self.command_timeout}
            return params

        params['connect_args'] = {
            'command_timeout': self.command_timeout,
            'server_settings': {
                'application_name': f'club_migration_{self.environment}',
            }
        }
        if self.enable_connection_pooling:
            params.update({
                'pool_size': self.pool_size,
                'max_overflow': self.pool_overflow,
                'pool_timeout': self.pool_timeout,
                'pool_recycle': self.pool_recycle,
            })
        return params

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == DatabaseEnvironment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == DatabaseEnvironment.PRODUCTION

    class Config:
        """Pydantic config."""
        use_enum_values = True
        case_sensitive = False


def create_database_config_from_env() -> DatabaseConfig:
    """Create database config from environment variables."""
    return DatabaseConfig(
        database_url=os.getenv('DATABASE_URL', 'postgresql+asyncpg://localhost/club_migration'),
        environment=DatabaseEnvironment(os.getenv('DB_ENVIRONMENT', 'production')),
        pool_size=int(os.getenv('DB_POOL_SIZE', 10)),
        pool_overflow=int(os.getenv('DB_POOL_OVERFLOW', 20)),
        echo_sql=os.getenv('DB_ECHO_SQL', 'false').lower() == 'true',
        max_retries=int(os.getenv('DB_MAX_RETRIES', 3)),
    )


def get_test_config(database_url: str) -> DatabaseConfig:
    """Get a test database configuration for a local SQLite file."""
    return DatabaseConfig(
        database_url=database_url,
        environment=DatabaseEnvironment.TESTING,
        enable_connection_pooling=False,
        max_retries=1,
        retry_interval=0.0,
        log_slow_queries=False,
    )

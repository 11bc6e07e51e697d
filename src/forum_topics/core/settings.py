"""Application settings and configuration.

This module defines all configuration options for the forum topic engine.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    Services read the module-level ``settings`` instance at call time, so
    assigning an attribute takes effect immediately.
    """

    # Application metadata
    app_name: str = Field(default="Forum Topics", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(default="dev-secret-change-me", alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")

    # Relational database holding users, categories and category ACLs
    database_url: str = Field(default="sqlite:///./forum.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Keyed store holding topic records and ordered indices
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    # "memory" keeps everything in-process; use it only for tests and single-worker dev
    store_backend: Literal["redis", "memory"] = Field(default="redis", alias="STORE_BACKEND")

    # JWT authentication settings
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Public base URL, used when scanning post content for links to other topics
    site_url: str = Field(default="http://localhost:4567", alias="SITE_URL")

    # Topic lifecycle policy
    prevent_topic_delete_after_replies: int = Field(
        default=0,
        ge=0,
        alias="PREVENT_TOPIC_DELETE_AFTER_REPLIES",
    )

    # Background sweep that unpins topics whose pin expiry has passed
    pin_expiry_sweep_enabled: bool = Field(default=False, alias="PIN_EXPIRY_SWEEP_ENABLED")
    pin_expiry_sweep_interval_seconds: float = Field(
        default=60.0,
        alias="PIN_EXPIRY_SWEEP_INTERVAL_SECONDS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()

from __future__ import annotations

from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "Muster API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(default="INFO", description="Logging level")

    # Database
    database_url: str = Field(
        default="sqlite+pysqlite:///./muster.db",
        description="SQLAlchemy database URL",
    )
    db_pool_size: int = Field(default=5, description="Base DB connection pool size")
    db_max_overflow: int = Field(default=10, description="Additional DB connections beyond pool size")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a DB connection")
    db_pool_recycle: int = Field(default=1800, description="Recycle DB connections after N seconds")

    # Auth / JWT
    jwt_secret: str = Field(default="change_me", description="JWT signing secret")
    algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Access token expiry in minutes")

    # Discord bot integration
    bot_api_token: str | None = Field(
        default=None,
        description="Static bearer token accepted on the bot promotion endpoints",
        validation_alias=AliasChoices("BOT_API_TOKEN"),
    )

    # Attendance
    event_timezone: str = Field(
        default="UTC",
        description="Zone used to interpret orbat wall-clock start/end times",
        validation_alias=AliasChoices("EVENT_TIMEZONE", "ORBAT_TIMEZONE"),
    )
    identity_provider: str = Field(
        default="steam",
        description="Auth provider used to resolve external participant ids from the game server feed",
    )
    import_error_limit: int = Field(default=10, description="Max error messages returned by batch imports")

    # Notifications
    admin_promotions_url: str = Field(
        default="/admin/promotions",
        description="Deep link attached to proposal notifications",
    )

    @field_validator("event_timezone")
    @classmethod
    def validate_event_timezone(cls, value: str) -> str:
        # Raises ZoneInfoNotFoundError early instead of on the first check-in.
        ZoneInfo(value)
        return value

    @property
    def event_tz(self) -> ZoneInfo:
        return ZoneInfo(self.event_timezone)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite:///urbanplan.db", description="SQLAlchemy URL")
    db_lock_timeout: int = Field(30, description="Seconds to wait on a locked database")
    redis_url: str = Field("redis://localhost:6379/0")
    coverage_refresh_frequency: int = Field(
        60 * 60, description="Seconds between scheduled coverage summary refreshes"
    )
    api_title: str = Field("Urban Planning Records API")
    registration_rate_limit: str = Field("5/minute")


settings = Settings()

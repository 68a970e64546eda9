from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = Field("sqlite:///ovaview.db")
    redis_url: str = Field("redis://localhost:6379/0")
    api_title: str = Field("Ovaview Back Office API")
    environment: str = Field("development")

    jwt_secret: str = Field("secret")
    jwt_algorithm: str = Field("HS256")
    session_ttl_hours: int = Field(24)
    refresh_token_expire_minutes: int = Field(60 * 24 * 7)
    session_cookie_name: str = Field("ovaview_token")
    cookie_secure: bool = Field(False)

    # Break-glass logins that never touch the users table. Development and
    # recovery only: they bypass deactivation and per-user auditing.
    admin_email: Optional[str] = Field(None)
    admin_password: Optional[str] = Field(None)
    client_email: Optional[str] = Field(None)
    client_password: Optional[str] = Field(None)

    allow_legacy_passwords: bool = Field(True)
    rate_limit_enabled: bool = Field(True)
    login_rate_limit: str = Field("5/minute")

    scraper_api: str = Field("http://localhost:5000")
    daily_insights_cron_schedule: str = Field("0 */6 * * *")
    enable_cron: bool = Field(False)
    revoked_token_purge_frequency: int = Field(60 * 60)

    @property
    def cron_enabled(self) -> bool:
        return self.enable_cron or self.environment == "production"


settings = Settings()

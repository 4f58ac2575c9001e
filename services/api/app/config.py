"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.

UPDATE_SECRET has no default: a process started without it fails at import
time and never serves traffic.
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database (MySQL-protocol, TiDB compatible) ─────────────────────────
    db_host: str = "mysql"
    db_port: int = 3306
    db_user: str = "root"
    db_password: str = ""
    db_name: str = "phantom"
    # Full SQLAlchemy URL; takes precedence over the db_* fields when set
    database_url: Optional[str] = None

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mysql+aiomysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Admin trigger ──────────────────────────────────────────────────────
    update_secret: str = Field(..., min_length=1)

    # ── Similarity rebuild ─────────────────────────────────────────────────
    similarity_schedule_enabled: bool = True
    similarity_cron_hour: int = 3          # daily at 03:00
    similarity_cron_minute: int = 0
    similarity_timezone: str = "UTC"
    similarity_max_users: int = 20_000     # caps the O(n²) pair enumeration
    similarity_lock_timeout: int = 30      # seconds to wait for the store lock

    # ── Recommendations ────────────────────────────────────────────────────
    recommendation_default_limit: int = 10
    recommendation_max_limit: int = 100
    feed_page_size: int = 10

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "phantom-api"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

"""
Configuration management for the client analytics dashboard
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Client Analytics Dashboard"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = True
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str

    # Google Analytics 4 authentication
    # One of: service_account_key, ambient, impersonated, user
    ga4_auth_mode: str = "ambient"
    ga4_credentials_path: Optional[str] = None  # service account key file
    ga4_impersonate_service_account: Optional[str] = None
    ga4_user_credentials_path: Optional[str] = None  # authorized_user JSON from gcloud

    # GA4 Data API calls
    ga4_request_timeout_seconds: float = 30.0
    ga4_retry_max_attempts: int = 3
    ga4_retry_base_delay: float = 2.0  # seconds
    ga4_retry_max_delay: float = 60.0  # seconds
    ga4_organic_channel_group: str = "Organic Search"

    # Sync
    sync_timezone: str = "UTC"  # Reference zone for "yesterday"
    sync_cron_schedule: str = "0 5 * * *"
    sync_inter_client_delay_seconds: float = 0.5
    backfill_inter_day_delay_seconds: float = 1.0
    sync_batch_deadline_seconds: Optional[float] = None
    initial_backfill_days: int = 30

    # Auto sync when data goes stale
    auto_sync_stale_hours: float = 12.0
    auto_sync_check_minutes: int = 30

    # Feature Flags
    enable_scheduler: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()

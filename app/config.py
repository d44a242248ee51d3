"""Application configuration."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./data/shop_sync.db"

    # Encryption (validated at startup by EncryptionService)
    encryption_key: Optional[str] = None

    # Shopee Open Platform
    shopee_base_url: str = "https://partner.shopeemobile.com"
    shopee_timeout_seconds: float = 30.0

    # Finance (escrow) sync
    finance_batch_size: int = 50
    finance_candidate_limit: int = 500
    finance_rate_limit_delay: float = 0.1

    # Flash sale sync
    flash_sale_page_size: int = 100
    flash_sale_stale_minutes: int = 5

    # Shared sync behaviour
    upsert_batch_size: int = 50
    sync_claim_lease_minutes: int = 15

    # Scheduler
    scheduler_enabled: bool = False
    scheduler_max_shops: int = 10
    scheduler_shop_stagger_seconds: float = 10.0
    scheduler_finance_fresh_minutes: int = 20

    # Application
    app_host: str = "0.0.0.0"
    app_port: int = 8000


settings = Settings()

# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./storefront.db"

    # Admin JWT verification
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"

    # Active payment gateway: mock | card | marketplace
    PAYMENT_PROVIDER: str = "mock"
    # Upper bound for any gateway call made while a checkout is open
    PAYMENT_TIMEOUT_SECONDS: float = 10.0
    # A refund claim older than this is treated as abandoned by a crashed worker
    REFUND_LEASE_SECONDS: int = 600

    # Card processor
    CARD_API_URL: str = "https://api.stripe.com"
    CARD_API_KEY: str = ""
    CARD_WEBHOOK_SECRET: str = ""
    CARD_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Marketplace redirect checkout
    MARKETPLACE_SHOP_URL: str = ""
    MARKETPLACE_CALLBACK_URL: str = ""

    # Mock gateway
    MOCK_MIN_AMOUNT_CENTS: int = 50
    MOCK_SUPPORTS_ZERO: bool = False

    CURRENCY: str = "EUR"
    CART_TTL_DAYS: int = 30
    CART_COOKIE_NAME: str = "cart_session"

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    CART_SWEEP_INTERVAL_SECONDS: int = 3600
    MARKETPLACE_SYNC_INTERVAL_SECONDS: int = 1800

    LOG_LEVEL: str = "INFO"
    FRONTEND_URL: str = "http://localhost:3000"

    class Config:
        env_file: ClassVar[str] = str(env_path)
        extra: ClassVar[str] = "ignore"

settings = Settings()

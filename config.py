"""
Configuration for the operations dashboard backend
"""
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from the environment and .env"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Firestore
    FIRESTORE_PROJECT_ID: str = "homeservices-ops"
    USE_MOCK_SERVICES: bool = False

    # API
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080"]
    LOG_LEVEL: str = "INFO"

    # Dashboard behaviour
    DEFAULT_PAGE_SIZE: int = 20
    DEFAULT_RANGE_START: str = "2025-04-01"
    DASHBOARD_TIMEZONE: str = "Asia/Kolkata"
    TRACKED_PARTNER_IDS: List[str] = [
        "mwBcGMWLwDULHIS9hXx7JLuRfCi1",
        "Dmoo33tCx0OU1HMtapISBc9Oeeq2",
        "VxxapfO7l8YM5f6xmFqpThc17eD3",
    ]
    ANALYTICS_CACHE_TTL: int = 60

    # Razorpay (payments page)
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_BASE_URL: str = "https://api.razorpay.com/v1"
    RAZORPAY_TIMEOUT: float = 15.0

    @property
    def razorpay_configured(self) -> bool:
        return bool(self.RAZORPAY_KEY_ID and self.RAZORPAY_KEY_SECRET)


settings = Settings()

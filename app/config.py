from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # App Settings
    APP_NAME: str = "Pouch Commerce Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Order minimums (total units across the cart)
    RETAIL_MIN_ORDER_QUANTITY: int = 5
    WHOLESALE_MIN_ORDER_QUANTITY: int = 100

    # Flat shipping per order
    RETAIL_SHIPPING_COST: Decimal = Decimal("5.00")
    WHOLESALE_SHIPPING_COST: Decimal = Decimal("0.00")  # Freight included in tier price

    # Commission rates (fractions, not percentages)
    REFERRAL_COMMISSION_RATE: Decimal = Decimal("0.05")
    DISTRIBUTOR_COMMISSION_RATE: Decimal = Decimal("0.05")

    # Referral codes
    REFERRAL_CODE_BYTES: int = 4  # 4 bytes -> 8 hex characters
    REFERRAL_BASE_URL: Optional[str] = None  # e.g. "https://shop.example.com/?ref="

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return list(self.CORS_ORIGINS)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "storefront"
    POSTGRES_USER: str = "storefront"
    POSTGRES_PASSWORD: str = "storefront"
    # Full SQLAlchemy URL; takes precedence over the POSTGRES_* parts when set
    DATABASE_URL: Optional[str] = None

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    PRODUCTS_SERVICE_URL: str = "http://products:8000"
    CUSTOMERS_SERVICE_URL: str = "http://customers:8000"
    UPSTREAM_TIMEOUT_SECONDS: float = 5.0
    UPSTREAM_RETRIES: int = 2

    CURRENCY: str = "ILS"
    TAX_RATE: float = 0.18
    PRICE_TOLERANCE: float = 0.01
    NEW_USER_DISCOUNT_PERCENTAGE: float = 5
    NEW_USER_DISCOUNT_MONTHS: float = 3
    # Reject order creation when the client total is further off than this.
    # Unset means the server total silently wins.
    TOTAL_MISMATCH_REJECT_THRESHOLD: Optional[float] = None

    FAILED_ORDER_RATE_LIMIT: int = 5
    FAILED_ORDER_RATE_WINDOW_SECONDS: int = 300

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()

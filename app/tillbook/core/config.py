from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "TILLBOOK"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite+pysqlite:///./tillbook.db"
    DEFAULT_BUSINESS_TIMEZONE: str = "America/Toronto"
    SETTLEMENT_EPSILON: Decimal = Decimal("0.01")
    CASH_ROUNDING_INCREMENT: Decimal = Decimal("0.05")
    CHECKOUT_SESSION_MAX_TENDERS: int = 20
    METRICS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()

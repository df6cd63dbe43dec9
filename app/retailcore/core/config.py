from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "RETAIL-CORE"
    DATABASE_URL: str = "sqlite+pysqlite:///./retailcore.db"
    TAX_RATE_PERCENT: Decimal = Decimal("16")
    B2B_APPLY_TAX: bool = True
    PAYMENT_POLL_INTERVAL_SEC: float = 5.0
    PAYMENT_TIMEOUT_SEC: float = 120.0
    PAYMENT_QUERY_TIMEOUT_SEC: float = 25.0
    PAYMENTS_LIST_MAX_PAGE_SIZE: int = 200
    RECONCILIATION_LOOKBACK_HOURS: int = 24
    MPESA_ENVIRONMENT: str = "sandbox"
    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_SHORTCODE: str = ""
    MPESA_PASSKEY: str = ""
    MPESA_TRANSACTION_TYPE: str = "PayBill"
    MPESA_CALLBACK_URL: str = "http://localhost:8000/payments/callback"
    MPESA_ACCOUNT_REFERENCE: str = "RetailCore"
    METRICS_ENABLED: bool = True


settings = Settings()

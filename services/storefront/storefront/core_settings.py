from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "tsaas"
    POSTGRES_USER: str = "tsaas"
    POSTGRES_PASSWORD: str = "tsaas"
    # Overrides the POSTGRES_* composition when set (sqlite in tests)
    DATABASE_URL: Optional[str] = None
    REDIS_URL: Optional[str] = None

    # Public base URL of this API as seen by the storefront and QPay callbacks
    NEXT_PUBLIC_API_URL: str = "http://localhost:8000/api"

    QPAY_BASE_URL: str = "https://merchant.qpay.mn/v2"
    QPAY_LOGIN: str = ""
    QPAY_PASSWORD: str = ""
    QPAY_INVOICE_CODE: str = "KONO_INVOICE"
    QPAY_RECEIVER_CODE: str = "DEFAULT_COM_ID"
    QPAY_TIMEOUT_SECONDS: float = 30.0
    QPAY_TOKEN_TTL_SECONDS: int = 3000

    CHUCHU_URL: str = "https://e-chuchu.mn/api/v1/tsaas/delivery/create"
    CHUCHU_TIMEOUT_SECONDS: float = 10.0

    JWT_SECRET: str = "change-me"
    JWT_REFRESH_SECRET: str = "change-me-too"
    JWT_ALG: str = "HS256"
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None

    DEFAULT_SHIPPING_COST: float = 5000
    FREE_SHIPPING_THRESHOLD: float = 100000

    LOG_LEVEL: str = "INFO"
    SERVICE_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"

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

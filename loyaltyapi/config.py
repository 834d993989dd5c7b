from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="loyaltyapi/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Loyalty Ledger API"
    PROJECT_NAME: str = "Loyalty Ledger"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    CORS_ORIGINS: List[str] = ["*"]

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = "loyalty"
    POSTGRES_SCHEMA: str = "loyalty"

    # 설정되어 있으면 POSTGRES_* 조합보다 우선 (테스트에서는 sqlite:// 사용)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT_SECONDS: int = 10

    # 모든 스토리지 호출은 타임아웃을 가진다 (무한 대기 금지)
    DB_STATEMENT_TIMEOUT_MS: int = 5000
    DB_LOCK_TIMEOUT_MS: int = 3000

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Vouchers
    VOUCHER_CODE_PREFIX: str = "VCH"
    VOUCHER_CODE_LENGTH: int = 10
    VOUCHER_CODE_MAX_ATTEMPTS: int = 5
    VOUCHER_DEFAULT_VALIDITY_DAYS: int = 30
    VOUCHER_MAX_VALIDITY_DAYS: int = 365

    # Ledger paging
    LEDGER_PAGE_DEFAULT: int = 50
    LEDGER_PAGE_MAX: int = 100

    # Notifications (best-effort, SQS)
    NOTIFICATION_QUEUE_URL: Optional[str] = None
    AWS_REGION: str = "ap-northeast-2"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    SQS_ENDPOINT_URL: Optional[str] = None


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

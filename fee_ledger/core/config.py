from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite+aiosqlite:///./fee_ledger.db", alias="DATABASE_URL")

    installment_rounding_unit: Decimal = Field(Decimal("1"), alias="INSTALLMENT_ROUNDING_UNIT")
    fallback_due_month: int = Field(4, ge=1, le=12, alias="FALLBACK_DUE_MONTH")
    fallback_due_day: int = Field(15, ge=1, le=31, alias="FALLBACK_DUE_DAY")
    default_installment_plan: str = Field("Quarterly", alias="DEFAULT_INSTALLMENT_PLAN")

    ledger_update_max_attempts: int = Field(3, ge=1, alias="LEDGER_UPDATE_MAX_ATTEMPTS")
    ledger_retry_wait_seconds: float = Field(0.05, ge=0, alias="LEDGER_RETRY_WAIT_SECONDS")

    # PartiallyPaid normally wins over Overdue; flip to report part-paid overdue ledgers as Overdue
    overdue_takes_precedence: bool = Field(False, alias="OVERDUE_TAKES_PRECEDENCE")
    defaulter_days_overdue: int = Field(30, ge=0, alias="DEFAULTER_DAYS_OVERDUE")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()

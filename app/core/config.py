from pydantic import Field
from pydantic_settings import BaseSettings

from app.core.enums import ChargeApplicabilityPolicy


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Which extra charges reach a student without an explicit assignment row.
    charge_applicability_policy: ChargeApplicabilityPolicy = Field(
        ChargeApplicabilityPolicy.ASSIGNMENT_ONLY, alias="CHARGE_APPLICABILITY_POLICY"
    )
    # True aborts the salary deduction batch on the first unexpected error.
    deduction_stop_on_error: bool = Field(False, alias="DEDUCTION_STOP_ON_ERROR")

    scheduler_enabled: bool = Field(True, alias="SCHEDULER_ENABLED")
    scheduler_timezone: str = Field("UTC", alias="SCHEDULER_TIMEZONE")
    deduction_check_interval_minutes: int = Field(60, alias="DEDUCTION_CHECK_INTERVAL_MINUTES")
    deduction_retry_delay_minutes: int = Field(30, alias="DEDUCTION_RETRY_DELAY_MINUTES")

    system_actor: str = Field("System", alias="SYSTEM_ACTOR")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()

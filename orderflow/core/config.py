"""Application configuration."""

from decimal import Decimal
from os import getenv

from pydantic import BaseModel


class Settings(BaseModel):
    """Runtime settings for the application."""

    app_name: str = "orderflow API"
    app_env: str = getenv("APP_ENV", "dev")
    debug: bool = getenv("DEBUG", "0") == "1"
    log_level: str = getenv("LOG_LEVEL", "INFO")
    database_url: str = getenv("DATABASE_URL", "sqlite:///./orderflow.db")
    db_timeout_seconds: int = int(getenv("DB_TIMEOUT_SECONDS", "10"))
    jwt_secret_key: str = getenv("JWT_SECRET_KEY", "dev-only-change-me-to-a-long-random-secret")
    jwt_algorithm: str = getenv("JWT_ALGORITHM", "HS256")
    jwt_expire_minutes: int = int(getenv("JWT_EXPIRE_MINUTES", "60"))
    tax_rate: Decimal = Decimal(getenv("TAX_RATE", "0.18"))
    delivery_charge: Decimal = Decimal(getenv("DELIVERY_CHARGE", "50.00"))
    estimated_delivery_start_minutes: int = int(getenv("ESTIMATED_DELIVERY_START_MINUTES", "45"))
    estimated_delivery_end_minutes: int = int(getenv("ESTIMATED_DELIVERY_END_MINUTES", "60"))
    otp_length: int = int(getenv("OTP_LENGTH", "6"))
    otp_max_attempts: int = int(getenv("OTP_MAX_ATTEMPTS", "5"))
    delivery_sla_minutes: int = int(getenv("DELIVERY_SLA_MINUTES", "45"))
    sms_gateway_url: str = getenv("SMS_GATEWAY_URL", "")
    sms_gateway_token: str = getenv("SMS_GATEWAY_TOKEN", "")
    sms_timeout_seconds: float = float(getenv("SMS_TIMEOUT_SECONDS", "5"))
    seed_demo_data: bool = getenv("SEED_DEMO_DATA", "0") == "1"


settings: Settings = Settings()

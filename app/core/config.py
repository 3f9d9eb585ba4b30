from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Hala Airport Services API"
    # Comma-separated origins for CORS (e.g. https://hala.example.com). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "bookings@hala.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    # Stripe (card payments). Empty key = startup error, see app.services.stripe_gateway.build_gateway
    STRIPE_SECRET_KEY: str = ""
    PAYMENT_CURRENCY: str = "usd"

    BOOKING_REF_PREFIX: str = "HALA"
    # Returns the verification code in the create response (demo / ops only; disable in production)
    EXPOSE_VERIFICATION_CODE: bool = True

    @field_validator("BOOKING_REF_PREFIX", mode="after")
    @classmethod
    def normalize_ref_prefix(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if not v.isalpha():
            raise ValueError("BOOKING_REF_PREFIX must be letters only")
        return v


settings = Settings()

from typing import Optional

from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    POSTGRES_HOST: str
    POSTGRES_PORT: str

    ADMIN_TOKEN: str
    # managed-auth (Supabase) токени, HS256
    SUPABASE_JWT_SECRET: Optional[str] = None
    SESSION_COOKIE_NAME: str = "session"

    DEBUG_MODE: bool = False
    APP_ENV: str = "development"
    APP_URL: str = "http://localhost:3000"
    LOG_DIR: str = "logs"

    # Dodo Payments
    DODO_PAYMENTS_API_KEY: str = ""
    DODO_ENVIRONMENT: str = "test_mode"
    DODO_PAYMENTS_WEBHOOK_SECRET: str = ""
    DODO_TIMEOUT_SECONDS: float = 15.0

    DODO_BASIC_MONTHLY_PRODUCT_ID: Optional[str] = None
    DODO_BASIC_YEARLY_PRODUCT_ID: Optional[str] = None
    DODO_CREATOR_MONTHLY_PRODUCT_ID: Optional[str] = None
    DODO_CREATOR_YEARLY_PRODUCT_ID: Optional[str] = None
    DODO_PROFESSIONAL_MONTHLY_PRODUCT_ID: Optional[str] = None
    DODO_PROFESSIONAL_YEARLY_PRODUCT_ID: Optional[str] = None
    DODO_ENTERPRISE_MONTHLY_PRODUCT_ID: Optional[str] = None
    DODO_ENTERPRISE_YEARLY_PRODUCT_ID: Optional[str] = None
    DODO_DAY_PASS_DAILY_PRODUCT_ID: Optional[str] = None

    DODO_CREDITS_STARTER_PRODUCT_ID: Optional[str] = None
    DODO_CREDITS_POPULAR_PRODUCT_ID: Optional[str] = None
    DODO_CREDITS_PREMIUM_PRODUCT_ID: Optional[str] = None
    DODO_CREDITS_ULTIMATE_PRODUCT_ID: Optional[str] = None

    REDIS_HOST: str = "localhost"
    REDIS_PORT: str = "6379"
    REDIS_DB: int = 0
    CHECKOUT_MAPPING_TTL_SECONDS: int = 86400

    # AI providers
    REPLICATE_API_TOKEN: str = ""
    RUNNINGHUB_API_KEY: str = ""
    RUNNINGHUB_BASE_URL: str = "https://www.runninghub.ai"
    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def DODO_BASE_URL(self) -> str:
        if self.DODO_ENVIRONMENT == "live_mode":
            return "https://live.dodopayments.com"
        return "https://test.dodopayments.com"

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    def plan_product_id(self, plan: str, billing_period: str) -> Optional[str]:
        key = f"DODO_{plan.upper().replace(' ', '_')}_{billing_period.upper()}_PRODUCT_ID"
        return getattr(self, key, None) or None

    def package_product_id(self, package_type: str) -> Optional[str]:
        return getattr(self, f"DODO_CREDITS_{package_type.upper()}_PRODUCT_ID", None) or None

    class Config:
        env_file = ".env"


config = AppConfig()

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):

    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"
    DB_CREATE_ALL: bool = True
    DB_ECHO: bool = False

    # tokens are issued by the external identity service, only verified here
    JWT_SECRET: str = "dev-jwt-secret"
    JWT_ALGO: str = "HS256"
    ADMIN_ROLE: str = "admin"

    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_WEBHOOK_SECRET: Optional[str] = None   # paystack signs webhooks with the secret key unless overridden
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_WEBHOOK_PATH: str = "/api/v1/payments/webhook"
    PAYSTACK_SIGNATURE_HEADER: str = "x-paystack-signature"

    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    GATEWAY_VERIFY_RETRIES: int = 2
    GATEWAY_RETRY_BASE_DELAY: float = 0.2
    GATEWAY_CIRCUIT_FAILURES: int = 5
    GATEWAY_CIRCUIT_RECOVERY_SECONDS: float = 30.0

    PUBLIC_BASE_URL: str = "http://localhost:3000"
    CURRENCY: str = "NGN"
    ORDER_NUMBER_PREFIX: str = "TF"

    TAX_RATE: Decimal = Decimal("0.075")
    SHIPPING_FLAT: Decimal = Decimal("2000")
    FREE_SHIPPING_THRESHOLD: Optional[Decimal] = Decimal("50000")

    DELIVERY_DAYS: int = 7
    SHIPPED_DELIVERY_DAYS: int = 3
    DUPLICATE_ORDER_WINDOW_SECONDS: int = 300

    class Config:
        env_file = ".env"
        extra="ignore"

    @property
    def webhook_secret(self) -> str:
        return self.PAYSTACK_WEBHOOK_SECRET or self.PAYSTACK_SECRET_KEY

config_settings = Settings()

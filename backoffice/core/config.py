from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "backoffice"
    version: str = "0.1.0"
    DEBUG: bool = False
    APP_DOMAIN: str = "example.com"
    LOG_LEVEL: str = "INFO"
    APP_DATABASE_DSN: str = "sqlite:////tmp/backoffice.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Staff authentication
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 60 * 12

    # Commerce platform (Shopify Admin REST API)
    shopify_store_url: str = "example.myshopify.com"
    shopify_access_token: str = ""
    shopify_api_version: str = "2024-01"
    shopify_timeout_seconds: float = 15.0

    # Provisioning retry policy
    provisioning_max_attempts: int = 3
    provisioning_base_delay_seconds: float = 2.0
    provisioning_settle_delay_seconds: float = 1.0

    # Duplicate-request suppression windows
    duplicate_window_seconds: float = 2.0
    inflight_ttl_seconds: float = 5.0
    seen_ttl_seconds: float = 10.0

    default_coupon_validity_days: int = 90

    # Outbound "coupon created" notification, empty disables it
    coupon_notification_webhook_url: str = ""

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"


settings = Settings()

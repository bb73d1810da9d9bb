from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    TIMEZONE: str = "America/Argentina/Buenos_Aires"
    STORE_NAME: str = "Amargo y Dulce"
    CURRENCY: str = "ARS"
    ORDER_NUMBER_PREFIX: str = "AMG"

    # Database (cart snapshots + payment transition claims)
    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Content backend (Strapi)
    STRAPI_URL: str = "http://localhost:1337"
    STRAPI_API_TOKEN: str = ""

    # Payment provider (MercadoPago)
    MP_ACCESS_TOKEN: str = ""
    MP_API_URL: str = "https://api.mercadopago.com"

    # Public site, used for back_urls and the webhook notification url
    SITE_URL: str = "http://localhost:3000"

    # Transactional mail (Resend)
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com"
    EMAIL_FROM: str = ""
    TEST_EMAIL_TO: Optional[str] = None
    EMAIL_DEDUPE_WINDOW_SECONDS: float = 10.0
    MAX_ATTACHMENT_BYTES: int = 10 * 1024 * 1024

    # Service-to-service auth
    SERVICE_JWT_SECRET: str = "test-service-secret"

    # Gateway
    GATEWAY_URL: str = "http://localhost:8000"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Microservices URLs
    STORE_SERVICE_URL: str = "http://store-service:8001"
    PAYMENTS_SERVICE_URL: str = "http://payments-service:8002"
    COMMUNICATIONS_SERVICE_URL: str = "http://communications-service:8003"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @field_validator("STRAPI_URL")
    @classmethod
    def normalize_strapi_base(cls, v: str) -> str:
        # Avoid /api/api/... when the env value already ends in /api
        base = (v or "").strip().rstrip("/")
        if base.lower().endswith("/api"):
            base = base[:-4]
        return base

    @field_validator("STRAPI_API_TOKEN")
    @classmethod
    def strip_bearer(cls, v: str) -> str:
        token = (v or "").strip()
        if token.lower().startswith("bearer "):
            token = token[7:].strip()
        return token

    @field_validator("SITE_URL")
    @classmethod
    def normalize_site_url(cls, v: str) -> str:
        url = (v or "").strip().rstrip("/")
        if not url.lower().startswith(("http://", "https://")):
            raise ValueError(f"SITE_URL must be an http(s) url, got {v!r}")
        return url


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()

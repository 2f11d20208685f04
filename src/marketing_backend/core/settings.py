"""
Settings for the marketing application.
"""

from typing import List

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SHOPIFY_API_VERSION = "2023-04"
SHOPIFY_DEFAULT_SCOPES = (
    "read_products,write_products,read_customers,write_customers,"
    "read_orders,write_orders,read_content,write_content"
)
SESSION_COOKIE_NAME = "marketing_session"

load_dotenv()


class ShopifySettings(BaseSettings):
    """
    Settings for the Shopify API.
    """

    api_key: str = ""
    api_secret: str = ""
    scopes: str = SHOPIFY_DEFAULT_SCOPES
    api_version: str = SHOPIFY_API_VERSION
    request_timeout: float = 10.0
    app_url: str = Field(
        "https://localhost:5000", validation_alias=AliasChoices("APP_URL", "SHOPIFY_APP_URL")
    )
    environment: str = Field(
        "development", validation_alias=AliasChoices("ENVIRONMENT", "SHOPIFY_ENVIRONMENT")
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SHOPIFY_",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("app_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def is_production(self) -> bool:
        """Whether charges should be created as real (non-test) charges."""
        return self.environment.lower() == "production"

    @property
    def callback_url(self) -> str:
        return f"{self.app_url}/api/shopify/callback"

    @property
    def billing_return_url(self) -> str:
        return f"{self.app_url}/api/billing/callback"

    @property
    def webhook_address(self) -> str:
        return f"{self.app_url}/api/webhooks"


class AppSettings(BaseSettings):
    """
    Settings for the web application itself: database, sessions and CORS.
    """

    database_url: str = "sqlite:///./marketing.db"
    session_secret: str = "shopify-marketing-automation-secret"
    session_algorithm: str = "HS256"
    session_max_age: int = 24 * 60 * 60
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origin_list(self) -> List[str]:
        """CORS origins from the comma-separated setting."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

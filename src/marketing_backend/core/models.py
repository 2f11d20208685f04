"""
Database models used for Shopify shop storage and the records exposed to the API.
"""

import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import DateTime, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from marketing_backend.core.database import Base


class SubscriptionTier(str, Enum):
    """
    Subscription plan level of a shop.
    """

    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    """
    Subscription states written by this service. The billing confirmation
    step stores Shopify's own charge status string as-is.
    """

    ACTIVE = "active"
    PENDING = "pending"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class Shop(Base):
    """
    Represents a merchant's connected Shopify store.

    Attributes:
        id (int): Surrogate primary key, bound into the browser session.
        shopify_domain (str): The store's unique *.myshopify.com domain.
        shop_name (str): Display name, initialised to the domain.
        access_token (str): Shopify Admin API token, null until OAuth completes.
        scopes (str): Granted scopes as returned by Shopify (comma-delimited).
        installed_at (datetime): Time of the latest successful OAuth callback.
        subscription_tier (str): One of free, basic, premium.
        subscription_status (str): Subscription state, see SubscriptionStatus.
        billing_id (str): Shopify recurring application charge id.
    """

    __tablename__ = "shops"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shopify_domain: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    shop_name: Mapped[str | None] = mapped_column(String, nullable=True)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    scopes: Mapped[str | None] = mapped_column(Text, nullable=True)
    installed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime, server_default=text("CURRENT_TIMESTAMP")
    )
    subscription_tier: Mapped[str] = mapped_column(
        String, default=SubscriptionTier.FREE.value, nullable=False
    )
    subscription_status: Mapped[str] = mapped_column(
        String, default=SubscriptionStatus.ACTIVE.value, nullable=False
    )
    billing_id: Mapped[str | None] = mapped_column(String, nullable=True)


class ShopRecord(BaseModel):
    """
    Immutable snapshot of a Shop row as handed out by a ShopRepository.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    shopify_domain: str
    shop_name: Optional[str] = None
    access_token: Optional[str] = None
    scopes: Optional[str] = None
    installed_at: Optional[datetime.datetime] = None
    subscription_tier: str = SubscriptionTier.FREE.value
    subscription_status: str = SubscriptionStatus.ACTIVE.value
    billing_id: Optional[str] = None

    @property
    def scope_list(self) -> list[str]:
        if not self.scopes:
            return []
        return [s.strip() for s in self.scopes.replace(" ", ",").split(",") if s.strip()]


class ShopSummary(BaseModel):
    """Redacted shop identity, safe to return to the browser."""

    domain: str
    name: Optional[str] = None


class ShopInfo(BaseModel):
    """Shop details returned by GET /shop. Never carries the access token."""

    id: int
    domain: str
    name: Optional[str] = None
    installed_at: Optional[datetime.datetime] = None
    subscription_tier: str
    subscription_status: str

    @classmethod
    def from_record(cls, shop: ShopRecord) -> "ShopInfo":
        return cls(
            id=shop.id,
            domain=shop.shopify_domain,
            name=shop.shop_name,
            installed_at=shop.installed_at,
            subscription_tier=shop.subscription_tier,
            subscription_status=shop.subscription_status,
        )


class ConnectionStatus(BaseModel):
    """Whether the session is bound to a shop, with a redacted summary."""

    connected: bool
    shop: Optional[ShopSummary] = None


class SubscribeRequest(BaseModel):
    """Body of POST /billing/subscribe."""

    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(..., alias="planId", description="Plan identifier: basic or premium")


class SubscribeResponse(BaseModel):
    confirmation_url: str


class WebhookRequest(BaseModel):
    """Body of POST /shopify/webhooks."""

    topic: str = Field("", description="Shopify webhook topic, e.g. orders/create")
